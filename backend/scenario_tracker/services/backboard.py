"""
Backboard.io integration service.

Quiet (side-channel) text generation for change extraction. Each call runs
on a throwaway thread with memory off, so nothing shows up in any visible
conversation. Prompt building and reply parsing live elsewhere; this is the
transport layer.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from backboard import BackboardClient

from scenario_tracker.config import settings
from scenario_tracker.errors import CapabilityUnavailable, GenerationError
from scenario_tracker.logging import get_logger
from scenario_tracker.models import BackboardResult, ChatResponse
from scenario_tracker.services.prompts import build_extraction_assistant_prompt

logger = get_logger('services.backboard')
_T = TypeVar("_T")


class BackboardService:
    """Service for interacting with Backboard.io."""

    def __init__(self):
        self.client = None
        self._initialized = False
        self._assistant_id: str | None = settings.BACKBOARD_ASSISTANT_ID or None
        self._assistant_lock = asyncio.Lock()

    async def initialize(self):
        if not settings.BACKBOARD_API_KEY:
            logger.warning("BACKBOARD_API_KEY not set - change extraction will be unavailable")
            return

        try:
            self.client = BackboardClient(api_key=settings.BACKBOARD_API_KEY)
            self._initialized = True
            logger.info("Backboard client initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Backboard: {e}")

    @property
    def is_available(self) -> bool:
        return self._initialized and self.client is not None

    def _is_transient_error(self, error: Exception) -> bool:
        # Rate limiting is left to the caller, which owns its own backoff.
        if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
            return True

        message = str(error).lower()
        transient_tokens = (
            "timed out",
            "timeout",
            "temporarily unavailable",
            "connection reset",
            "connection aborted",
            "connection refused",
            "bad gateway",
            "service unavailable",
            "gateway timeout",
            "502",
            "503",
            "504",
        )
        return any(token in message for token in transient_tokens)

    async def _run_with_retry(
        self,
        operation_name: str,
        operation: Callable[[], Awaitable[_T]],
    ) -> _T:
        max_retries = max(int(settings.BACKBOARD_MAX_RETRIES), 0)
        total_attempts = max_retries + 1
        base_delay = max(float(settings.BACKBOARD_RETRY_BASE_SECONDS), 0.0)
        max_delay = max(float(settings.BACKBOARD_RETRY_MAX_SECONDS), base_delay)

        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as error:
                should_retry = attempt < total_attempts and self._is_transient_error(error)
                if not should_retry:
                    raise

                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                logger.warning(
                    "Backboard %s failed (attempt %d/%d): %s. Retrying in %.2fs",
                    operation_name,
                    attempt,
                    total_attempts,
                    error,
                    delay,
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                attempt += 1

    # ── Assistants ──

    async def create_extraction_assistant(self, scenario_name: str = "") -> BackboardResult:
        if not self.is_available:
            return BackboardResult(success=False)

        try:
            assistant = await self._run_with_retry(
                "create_assistant",
                lambda: self.client.create_assistant(
                    name=f"Scenario Tracker: {scenario_name or 'extraction'}",
                    description=build_extraction_assistant_prompt(scenario_name),
                ),
            )
            logger.info(f"Created extraction assistant: {assistant.assistant_id}")
            return BackboardResult(success=True, id=str(assistant.assistant_id))
        except Exception as e:
            logger.error(f"Failed to create extraction assistant: {e}")
            return BackboardResult(success=False, error=str(e))

    async def _ensure_assistant(self) -> str:
        async with self._assistant_lock:
            if self._assistant_id:
                return self._assistant_id
            created = await self.create_extraction_assistant(settings.SCENARIO_NAME)
            if not created.success or not created.id:
                raise GenerationError(f"could not create extraction assistant: {created.error or 'unknown error'}")
            self._assistant_id = created.id
            return self._assistant_id

    # ── Threads ──

    async def create_thread(self, assistant_id: str) -> BackboardResult:
        if not self.is_available:
            return BackboardResult(success=False)

        try:
            thread = await self._run_with_retry(
                "create_thread",
                lambda: self.client.create_thread(assistant_id=assistant_id),
            )
            return BackboardResult(success=True, id=str(thread.thread_id))
        except Exception as e:
            logger.error(f"Failed to create thread for assistant {assistant_id}: {e}")
            return BackboardResult(success=False, error=str(e))

    async def delete_thread(self, thread_id: str) -> BackboardResult:
        if not self.is_available:
            return BackboardResult(success=False)

        try:
            await self.client.delete_thread(thread_id=thread_id)
            return BackboardResult(success=True)
        except Exception as e:
            logger.error(f"Failed to delete thread: {e}")
            return BackboardResult(success=False, error=str(e))

    # ── Chat ──

    async def chat(self, thread_id: str, prompt: str) -> ChatResponse:
        if not self.is_available:
            return ChatResponse(success=False, error="Backboard service unavailable")

        llm_provider = str(getattr(settings, "LLM_PROVIDER", "") or "").strip()
        model_name = str(getattr(settings, "MODEL_NAME", "") or "").strip()
        add_message_kwargs: dict[str, Any] = {
            "thread_id": thread_id,
            "content": prompt,
            "memory": "off",
        }
        if llm_provider:
            add_message_kwargs["llm_provider"] = llm_provider
        if model_name:
            add_message_kwargs["model_name"] = model_name

        try:
            response = await self._run_with_retry(
                "add_message",
                lambda: self.client.add_message(**add_message_kwargs),
            )
        except Exception as e:
            logger.error(f"Chat failed for thread {thread_id}: {e}")
            return ChatResponse(
                success=False,
                error=str(e),
                status_code=getattr(e, "status_code", None),
            )

        response_model_provider = str(getattr(response, "model_provider", "") or "").strip() or None
        response_model_name = str(getattr(response, "model_name", "") or "").strip() or None
        input_tokens = getattr(response, "input_tokens", None)
        output_tokens = getattr(response, "output_tokens", None)
        total_tokens = getattr(response, "total_tokens", None)

        if model_name and response_model_name and response_model_name.lower() != model_name.lower():
            logger.warning(
                "Backboard model mismatch thread=%s requested=%s actual=%s",
                thread_id,
                model_name,
                response_model_name,
            )

        logger.info(
            "Backboard usage thread=%s provider=%s model=%s tokens=%s/%s/%s",
            thread_id,
            response_model_provider or "(unknown)",
            response_model_name or "(unknown)",
            input_tokens if input_tokens is not None else "?",
            output_tokens if output_tokens is not None else "?",
            total_tokens if total_tokens is not None else "?",
        )

        return ChatResponse(
            success=True,
            response=response.content,
            model_provider=response_model_provider,
            model_name=response_model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
        )

    # ── Quiet generation ──

    async def quiet_generate(self, prompt: str) -> str:
        """
        Run one prompt outside any visible conversation and return the raw reply.

        :param prompt: Complete instruction text
        :type prompt: str
        :return: Model reply text
        :rtype: str
        """
        if not self.is_available:
            raise CapabilityUnavailable("quiet generation is not available (Backboard not configured)")

        assistant_id = await self._ensure_assistant()
        thread = await self.create_thread(assistant_id)
        if not thread.success or not thread.id:
            raise GenerationError(f"could not open a generation thread: {thread.error or 'unknown error'}")

        try:
            result = await self.chat(thread.id, prompt)
        finally:
            await self.delete_thread(thread.id)

        if not result.success:
            raise GenerationError(result.error or "generation failed", status_code=result.status_code)
        return result.response or ""

"""
Batch rescan over a window of historical turns.

Pass 1 reads inline structured blocks (no external calls). Turns without a
block that mention a known NPC become orphans, and pass 2 sends all of them
to the extraction caller as one combined document. Cancellation is
cooperative: the flag is polled between turns and between retries, an
in-flight generation call is never interrupted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from scenario_tracker.config import settings
from scenario_tracker.errors import CapabilityUnavailable, is_rate_limit_error
from scenario_tracker.logging import get_logger
from scenario_tracker.models import BusyReason, NarrativeTurn, RescanPhase, RescanReport
from scenario_tracker.services.delta import normalize_delta
from scenario_tracker.services.extraction import ExtractionCaller
from scenario_tracker.services.narrative import extract_structured_block, strip_non_narrative
from scenario_tracker.services.resolver import mentions_known_npc
from scenario_tracker.services.session_context import SessionContext

logger = get_logger("services.rescan")

BATCH_SEPARATOR = "\n\n━━━ [next message] ━━━\n\n"

StatusCallback = Callable[[str], None]
Sleep = Callable[[float], Awaitable[None]]


def clamp_count(count: int | None) -> int:
    if count is None:
        count = settings.RESCAN_DEFAULT_COUNT
    return max(1, min(int(count), settings.RESCAN_MAX_COUNT))


def select_window(turns: Sequence[NarrativeTurn], count: int) -> list[str]:
    """Raw text of the newest `count` narrator turns, oldest first."""
    selected: list[str] = []
    for turn in reversed(turns):
        if len(selected) >= count:
            break
        if turn.is_user or not turn.text:
            continue
        selected.append(turn.text)
    selected.reverse()
    return selected


def build_batch_text(orphans: Sequence[str]) -> str:
    total = len(orphans)
    return BATCH_SEPARATOR.join(
        f"[Message {index} of {total}]\n{text}" for index, text in enumerate(orphans, start=1)
    )


class RescanOrchestrator:
    """Runs one rescan at a time for a session."""

    def __init__(
        self,
        context: SessionContext,
        caller: ExtractionCaller,
        on_status: StatusCallback,
        sleep: Sleep = asyncio.sleep,
    ):
        self.context = context
        self.caller = caller
        self.on_status = on_status
        self.sleep = sleep

    def cancel(self) -> bool:
        if self.context.busy != BusyReason.RESCAN:
            return False
        self.context.cancel_requested = True
        logger.info(f"Rescan cancel requested for session {self.context.session_id}")
        return True

    def _finish(self, report: RescanReport, message: str) -> RescanReport:
        report.message = message
        self.on_status(message)
        return report

    async def run(
        self,
        turns: Sequence[NarrativeTurn],
        count: int | None = None,
        structured_only: bool = False,
    ) -> RescanReport:
        context = self.context
        report = RescanReport()

        if context.busy is not None:
            return self._finish(report, "already scanning, please wait")
        if not context.has_world_state:
            return self._finish(report, "no world_state loaded, sync first")
        window = select_window(turns, clamp_count(count))
        if not window:
            return self._finish(report, "no AI messages to scan")

        context.try_acquire(BusyReason.RESCAN)
        context.cancel_requested = False
        try:
            return await self._scan(window, structured_only, report)
        finally:
            context.release(BusyReason.RESCAN)
            context.rescan_phase = RescanPhase.IDLE
            context.cancel_requested = False

    async def _scan(self, window: list[str], structured_only: bool, report: RescanReport) -> RescanReport:
        context = self.context
        context.rescan_phase = RescanPhase.SCANNING_STRUCTURED
        self.on_status("pass 1: scanning for structured blocks…")

        orphans: list[str] = []
        for raw in window:
            if context.cancel_requested:
                report.cancelled = True
                break
            report.scanned += 1
            block = extract_structured_block(raw)
            if block is not None:
                try:
                    delta = normalize_delta(block, context.documents)
                    if not delta.is_empty():
                        context.queue.propose(delta)
                        report.structured_hits += 1
                except Exception as e:
                    logger.error(f"Structured block error in rescan turn {report.scanned}: {e}")
                    self.on_status(f"skipped a malformed structured block: {e}")
            elif not structured_only and mentions_known_npc(raw, context.documents):
                orphans.append(strip_non_narrative(raw))
            # Yield so a cancel request can be delivered between turns.
            await asyncio.sleep(0)

        report.orphans = len(orphans)
        structured_text = (
            f"{report.structured_hits} structured block(s) queued"
            if report.structured_hits
            else "no structured blocks found"
        )

        if structured_only or not orphans or report.cancelled:
            context.rescan_phase = RescanPhase.DONE
            if report.cancelled:
                return self._finish(report, f"scan stopped, {report.structured_hits} change(s) queued")
            suffix = (
                f", {len(orphans)} message(s) lack structured blocks (LLM pass skipped)"
                if orphans and not structured_only
                else ""
            )
            return self._finish(report, f"rescan complete, {structured_text}{suffix}")

        context.rescan_phase = RescanPhase.SCANNING_BATCH
        self.on_status(f"pass 2: batching {len(orphans)} orphan message(s) into one LLM call…")
        await self._run_batch(build_batch_text(orphans), report)
        context.rescan_phase = RescanPhase.DONE

        total = report.structured_hits + (1 if report.batch_found_changes else 0)
        if report.cancelled:
            return self._finish(report, f"scan stopped, {total} change(s) queued")
        if report.batch_error:
            return self._finish(report, f"rescan finished with errors, {structured_text}; LLM batch error: {report.batch_error}")
        if not total:
            return self._finish(report, "rescan complete, no changes detected")
        batch_text = "1 batch LLM call" if report.batch_found_changes else "LLM: no new changes"
        return self._finish(
            report,
            f"rescan complete, {total} change(s) queued ({report.structured_hits} structured, {batch_text})",
        )

    async def _run_batch(self, batch_text: str, report: RescanReport) -> None:
        context = self.context
        max_attempts = max(int(settings.RESCAN_MAX_ATTEMPTS), 1)
        report.batch_attempted = True

        while report.batch_attempts < max_attempts:
            if context.cancel_requested:
                report.cancelled = True
                return
            report.batch_attempts += 1
            attempt = report.batch_attempts
            try:
                delta = await self.caller.extract(
                    batch_text,
                    context.documents,
                    context.scenario.extraction_prompt,
                )
            except CapabilityUnavailable as e:
                logger.error(f"Batch extraction unavailable: {e}")
                report.batch_error = str(e)
                return
            except Exception as e:
                logger.error(f"Batch LLM error (attempt {attempt}): {e}")
                if is_rate_limit_error(e) and attempt < max_attempts:
                    wait = attempt * settings.RESCAN_BACKOFF_STEP_SECONDS
                    self.on_status(f"rate limited, waiting {wait:g}s before retry ({attempt}/{max_attempts})…")
                    await self.sleep(wait)
                    continue
                report.batch_error = str(e)
                return

            if delta is not None and not delta.is_empty():
                try:
                    report.batch_found_changes = bool(context.queue.propose(delta))
                except Exception as e:
                    logger.error(f"Batch proposal error: {e}")
                    report.batch_error = str(e)
            return

"""
Session controller and registry.

One TrackerController owns one session's context: the loaded documents,
the review queue, the busy flag, injection slots and the debounced push.
Host events (message received, generation ended, session switch) arrive as
method calls; every outcome is reported through the status line.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from scenario_tracker.errors import CapabilityUnavailable, CommitError, RemoteStoreError
from scenario_tracker.logging import get_logger
from scenario_tracker.models import (
    AcceptAllResult,
    BusyReason,
    ExtractionOutcome,
    GenerationEndedEvent,
    MessageReceivedEvent,
    NarrativeTurn,
    ProposedChange,
    RescanReport,
    RescanRequest,
    SessionConfigUpdate,
    SessionState,
    normalize_type,
)
from scenario_tracker.services.delta import normalize_delta
from scenario_tracker.services.documents import (
    WORLD_STATE_KEY,
    default_documents,
    iter_npc_documents,
)
from scenario_tracker.services.extraction import ExtractionCaller
from scenario_tracker.services.gist_store import GistDocumentStore
from scenario_tracker.services.injection import (
    SlotInjectionSink,
    build_injections,
    push_injections,
    recent_text,
    select_relevant_npcs,
)
from scenario_tracker.services.narrative import (
    extract_structured_block,
    merge_continuation,
    strip_non_narrative,
)
from scenario_tracker.services.persistence import DebouncedPusher
from scenario_tracker.services.rescan import RescanOrchestrator
from scenario_tracker.services.session_context import SessionContext
from scenario_tracker.services.snapshot import SnapshotStore

logger = get_logger("services.session")

Notifier = Callable[[str, dict[str, Any], str], Awaitable[None]]


def _pending_message(count: int) -> str:
    return f"{count} change{'s' if count != 1 else ''} pending review"


class TrackerController:
    """Handles every operation for a single session."""

    def __init__(
        self,
        session_id: str,
        store: GistDocumentStore,
        snapshots: SnapshotStore,
        caller: ExtractionCaller,
        notifier: Notifier | None = None,
        push_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = SessionContext(session_id=session_id)
        self.store = store
        self.snapshots = snapshots
        self.caller = caller
        self.notifier = notifier
        self.sink = SlotInjectionSink(self.context.injections)
        self.pusher = DebouncedPusher(self.push, delay=push_delay)
        self.rescanner = RescanOrchestrator(self.context, caller, self.set_status, sleep=sleep)
        self.recent_turns: list[NarrativeTurn] = []
        self._rescan_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def documents(self) -> dict[str, Any]:
        return self.context.documents

    # ── Status & notifications ──

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _notify(self, event: str, payload: dict[str, Any]) -> None:
        if self.notifier is None:
            return
        self._spawn(self.notifier(event, payload, self.session_id))

    def set_status(self, message: str) -> None:
        self.context.status = message
        logger.info(f"[{self.session_id}] {message}")
        self._notify("status", {"session_id": self.session_id, "status": message})

    def _announce_queue(self) -> None:
        count = len(self.context.queue)
        self._notify("queue", {"session_id": self.session_id, "pending": count})

    # ── Lifecycle ──

    async def start(self, remote_id: str | None = None) -> SessionState:
        """Reset, resolve the remote id, then restore a fresh snapshot or sync."""
        self.pusher.cancel()
        self.context.reset()
        self.recent_turns = []

        if remote_id:
            await self.snapshots.link_remote(self.session_id, remote_id)
        else:
            remote_id = await self.snapshots.remote_for(self.session_id)
        self.context.remote_id = remote_id

        snapshot = await self.snapshots.load(self.session_id)
        if snapshot and (not remote_id or snapshot.remote_id in (None, remote_id)):
            self.context.documents = snapshot.documents
            self.context.remote_id = remote_id or snapshot.remote_id
            self.rebuild_injection()
            self.set_status("loaded (cached)")
        elif remote_id:
            try:
                await self.sync()
            except RemoteStoreError as e:
                logger.warning(f"Initial sync failed for session {self.session_id}: {e}")
        else:
            self.set_status("no remote linked, create one or provide an id")
        return self.state()

    async def close(self, flush: bool = False) -> None:
        if flush:
            await self.pusher.flush()
        self.pusher.cancel()
        self.cancel_rescan()

    # ── Remote sync ──

    async def sync(self) -> SessionState:
        if not self.context.remote_id:
            raise ValueError("No remote id linked to this session")
        try:
            self.set_status("fetching from remote…")
            self.context.documents = await self.store.fetch_all(self.context.remote_id)
        except RemoteStoreError as e:
            logger.error(f"Remote fetch failed for session {self.session_id}: {e}")
            self.set_status(f"sync failed: {e}")
            raise
        await self.persist_local()
        self.rebuild_injection()
        self.set_status("synced ✓")
        return self.state()

    async def create_remote(self, description: str | None = None) -> SessionState:
        """Create a fresh remote document set with default documents and link it."""
        description = description or f"Scenario Tracker, {datetime.now(timezone.utc).date().isoformat()}"
        try:
            self.set_status("creating remote…")
            remote_id = await self.store.create(description, default_documents(self.session_id))
        except RemoteStoreError as e:
            self.set_status(f"create failed: {e}")
            raise
        self.context.remote_id = remote_id
        await self.snapshots.link_remote(self.session_id, remote_id)
        return await self.sync()

    async def persist_local(self) -> None:
        try:
            await self.snapshots.save(self.session_id, self.context.remote_id, self.documents)
        except (aiosqlite.Error, OSError) as e:
            logger.warning(f"Local snapshot save failed for session {self.session_id}: {e}")

    async def push(self) -> None:
        if not self.context.remote_id:
            return
        try:
            self.set_status("saving to remote…")
            await self.store.patch(self.context.remote_id, self.documents)
        except RemoteStoreError as e:
            logger.error(f"Push failed for session {self.session_id}: {e}")
            self.set_status(f"save failed: {e}")
            return
        self.set_status("saved ✓")

    async def _after_change(self) -> None:
        await self.persist_local()
        self.rebuild_injection()
        self.pusher.schedule()

    # ── Config ──

    async def update_config(self, update: SessionConfigUpdate) -> SessionState:
        scenario = self.context.scenario
        if update.scenario_name is not None:
            scenario.scenario_name = update.scenario_name
        if update.extraction_prompt is not None:
            scenario.extraction_prompt = update.extraction_prompt
        if update.max_injected_npcs is not None:
            self.context.max_injected_npcs = update.max_injected_npcs
        if update.remote_id:
            self.context.remote_id = update.remote_id
            await self.snapshots.link_remote(self.session_id, update.remote_id)
        self.rebuild_injection()
        return self.state()

    # ── Injection ──

    def rebuild_injection(self) -> dict[str, str]:
        injections = build_injections(
            self.documents,
            self.recent_turns,
            self.context.scenario.scenario_name,
            self.context.max_injected_npcs,
        )
        push_injections(self.sink, injections)
        self._notify("injections", {"session_id": self.session_id, "slots": dict(self.sink.slots)})
        return injections

    # ── Host events ──

    async def handle_message_received(self, event: MessageReceivedEvent) -> ExtractionOutcome:
        """
        Extract changes from the newest narrator turn.

        A structured block in the raw text is used directly; otherwise one
        extraction call runs. Never raises: failures end up on the status line.
        """
        context = self.context
        turns = event.turns
        if not turns or turns[-1].is_user:
            return ExtractionOutcome(skipped_reason="no narrator turn")
        self.recent_turns = list(turns)

        raw_text = turns[-1].text or ""
        previous = next((turn.text for turn in reversed(turns[:-1]) if not turn.is_user), None)
        clean_text = merge_continuation(
            strip_non_narrative(raw_text),
            strip_non_narrative(previous) if previous else None,
            event.is_continuation,
        )
        if not clean_text or clean_text == context.last_message_text:
            return ExtractionOutcome(skipped_reason="duplicate or empty turn")
        context.last_message_text = clean_text

        if not context.has_world_state:
            return ExtractionOutcome(skipped_reason="no world state loaded")
        if context.busy is not None:
            return ExtractionOutcome(skipped_reason=f"busy ({context.busy.value})")

        self.rebuild_injection()

        block = extract_structured_block(raw_text)
        if block is not None:
            try:
                delta = normalize_delta(block, self.documents)
                proposed = context.queue.propose(delta) if not delta.is_empty() else []
            except Exception as e:
                logger.error(f"Structured block error for session {self.session_id}: {e}")
                self.set_status(f"structured block error: {e}")
                return ExtractionOutcome(source="structured", error=str(e))
            self.set_status(_pending_message(len(context.queue)) if proposed else "idle ✓")
            self._announce_queue()
            return ExtractionOutcome(source="structured", proposed=len(proposed))

        context.try_acquire(BusyReason.EXTRACTION)
        self.set_status("extracting changes…")
        try:
            delta = await self.caller.extract(
                clean_text,
                self.documents,
                context.scenario.extraction_prompt,
            )
        except CapabilityUnavailable as e:
            self.set_status(f"extraction unavailable: {e}")
            return ExtractionOutcome(source="llm", error=str(e))
        except Exception as e:
            logger.error(f"Extraction error for session {self.session_id}: {e}")
            self.set_status(f"extraction error: {e}")
            return ExtractionOutcome(source="llm", error=str(e))
        finally:
            context.release(BusyReason.EXTRACTION)

        try:
            proposed = context.queue.propose(delta) if delta is not None and not delta.is_empty() else []
        except Exception as e:
            logger.error(f"Proposal error for session {self.session_id}: {e}")
            self.set_status(f"extraction error: {e}")
            return ExtractionOutcome(source="llm", error=str(e))
        self.set_status(_pending_message(len(context.queue)) if proposed else "idle ✓")
        self._announce_queue()
        return ExtractionOutcome(source="llm", proposed=len(proposed))

    async def handle_generation_ended(self, event: GenerationEndedEvent) -> dict[str, str]:
        if event.turns:
            self.recent_turns = list(event.turns)
        return self.rebuild_injection()

    # ── Rescan ──

    async def rescan(self, request: RescanRequest) -> RescanReport:
        report = await self.rescanner.run(request.turns, request.count, request.structured_only)
        self._announce_queue()
        self._notify("rescan", {"session_id": self.session_id, **report.model_dump()})
        return report

    def start_rescan(self, request: RescanRequest) -> bool:
        """Run a rescan in the background; False (with a status message) if busy."""
        running = self._rescan_task is not None and not self._rescan_task.done()
        if running or self.context.busy is not None:
            self.set_status("already scanning, please wait")
            return False
        self._rescan_task = asyncio.create_task(self.rescan(request))
        self._rescan_task.add_done_callback(self._rescan_done)
        return True

    def _rescan_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Rescan failed for session {self.session_id}: {error!r}")
            self.set_status(f"rescan error: {error}")

    def cancel_rescan(self) -> bool:
        return self.rescanner.cancel()

    # ── Review queue ──

    def pending(self) -> list[ProposedChange]:
        return self.context.queue.pending()

    async def accept(self, change_id: str) -> ProposedChange:
        try:
            item = self.context.queue.accept(change_id)
        except CommitError as e:
            self.set_status(f"{e}, change kept in queue")
            raise
        await self._after_change()
        remaining = len(self.context.queue)
        self.set_status(_pending_message(remaining) if remaining else "all changes applied ✓")
        self._announce_queue()
        return item

    def deny(self, change_id: str) -> ProposedChange:
        item = self.context.queue.deny(change_id)
        remaining = len(self.context.queue)
        self.set_status(_pending_message(remaining) if remaining else "idle ✓")
        self._announce_queue()
        return item

    async def accept_all(self) -> AcceptAllResult:
        result = self.context.queue.accept_all()
        if result.applied:
            await self._after_change()
        if result.failed:
            self.set_status(f"{result.applied} applied, {result.failed} failed and kept in queue")
        else:
            self.set_status("all changes applied ✓")
        self._announce_queue()
        return result

    def deny_all(self) -> int:
        count = self.context.queue.deny_all()
        self.set_status("all changes denied ✓")
        self._announce_queue()
        return count

    def import_files(self, files: dict[str, Any]) -> list[ProposedChange]:
        added = self.context.queue.propose_imports(files)
        if added:
            self.set_status(f"{len(added)} file{'s' if len(added) != 1 else ''} ready to review")
        else:
            self.set_status("no valid files found")
        self._announce_queue()
        return added

    # ── Known secrets ──

    def _known_secrets(self) -> dict[str, Any]:
        world_state = self.documents.get(WORLD_STATE_KEY)
        if not isinstance(world_state, dict):
            raise ValueError("No world_state loaded")
        secrets = world_state.get("known_secrets")
        if not isinstance(secrets, dict):
            secrets = {}
            world_state["known_secrets"] = secrets
        return secrets

    async def set_secret(self, key: str, value: bool = True) -> dict[str, Any]:
        secret_key = normalize_type(key or "")
        if not secret_key:
            raise ValueError("Secret key must not be empty")
        secrets = self._known_secrets()
        secrets[secret_key] = value
        await self._after_change()
        self.set_status(f"added secret: {secret_key}")
        return dict(secrets)

    async def toggle_secret(self, key: str) -> dict[str, Any]:
        secrets = self._known_secrets()
        if key not in secrets:
            raise LookupError(f"Secret {key} not found")
        secrets[key] = not secrets[key]
        await self._after_change()
        self.set_status(f"toggled secret: {key}")
        return dict(secrets)

    async def remove_secret(self, key: str) -> dict[str, Any]:
        secrets = self._known_secrets()
        if key not in secrets:
            raise LookupError(f"Secret {key} not found")
        del secrets[key]
        await self._after_change()
        self.set_status(f"removed secret: {key}")
        return dict(secrets)

    # ── State ──

    def summary(self) -> list[str]:
        world_state = self.documents.get(WORLD_STATE_KEY)
        world_state = world_state if isinstance(world_state, dict) else {}
        lines: list[str] = []
        if world_state.get("in_world_date"):
            lines.append(f"Date: {world_state['in_world_date']}")
        if world_state.get("arc"):
            chapter = f" ch.{world_state['chapter']}" if world_state.get("chapter") else ""
            lines.append(f"Arc {world_state['arc']}{chapter}")
        divergence = world_state.get("divergence")
        if isinstance(divergence, dict):
            warning = "" if divergence.get("timeline_reliable", True) else " ⚠"
            lines.append(f"Divergence {divergence.get('rating', 0)}/{divergence.get('threshold') or 15}{warning}")
        npc_count = sum(1 for _ in iter_npc_documents(self.documents))
        lines.append(f"{npc_count} NPC{'s' if npc_count != 1 else ''} tracked")
        selected = select_relevant_npcs(
            self.documents,
            recent_text(self.recent_turns),
            self.context.max_injected_npcs,
        )
        if selected:
            names = ", ".join(str(npc.get("alias") or npc.get("display_name")) for npc in selected)
            lines.append(f"Injecting: {names}")
        return lines

    def state(self) -> SessionState:
        context = self.context
        return SessionState(
            session_id=context.session_id,
            remote_id=context.remote_id,
            status=context.status,
            busy=context.busy,
            rescan_phase=context.rescan_phase,
            document_keys=sorted(self.documents),
            npc_count=sum(1 for _ in iter_npc_documents(self.documents)),
            pending_changes=len(context.queue),
            summary=self.summary(),
        )


class SessionRegistry:
    """Owns one controller per session id."""

    def __init__(
        self,
        store: GistDocumentStore,
        snapshots: SnapshotStore,
        caller: ExtractionCaller,
        notifier: Notifier | None = None,
        push_delay: float | None = None,
    ):
        self.store = store
        self.snapshots = snapshots
        self.caller = caller
        self.notifier = notifier
        self.push_delay = push_delay
        self._controllers: dict[str, TrackerController] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._controllers

    def get(self, session_id: str) -> TrackerController:
        controller = self._controllers.get(session_id)
        if controller is None:
            raise LookupError(f"Session {session_id} not started")
        return controller

    async def start(self, session_id: str, remote_id: str | None = None) -> TrackerController:
        existing = self._controllers.pop(session_id, None)
        if existing is not None:
            await existing.close(flush=True)
        controller = TrackerController(
            session_id,
            store=self.store,
            snapshots=self.snapshots,
            caller=self.caller,
            notifier=self.notifier,
            push_delay=self.push_delay,
        )
        self._controllers[session_id] = controller
        await controller.start(remote_id)
        logger.info(f"Session {session_id} started (remote={controller.context.remote_id or '-'})")
        return controller

    async def end(self, session_id: str) -> None:
        controller = self._controllers.pop(session_id, None)
        if controller is None:
            raise LookupError(f"Session {session_id} not started")
        await controller.close()
        logger.info(f"Session {session_id} ended")

    async def shutdown(self) -> None:
        """Flush pending pushes and drop every session."""
        for session_id in list(self._controllers):
            controller = self._controllers.pop(session_id)
            await controller.close(flush=True)

"""
Review queue: expands a canonical delta into individually reviewable changes.

Previous values are read when a change is proposed, so a preview can be
stale if another change to the same field is accepted first. Commit actions
always read the store as it is at accept time. Accept-all is not
transactional: changes applied before a failure stay applied.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from scenario_tracker.config import settings
from scenario_tracker.errors import CommitError
from scenario_tracker.logging import get_logger
from scenario_tracker.models import (
    AcceptAllResult,
    ArcEventStatus,
    CanonicalDelta,
    ChangeKind,
    ProposedChange,
)
from scenario_tracker.services.documents import (
    ARC_EVENTS_KEY,
    WORLD_STATE_KEY,
    deep_get,
    deep_set,
    default_divergence,
    npc_key,
    npc_label,
    scaffold_npc,
)
from scenario_tracker.services.importer import build_import_changes
from scenario_tracker.services.resolver import resolve_npc_key

logger = get_logger("services.review_queue")

_VALID_ARC_STATUSES = {status.value for status in ArcEventStatus}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def clip(value: Any, limit: int | None = None) -> str:
    limit = limit or settings.DESCRIPTION_MAX_CHARS
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return text if len(text) <= limit else text[:limit] + "…"


def dedupe(names: Iterable[Any]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if not isinstance(name, str) or not name.strip() or name in seen:
            continue
        seen.add(name)
        result.append(name)
    return result


def apply_divergence(world_state: dict[str, Any], amount: int) -> dict[str, Any]:
    """Add to the divergence rating, log the step, and latch the reliability flag off."""
    divergence = world_state.get("divergence")
    if not isinstance(divergence, dict):
        divergence = default_divergence()
        world_state["divergence"] = divergence
    divergence["rating"] = int(divergence.get("rating") or 0) + amount

    record = {"timestamp": _now(), "delta": amount}
    log = divergence.get("logged_divergences")
    if log is None:
        log = divergence.get("logged")
    if isinstance(log, list):
        log.append(record)
    else:
        divergence["logged_divergences"] = [record]

    threshold = divergence.get("threshold") or settings.DEFAULT_DIVERGENCE_THRESHOLD
    if divergence["rating"] >= threshold:
        divergence["timeline_reliable"] = False
    return divergence


class ReviewQueue:
    """Pending changes for one session, in enqueue order."""

    def __init__(self, get_documents: Callable[[], dict[str, Any]]):
        self._get_documents = get_documents
        self._items: list[ProposedChange] = []

    @property
    def documents(self) -> dict[str, Any]:
        return self._get_documents()

    def __len__(self) -> int:
        return len(self._items)

    def pending(self) -> list[ProposedChange]:
        return list(self._items)

    def get(self, change_id: str) -> ProposedChange:
        for item in self._items:
            if item.id == change_id:
                return item
        raise LookupError(f"Change {change_id} not found")

    def clear(self) -> None:
        self._items.clear()

    def enqueue(self, changes: Iterable[ProposedChange]) -> list[ProposedChange]:
        added = list(changes)
        self._items.extend(added)
        return added

    # ── Review ──

    def accept(self, change_id: str) -> ProposedChange:
        item = self.get(change_id)
        try:
            item.commit()
        except Exception as e:
            logger.error(f"Commit failed for change {change_id} ({item.kind.value}): {e}")
            raise CommitError(change_id, e) from e
        self._items.remove(item)
        logger.info(f"Accepted change {change_id}: {item.description}")
        return item

    def deny(self, change_id: str) -> ProposedChange:
        item = self.get(change_id)
        self._items.remove(item)
        logger.info(f"Denied change {change_id}: {item.description}")
        return item

    def accept_all(self) -> AcceptAllResult:
        result = AcceptAllResult()
        for item in list(self._items):
            try:
                self.accept(item.id)
            except CommitError as e:
                result.failed += 1
                result.failed_ids.append(item.id)
                result.errors.append(str(e))
            else:
                result.applied += 1
        return result

    def deny_all(self) -> int:
        count = len(self._items)
        self._items.clear()
        return count

    # ── Proposal ──

    def propose(self, delta: CanonicalDelta) -> list[ProposedChange]:
        """Expand a delta into field-level changes and enqueue them."""
        documents = self.documents
        changes: list[ProposedChange] = []
        changes += self._knowledge_changes(documents, delta.npc_knowledge or {})
        changes += self._relationship_changes(documents, delta.npc_relationship or {})
        changes += self._state_changes(documents, delta.npc_current_state or {})
        changes += self._appearance_changes(documents, delta.npc_appearance or {})
        changes += self._alias_changes(documents, delta.npc_aliases or {})
        changes += self._arc_event_changes(documents, delta.arc_events or {})
        changes += self._world_state_changes(documents, delta.world_state or {})
        if delta.divergence_delta and delta.divergence_delta > 0:
            changes.append(self._divergence_change(documents, delta.divergence_delta))
        if delta.in_world_date:
            changes.append(self._date_change(documents, delta.in_world_date))
        changes += self._new_npc_changes(documents, delta.new_npcs or [])
        return self.enqueue(changes)

    def propose_imports(self, files: dict[str, Any]) -> list[ProposedChange]:
        return self.enqueue(build_import_changes(files, self.documents, self._store_document))

    def _store_document(self, key: str, document: Any) -> None:
        self.documents[key] = document

    def _target(self, documents: dict[str, Any], key: str) -> str | None:
        if isinstance(documents.get(key), dict):
            return key
        resolved = resolve_npc_key(npc_label(documents, key), documents)
        if not resolved:
            logger.debug("No NPC document for %r, change dropped", key)
        return resolved

    def _npc_document(self, key: str) -> dict[str, Any]:
        documents = self.documents
        document = documents.get(key)
        if document is None:
            document = {}
            documents[key] = document
        return document

    def _knowledge_changes(self, documents, knowledge: dict[str, dict]) -> list[ProposedChange]:
        changes = []
        for raw_key, fields in knowledge.items():
            key = self._target(documents, raw_key)
            if not key:
                continue
            name = npc_label(documents, key)
            for path, value in fields.items():
                def commit(key=key, path=path, value=value):
                    deep_set(self._npc_document(key), path, value)

                changes.append(ProposedChange(
                    kind=ChangeKind.NPC_KNOWLEDGE,
                    target_key=key,
                    description=f"{name}: knowledge, {path.replace('.', ' → ')} → {clip(value)}",
                    previous_value=deep_get(documents[key], path),
                    proposed_value=value,
                    commit=commit,
                ))
        return changes

    def _relationship_changes(self, documents, relationships: dict[str, str]) -> list[ProposedChange]:
        changes = []
        for raw_key, relationship in relationships.items():
            key = self._target(documents, raw_key)
            if not key:
                continue
            name = npc_label(documents, key)
            old = deep_get(documents[key], "current_state.relationship_to_user_character")

            def commit(key=key, relationship=relationship):
                deep_set(self._npc_document(key), "current_state.relationship_to_user_character", relationship)

            suffix = f" (was: {clip(old)})" if old else ""
            changes.append(ProposedChange(
                kind=ChangeKind.NPC_RELATIONSHIP,
                target_key=key,
                description=f"{name}: relationship → {clip(relationship)}{suffix}",
                previous_value=old,
                proposed_value=relationship,
                commit=commit,
            ))
        return changes

    def _state_changes(self, documents, states: dict[str, dict]) -> list[ProposedChange]:
        changes = []
        for raw_key, state in states.items():
            key = self._target(documents, raw_key)
            if not key:
                continue
            name = npc_label(documents, key)
            old = documents[key].get("current_state")

            def commit(key=key, state=state):
                document = self._npc_document(key)
                current = document.get("current_state")
                if not isinstance(current, dict):
                    current = {}
                    document["current_state"] = current
                current.update(state)

            summary = "; ".join(f"{field}: {value}" for field, value in state.items())
            changes.append(ProposedChange(
                kind=ChangeKind.NPC_STATE,
                target_key=key,
                description=f"{name}: state, {clip(summary)}",
                previous_value=dict(old) if isinstance(old, dict) else old,
                proposed_value=state,
                commit=commit,
            ))
        return changes

    def _appearance_changes(self, documents, appearances: dict[str, dict]) -> list[ProposedChange]:
        changes = []
        for raw_key, incoming in appearances.items():
            key = self._target(documents, raw_key)
            if not key:
                continue
            old = documents[key].get("appearance")
            old = dict(old) if isinstance(old, dict) else {}
            changed = {field: value for field, value in incoming.items() if value and value != old.get(field)}
            if not changed:
                continue
            name = npc_label(documents, key)

            def commit(key=key, changed=changed):
                document = self._npc_document(key)
                appearance = document.get("appearance")
                merged = dict(appearance) if isinstance(appearance, dict) else {}
                merged.update(changed)
                document["appearance"] = merged
                document.pop("physical_description", None)

            summary = " | ".join(f"{field}: {clip(value, 60)}" for field, value in changed.items())
            changes.append(ProposedChange(
                kind=ChangeKind.NPC_APPEARANCE,
                target_key=key,
                description=f"{name}: appearance, {summary}",
                previous_value=old,
                proposed_value=changed,
                commit=commit,
            ))
        return changes

    def _alias_changes(self, documents, alias_updates: dict[str, dict]) -> list[ProposedChange]:
        changes = []
        for raw_key, update in alias_updates.items():
            key = self._target(documents, raw_key)
            if not key:
                continue
            document = documents[key]
            old_alias = document.get("alias")
            old_aliases = document.get("aliases") if isinstance(document.get("aliases"), list) else []
            new_alias = update.get("alias") if isinstance(update.get("alias"), str) else None
            new_aliases = dedupe(update["aliases"]) if isinstance(update.get("aliases"), list) else None

            parts = []
            if new_alias and new_alias != old_alias:
                parts.append(f"primary name: {old_alias or '?'} → {new_alias}")
            if new_aliases is not None and new_aliases != old_aliases:
                parts.append(f"known names: [{', '.join(map(str, old_aliases))}] → [{', '.join(new_aliases)}]")
            if not parts:
                continue
            name = npc_label(documents, key)

            def commit(key=key, new_alias=new_alias, new_aliases=new_aliases):
                target = self._npc_document(key)
                if new_alias:
                    target["alias"] = new_alias
                if new_aliases is not None:
                    target["aliases"] = new_aliases

            proposed: dict[str, Any] = {}
            if new_alias:
                proposed["alias"] = new_alias
            if new_aliases is not None:
                proposed["aliases"] = new_aliases
            changes.append(ProposedChange(
                kind=ChangeKind.NPC_ALIASES,
                target_key=key,
                description=f"{name}: alias update, {'; '.join(parts)}",
                previous_value={"alias": old_alias, "aliases": list(old_aliases)},
                proposed_value=proposed,
                commit=commit,
            ))
        return changes

    def _current_arc_key(self) -> str:
        world_state = self.documents.get(WORLD_STATE_KEY) or {}
        return f"arc_{world_state.get('arc') or '1'}"

    def _arc_event_changes(self, documents, arc_events: dict[str, str]) -> list[ProposedChange]:
        changes = []
        arc_document = documents.get(ARC_EVENTS_KEY) or {}
        for event_id, status in arc_events.items():
            if status not in _VALID_ARC_STATUSES:
                logger.debug("Ignoring arc event %r with status %r", event_id, status)
                continue
            old = deep_get(arc_document, f"{self._current_arc_key()}.{event_id}.player_status")

            def commit(event_id=event_id, status=status):
                arc_events_doc = self.documents.setdefault(ARC_EVENTS_KEY, {})
                bucket = arc_events_doc.setdefault(self._current_arc_key(), {})
                entry = bucket.get(event_id)
                if isinstance(entry, dict):
                    entry["player_status"] = status
                else:
                    bucket[event_id] = {"player_status": status}

            changes.append(ProposedChange(
                kind=ChangeKind.ARC_EVENT,
                target_key=ARC_EVENTS_KEY,
                description=f'Arc event: "{event_id.replace("_", " ")}" → {status}',
                previous_value=old,
                proposed_value=status,
                commit=commit,
            ))
        return changes

    def _world_state(self) -> dict[str, Any]:
        documents = self.documents
        world_state = documents.get(WORLD_STATE_KEY)
        if not isinstance(world_state, dict):
            world_state = {}
            documents[WORLD_STATE_KEY] = world_state
        return world_state

    def _world_state_changes(self, documents, fields: dict[str, Any]) -> list[ProposedChange]:
        changes = []
        world_state = documents.get(WORLD_STATE_KEY) or {}
        for field, value in fields.items():
            def commit(field=field, value=value):
                self._world_state()[field] = value

            changes.append(ProposedChange(
                kind=ChangeKind.WORLD_STATE,
                target_key=WORLD_STATE_KEY,
                description=f"World state: {field} → {clip(value)}",
                previous_value=world_state.get(field),
                proposed_value=value,
                commit=commit,
            ))
        return changes

    def _divergence_change(self, documents, amount: int) -> ProposedChange:
        current = deep_get(documents.get(WORLD_STATE_KEY), "divergence.rating") or 0

        def commit():
            divergence = apply_divergence(self._world_state(), amount)
            logger.info(f"Divergence applied, rating now {divergence['rating']}")

        return ProposedChange(
            kind=ChangeKind.DIVERGENCE,
            target_key=WORLD_STATE_KEY,
            description=f"Divergence +{amount} ({current} → {current + amount})",
            previous_value=current,
            proposed_value=current + amount,
            commit=commit,
        )

    def _date_change(self, documents, in_world_date: str) -> ProposedChange:
        old = (documents.get(WORLD_STATE_KEY) or {}).get("in_world_date")

        def commit():
            self._world_state()["in_world_date"] = in_world_date

        return ProposedChange(
            kind=ChangeKind.DATE_ADVANCE,
            target_key=WORLD_STATE_KEY,
            description=f"Date: {old or '?'} → {clip(in_world_date)}",
            previous_value=old,
            proposed_value=in_world_date,
            commit=commit,
        )

    def _new_npc_changes(self, documents, entries: list[dict]) -> list[ProposedChange]:
        changes = []
        seen: set[str] = set()
        for entry in entries:
            display_name = entry.get("display_name")
            if not isinstance(display_name, str) or not display_name.strip():
                continue
            display_name = display_name.strip()
            key = npc_key(display_name)
            if key in documents or key in seen:
                logger.debug("Skipping new NPC %r, %s already exists", display_name, key)
                continue
            seen.add(key)
            alias = entry.get("alias") if isinstance(entry.get("alias"), str) else None
            faction = entry.get("faction") if isinstance(entry.get("faction"), str) else None
            first_appeared = entry.get("first_appeared") if isinstance(entry.get("first_appeared"), str) else None
            extra_aliases = entry.get("aliases") if isinstance(entry.get("aliases"), list) else []

            def commit(key=key, display_name=display_name, alias=alias, faction=faction,
                       first_appeared=first_appeared, extra_aliases=extra_aliases):
                documents_now = self.documents
                if key in documents_now:
                    logger.info(f"NPC {key} created elsewhere, keeping existing document")
                    return
                document = scaffold_npc(display_name, alias, faction, first_appeared)
                document["aliases"] = dedupe([*document["aliases"], *extra_aliases])
                documents_now[key] = document

            alias_text = f" ({alias})" if alias else ""
            changes.append(ProposedChange(
                kind=ChangeKind.NEW_NPC,
                target_key=key,
                description=f"New NPC: {display_name}{alias_text}, {faction or 'unknown faction'}",
                previous_value=None,
                proposed_value=dict(entry),
                commit=commit,
            ))
        return changes

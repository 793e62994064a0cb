"""Classifies imported JSON documents and turns each into a reviewable change."""

from __future__ import annotations

import json
import re
from pathlib import PurePosixPath
from typing import Any, Callable

from scenario_tracker.logging import get_logger
from scenario_tracker.models import ChangeKind, DocumentKind, ProposedChange
from scenario_tracker.services.documents import (
    ARC_EVENTS_KEY,
    MASTER_INDEX_KEY,
    WORLD_STATE_KEY,
    npc_key,
)

logger = get_logger("services.importer")

EXISTING_PLACEHOLDER = "[existing file]"
_ARC_KEY_PATTERN = re.compile(r"^arc_\d+")


def _arc_keys(data: dict[str, Any]) -> list[str]:
    return [key for key in data if _ARC_KEY_PATTERN.match(key)]


def classify_document(data: Any) -> DocumentKind:
    if not isinstance(data, dict):
        return DocumentKind.UNKNOWN
    if data.get("display_name") and data.get("power"):
        return DocumentKind.NPC
    if data.get("active_situations") or data.get("faction_status") or (data.get("in_world_date") and data.get("arc")):
        return DocumentKind.WORLD_STATE
    if _arc_keys(data):
        return DocumentKind.ARC_EVENTS
    if data.get("current_arc") is not None and data.get("active_npcs"):
        return DocumentKind.MASTER_INDEX
    if data.get("schema_version") and data.get("setting"):
        return DocumentKind.MASTER_INDEX
    return DocumentKind.UNKNOWN


def target_key(data: Any, original_name: str, kind: DocumentKind | None = None) -> str:
    kind = kind or classify_document(data)
    if kind == DocumentKind.NPC:
        return npc_key(str(data["display_name"]))
    if kind == DocumentKind.WORLD_STATE:
        return WORLD_STATE_KEY
    if kind == DocumentKind.ARC_EVENTS:
        return ARC_EVENTS_KEY
    if kind == DocumentKind.MASTER_INDEX:
        return MASTER_INDEX_KEY
    return PurePosixPath(original_name.replace("\\", "/")).name


def _ellipsize(text: str, limit: int) -> str:
    return text[:limit] + ("…" if len(text) > limit else "")


def build_preview_text(data: Any, kind: DocumentKind) -> str:
    lines: list[str] = []
    if kind == DocumentKind.NPC:
        alias = f" / {data['alias']}" if data.get("alias") else ""
        lines.append(f"Name:           {data['display_name']}{alias}")
        lines.append(f"Faction:        {data.get('faction') or '-'}")
        lines.append(f"Classification: {data.get('classification') or '-'}")
        if data.get("age"):
            lines.append(f"Age:            {data['age']}")
        power = data.get("power")
        if isinstance(power, dict) and power.get("summary"):
            lines.append(f"Power:          {power['summary']}")
        if isinstance(data.get("personality"), str) and data["personality"]:
            lines.append(f"Personality:    {_ellipsize(data['personality'], 150)}")
        if data.get("critical_note"):
            lines.append(f"!! CRITICAL:    {data['critical_note']}")
        state = data.get("current_state")
        if isinstance(state, dict) and state.get("relationship_to_user_character"):
            lines.append(f"Relationship:   {state['relationship_to_user_character']}")
        trigger = data.get("trigger_event")
        if isinstance(trigger, dict) and isinstance(trigger.get("summary"), str):
            lines.append(f"Trigger:        {trigger['summary'][:120]}")
    elif kind == DocumentKind.WORLD_STATE:
        chapter = f" ch.{data['chapter']}" if data.get("chapter") else ""
        lines.append(f"Date:  {data.get('in_world_date') or '-'}")
        lines.append(f"Arc:   {data.get('arc') or '-'}{chapter}")
        divergence = data.get("divergence")
        if isinstance(divergence, dict):
            lines.append(f"Div:   {divergence.get('rating')}/{divergence.get('threshold')}")
        situations = data.get("active_situations") or []
        if isinstance(situations, list) and situations:
            lines.append(f"Active situations ({len(situations)}):")
            for situation in situations[:5]:
                text = situation if isinstance(situation, str) else json.dumps(situation, ensure_ascii=False)
                lines.append(f"  • {text[:80]}")
    elif kind == DocumentKind.ARC_EVENTS:
        arcs = [key for key in data if key.startswith("arc_")]
        lines.append(f"Arcs present: {', '.join(arcs)}")
        for arc in arcs:
            count = len(data[arc]) if isinstance(data[arc], dict) else 0
            lines.append(f"  {arc}: {count} event{'s' if count != 1 else ''}")
    elif kind == DocumentKind.MASTER_INDEX:
        if data.get("setting"):
            lines.append(f"Setting: {data['setting']}")
        if data.get("current_arc"):
            lines.append(f"Arc:     {data['current_arc']}")
        if isinstance(data.get("active_npcs"), list):
            lines.append(f"Active NPCs: {len(data['active_npcs'])}")
    else:
        lines.append(json.dumps(data, indent=2, ensure_ascii=False, default=str)[:400])
    return "\n".join(lines)


def describe_import(data: Any, kind: DocumentKind, original_name: str, key: str, exists: bool) -> str:
    overwrite = " (⚠ will overwrite existing)" if exists else ""
    if kind == DocumentKind.NPC:
        alias = f" / {data['alias']}" if data.get("alias") else ""
        return f"Import NPC: {data['display_name']}{alias}, {data.get('faction') or 'unknown faction'}{overwrite}"
    if kind == DocumentKind.WORLD_STATE:
        return f"Import {WORLD_STATE_KEY}: Arc {data.get('arc') or '?'}, {data.get('in_world_date') or 'no date'}{overwrite}"
    if kind == DocumentKind.ARC_EVENTS:
        arcs = [k for k in data if k.startswith("arc_")]
        return f"Import {ARC_EVENTS_KEY}: {len(arcs)} arc{'s' if len(arcs) != 1 else ''} ({', '.join(arcs)}){overwrite}"
    if kind == DocumentKind.MASTER_INDEX:
        return f"Import {MASTER_INDEX_KEY}: {data.get('setting') or 'no setting listed'}{overwrite}"
    return f'Import "{original_name}" → "{key}" (type unknown, review before accepting){overwrite}'


def build_import_changes(
    files: dict[str, Any],
    documents: dict[str, Any],
    store: Callable[[str, Any], None],
) -> list[ProposedChange]:
    """
    One import change per file. String payloads are parsed as JSON; unparseable ones are skipped.

    :param files: Original file name → document (parsed JSON or raw text)
    :type files: dict[str, Any]
    :param documents: Current entity store, used to flag overwrites
    :type documents: dict[str, Any]
    :param store: Writes one document into the live store on accept
    :type store: Callable[[str, Any], None]
    :return: Changes ready to enqueue
    :rtype: list[ProposedChange]
    """
    changes: list[ProposedChange] = []
    for original_name, payload in files.items():
        data = payload
        if isinstance(payload, str):
            try:
                data = json.loads(payload)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping import {original_name}: {e}")
                continue

        kind = classify_document(data)
        key = target_key(data, original_name, kind)
        if not key:
            logger.warning(f"Skipping import {original_name}: no target name")
            continue
        exists = key in documents

        def commit(key=key, data=data):
            store(key, data)

        changes.append(ProposedChange(
            kind=ChangeKind.IMPORT,
            target_key=key,
            description=describe_import(data, kind, original_name, key, exists),
            preview_text=build_preview_text(data, kind),
            previous_value=EXISTING_PLACEHOLDER if exists else None,
            proposed_value=data,
            commit=commit,
        ))
    return changes

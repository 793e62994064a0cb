from scenario_tracker.models import ChangeKind, DocumentKind
from scenario_tracker.services.importer import build_import_changes, classify_document, target_key
from scenario_tracker.services.review_queue import ReviewQueue


NPC_FILE = {
    "display_name": "Amy Dallon",
    "alias": "Panacea",
    "faction": "New Wave",
    "power": {"summary": "Biokinesis by touch"},
}


def test_classification_by_shape() -> None:
    assert classify_document(NPC_FILE) == DocumentKind.NPC
    assert classify_document({"in_world_date": "April", "arc": "2"}) == DocumentKind.WORLD_STATE
    assert classify_document({"active_situations": ["Lung loose"]}) == DocumentKind.WORLD_STATE
    assert classify_document({"arc_1": {}, "arc_2": {}}) == DocumentKind.ARC_EVENTS
    assert classify_document({"schema_version": "1.0", "setting": "Worm"}) == DocumentKind.MASTER_INDEX
    assert classify_document({"current_arc": "1", "active_npcs": ["x"]}) == DocumentKind.MASTER_INDEX
    assert classify_document({"display_name": "No power"}) == DocumentKind.UNKNOWN
    assert classify_document("text") == DocumentKind.UNKNOWN


def test_target_keys() -> None:
    assert target_key(NPC_FILE, "amy.json") == "npc_amy_dallon.json"
    assert target_key({"arc_1": {}}, "events.json") == "arc_events.json"
    assert target_key({"misc": 1}, "C:\\exports\\extra.json") == "extra.json"


def test_import_changes_flag_overwrites_and_skip_bad_json(documents) -> None:
    files = {
        "amy.json": NPC_FILE,
        "world.json": '{"in_world_date": "April 20, 2011", "arc": "3"}',
        "broken.json": "{not json",
    }
    changes = build_import_changes(files, documents, documents.__setitem__)

    assert [change.target_key for change in changes] == ["npc_amy_dallon.json", "world_state.json"]
    amy, world = changes
    assert amy.kind == ChangeKind.IMPORT
    assert amy.previous_value is None
    assert "Panacea" in amy.description
    assert "Power:          Biokinesis by touch" in amy.preview_text
    assert world.previous_value == "[existing file]"
    assert "will overwrite existing" in world.description


def test_accepted_import_writes_document(documents) -> None:
    queue = ReviewQueue(lambda: documents)
    (change,) = queue.propose_imports({"amy.json": NPC_FILE})
    assert "npc_amy_dallon.json" not in documents
    queue.accept(change.id)
    assert documents["npc_amy_dallon.json"]["alias"] == "Panacea"

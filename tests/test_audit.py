"""Agent action trail."""
import pytest

from talentbrain.audit import ActionLogger, create_action_payload
from talentbrain.errors import DatabaseError, InvalidInput


async def test_log_inserts_timestamped_payload(store):
    entry = await ActionLogger(store).log(
        "role", "r1", create_action_payload("nudge", {"to": "p1"}), session_id="s1"
    )

    assert entry.id == "action-1"
    row = store.inserted[0]
    assert row["entity_type"] == "role"
    assert row["payload"]["type"] == "nudge"
    assert row["payload"]["version"] == "1.0"
    assert "timestamp" in row["payload"]
    assert "semantic_metrics" not in row


@pytest.mark.parametrize("entity_id,payload", [("", {"type": "x"}), ("  ", {"type": "x"}), ("r1", {})])
async def test_log_validates_before_insert(store, entity_id, payload):
    with pytest.raises(InvalidInput):
        await ActionLogger(store).log("role", entity_id, payload)
    assert store.inserted == []


async def test_log_surfaces_store_errors(store):
    store.fail_with_db_error("insert_agent_action")

    with pytest.raises(DatabaseError):
        await ActionLogger(store).log("role", "r1", {"type": "x"})


async def test_record_never_raises(store):
    store.fail_with_db_error("insert_agent_action")

    assert await ActionLogger(store).record("role", "r1", {"type": "x"}) is None

"""Capability heatmap rollup and summary."""
import pytest

from talentbrain.analyst import CapabilityRollup, summarize_heatmap
from talentbrain.errors import InvalidInput
from talentbrain.formatter import format_heatmap_summary

ROWS = [
    {"group": "Engineering", "capability": "Python", "role_count": 8, "total_roles": 10},
    {"group": "Engineering", "capability": "SQL", "role_count": 2, "total_roles": 10},
    {"group": "Finance", "capability": "SQL", "role_count": 4, "total_roles": 5},
    {"group": "Finance", "capability": "Modelling", "role_count": 5, "total_roles": 5},
]


def test_matrix_fills_missing_cells():
    matrix = summarize_heatmap(ROWS)["matrix"]

    assert matrix["Engineering"] == {"Python": 8, "SQL": 2, "Modelling": 0}
    assert matrix["Finance"]["Python"] == 0


def test_summary_stats():
    summary = summarize_heatmap(ROWS)["summary"]

    assert summary["total_roles"] == 15
    assert summary["total_groups"] == 2
    assert summary["total_capabilities"] == 3

    top = {c["name"]: c for c in summary["top_capabilities"]}
    assert summary["top_capabilities"][0]["name"] == "Python"
    assert top["SQL"]["total_occurrences"] == 6
    assert top["SQL"]["groups_present"] == 2
    assert top["SQL"]["average_per_group"] == 3.0


def test_group_breakdown():
    groups = summarize_heatmap(ROWS)["summary"]["groups"]

    assert [g["name"] for g in groups] == ["Engineering", "Finance"]
    finance = groups[1]
    assert finance["unique_capabilities"] == 2
    assert finance["top_capabilities"][0] == {"name": "Modelling", "count": 5, "percentage": 100.0}
    assert finance["top_capabilities"][1]["percentage"] == 80.0


def test_empty_rollup():
    heatmap = summarize_heatmap([])

    assert heatmap["summary"]["total_groups"] == 0
    assert format_heatmap_summary(heatmap) == "No capability data found for the selected scope."


async def test_rollup_rejects_unknown_scope(store):
    with pytest.raises(InvalidInput):
        await CapabilityRollup(store).run("planet")
    assert store.calls == []


async def test_rollup_passes_rows_through(store):
    store.heatmap_rows = ROWS

    assert await CapabilityRollup(store).run("division", ["acme"]) == ROWS

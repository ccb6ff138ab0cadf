"""Gap classification, severity and ordering."""
import pytest

from talentbrain.errors import DatabaseError, InvalidInput
from talentbrain.gap_analyzer import GapAnalyzer, classify, level_ordinal


@pytest.mark.parametrize(
    "level,expected",
    [
        ("Foundational", 1),
        ("intermediate", 2),
        ("ADEPT", 3),
        ("Advanced", 4),
        ("Highly Advanced", 5),
        ("4", 4),
        (9, 5),
        ("Wizard", 1),
        (None, 1),
    ],
)
def test_level_ordinal(level, expected):
    assert level_ordinal(level) == expected


async def test_data_analysis_adept_vs_intermediate(store):
    store.require("R", "capability", "c1", "Data Analysis", "Adept", category="Analytics")
    store.achieve("P", "capability", "c1", "Intermediate")

    gaps = await GapAnalyzer(store).analyze("P", "R", "capability")

    assert len(gaps) == 1
    gap = gaps[0]
    assert gap.gap_type == "insufficient"
    assert gap.severity == pytest.approx(33.333, abs=0.01)
    assert gap.required_level == "Adept"
    assert gap.achieved_level == "Intermediate"


async def test_severity_invariants(store):
    store.require("R", "capability", "c1", "Met", "Adept")
    store.require("R", "capability", "c2", "Missing", "Foundational")
    store.require("R", "skill", "s1", "Short", "Highly Advanced")
    store.achieve("P", "capability", "c1", "Highly Advanced")
    store.achieve("P", "skill", "s1", "Adept")

    gaps = {g.name: g for g in await GapAnalyzer(store).analyze("P", "R")}

    assert gaps["Met"].gap_type == "met" and gaps["Met"].severity == 0
    assert gaps["Missing"].gap_type == "missing" and gaps["Missing"].severity == 100
    assert gaps["Short"].gap_type == "insufficient"
    assert 0 < gaps["Short"].severity < 100


async def test_one_record_per_requirement_across_kinds(store):
    store.require("R", "capability", "c1", "Strategy", "Adept")
    store.require("R", "skill", "s1", "Python", "Adept")
    store.require("R", "skill", "s2", "SQL", "Adept")

    gaps = await GapAnalyzer(store).analyze("P", "R")

    assert sorted(g.kind for g in gaps) == ["capability", "skill", "skill"]


async def test_sorted_by_severity_then_category(store):
    store.require("R", "capability", "c1", "Zeta", "Adept", category="Zulu")
    store.require("R", "capability", "c2", "Alpha", "Adept", category="Alpha")
    store.require("R", "capability", "c3", "Partial", "Advanced", category="Mid")
    store.require("R", "capability", "c4", "Done", "Foundational", category="Aaa")
    store.achieve("P", "capability", "c3", "Intermediate")
    store.achieve("P", "capability", "c4", "Adept")

    gaps = await GapAnalyzer(store).analyze("P", "R", "capability")

    assert [g.name for g in gaps] == ["Alpha", "Zeta", "Partial", "Done"]
    assert [g.severity for g in gaps] == sorted((g.severity for g in gaps), reverse=True)


@pytest.mark.parametrize("profile_id,role_id", [("", "R"), ("P", ""), (None, "R")])
async def test_missing_ids_fail_before_io(store, profile_id, role_id):
    with pytest.raises(InvalidInput):
        await GapAnalyzer(store).analyze(profile_id, role_id)
    assert store.calls == []


async def test_store_errors_propagate(store):
    store.fail_with_db_error("get_role_requirements")

    with pytest.raises(DatabaseError):
        await GapAnalyzer(store).analyze("P", "R")


def test_classify_missing_when_no_record():
    assert classify("Adept", None) == ("missing", 100.0)

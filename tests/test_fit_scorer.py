"""Fit score composition and tiers."""
import pytest

from talentbrain.config import DEFAULT_SCORING_POLICY, ScoringPolicy
from talentbrain.errors import DatabaseError, InvalidInput
from talentbrain.fit_scorer import FitScorer, round_half_up


async def test_weighted_score(store):
    # capabilities: one missing, one insufficient -> 100 * (1 - 1.5 / 2) = 25
    store.require("R", "capability", "c1", "Strategy", "Adept")
    store.require("R", "capability", "c2", "Forecasting", "Advanced")
    store.achieve("P", "capability", "c2", "Intermediate")
    # skills: all met -> 100
    store.require("R", "skill", "s1", "SQL", "Intermediate")
    store.achieve("P", "skill", "s1", "Adept")
    store.similarities[("P", "R")] = 0.8

    fit = await FitScorer(store).score("P", "R")

    assert fit.capability_score == pytest.approx(25.0)
    assert fit.skill_score == pytest.approx(100.0)
    assert fit.semantic_score == pytest.approx(80.0)
    assert fit.score == 64
    assert fit.summary == "Good fit"
    assert fit.missing_capabilities == ["Strategy"]
    assert fit.missing_skills == []


async def test_role_without_skills_scores_full_skill_component(store):
    store.require("R", "capability", "c1", "Strategy", "Adept")
    store.achieve("P", "capability", "c1", "Adept")

    fit = await FitScorer(store).score("P", "R")

    assert fit.skill_score == 100
    assert fit.capability_score == 100
    assert fit.semantic_score == 0
    assert fit.score == 70


async def test_score_matches_weights_and_stays_in_bounds(store):
    levels = ["Foundational", "Intermediate", "Adept", "Advanced", None]
    for i, level in enumerate(levels):
        store.require("R", "capability", f"c{i}", f"Cap {i}", "Advanced")
        if level:
            store.achieve("P", "capability", f"c{i}", level)
    store.require("R", "skill", "s1", "SQL", "Highly Advanced")
    store.similarities[("P", "R")] = 1.7  # clamped

    fit = await FitScorer(store).score("P", "R")

    policy = DEFAULT_SCORING_POLICY
    weighted = (
        fit.capability_score * policy.capability_weight
        + fit.skill_score * policy.skill_weight
        + fit.semantic_score * policy.semantic_weight
    )
    assert fit.score == round_half_up(weighted)
    assert 0 <= fit.score <= 100
    assert fit.semantic_score == 100


async def test_similarity_failure_scores_zero_semantic(store):
    store.fail_with_db_error("similarity")

    fit = await FitScorer(store).score("P", "R")

    assert fit.semantic_score == 0
    assert fit.score == 70


async def test_gap_failure_propagates(store):
    store.fail_with_db_error("get_profile_levels")

    with pytest.raises(DatabaseError):
        await FitScorer(store).score("P", "R")


async def test_missing_ids_fail_before_io(store):
    with pytest.raises(InvalidInput):
        await FitScorer(store).score("", "R")
    assert store.calls == []


@pytest.mark.parametrize(
    "score,tier",
    [(100, "Excellent fit"), (80, "Excellent fit"), (79, "Good fit"), (60, "Good fit"),
     (59, "Moderate fit"), (40, "Moderate fit"), (39, "Limited fit"), (0, "Limited fit")],
)
def test_tiers(score, tier):
    assert ScoringPolicy().tier(score) == tier


def test_round_half_up():
    assert round_half_up(64.5) == 65
    assert round_half_up(64.49) == 64
    assert round_half_up(0.5) == 1

"""Planner parsing and fallbacks."""
import json

import pytest

from talentbrain.llm import LLMError
from talentbrain.planner import (
    FALLBACK_CONFIDENCE,
    PlannerRecommender,
    fallback_recommendation,
    parse_recommendations,
)

from .conftest import FakeChatModel

ANCHORS = {"profileId": "p1", "roleId": None}


async def test_no_message_uses_fallback_without_calling_model():
    model = FakeChatModel()

    result = await PlannerRecommender(model).recommend("candidate", ANCHORS, None)

    assert not result.degraded
    assert [r.tool for r in result.value] == ["getSuggestedCareerPaths"]
    assert result.value[0].inputs == {"profileId": "p1"}
    assert model.calls == []


async def test_recommendations_sorted_by_confidence():
    reply = json.dumps(
        {
            "recommendations": [
                {"tool": "getSkillGaps", "reason": "skills", "confidence": 0.4},
                {"tool": "scoreProfileFit", "reason": "fit", "confidence": 0.95},
            ]
        }
    )
    model = FakeChatModel(planner_reply=reply)

    result = await PlannerRecommender(model).recommend("hiring", {"roleId": "r1"}, "How good is p1?")

    assert not result.degraded
    assert [r.tool for r in result.value] == ["scoreProfileFit", "getSkillGaps"]
    assert model.calls[0]["json_mode"] is True
    assert "How good is p1?" in model.calls[0]["user"]


@pytest.mark.parametrize("reply", ["not json at all", '{"recommendations": []}', '[{"tool": "launchRocket"}]'])
async def test_unusable_output_falls_back(reply):
    result = await PlannerRecommender(FakeChatModel(planner_reply=reply)).recommend("analyst", {}, "hello")

    assert result.degraded
    assert result.value[0].tool == "generateCapabilityHeatmap"
    assert result.value[0].confidence == FALLBACK_CONFIDENCE


async def test_model_error_falls_back():
    model = FakeChatModel(error=LLMError("rate limited"))

    result = await PlannerRecommender(model).recommend("general", {}, "hello")

    assert result.degraded
    assert result.value[0].tool == "analyzeSkillsAndCapabilities"
    assert "rate limited" in result.reason


def test_parse_accepts_bare_array_and_fences():
    content = '```json\n[{"tool": "getOpenJobs", "reason": "jobs", "confidence": 0.8}]\n```'

    recs = parse_recommendations(content, "candidate")

    assert [r.tool for r in recs] == ["getOpenJobs"]


def test_parse_drops_unknown_tools_and_clamps_confidence():
    content = json.dumps(
        [
            {"tool": "getCapabilityGaps", "confidence": 7},
            {"tool": "getOpenJobs", "confidence": -1},  # not a hiring tool
            {"tool": "nudge", "confidence": "high", "inputs": "bad"},
            "junk",
        ]
    )

    recs = parse_recommendations(content, "hiring")

    assert [(r.tool, r.confidence) for r in recs] == [("getCapabilityGaps", 1.0), ("nudge", 0.5)]
    assert recs[1].inputs == {}
    assert recs[0].reason == "No reason provided"


def test_fallback_per_mode():
    assert fallback_recommendation("hiring", {"roleId": "r1"}).tool == "getMatchingProfiles"
    assert fallback_recommendation("hiring", {"roleId": "r1"}).inputs == {"roleId": "r1"}


def test_parse_skips_non_string_tools():
    content = json.dumps(
        [
            {"tool": ["getSkillGaps"], "confidence": 0.9},
            {"tool": {"name": "getSkillGaps"}},
            {"tool": None},
            {"tool": "getSkillGaps", "confidence": 0.6},
        ]
    )

    recs = parse_recommendations(content, "hiring")

    assert [r.tool for r in recs] == ["getSkillGaps"]


async def test_only_malformed_tools_falls_back():
    reply = '{"recommendations": [{"tool": ["getSkillGaps"], "confidence": 0.9}]}'

    result = await PlannerRecommender(FakeChatModel(planner_reply=reply)).recommend(
        "hiring", {"roleId": "r1"}, "Who should I interview?"
    )

    assert result.degraded
    assert [r.tool for r in result.value] == ["getMatchingProfiles"]

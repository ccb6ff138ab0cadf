"""LLM planner: pick analysis tools for a turn, with a deterministic fallback per mode."""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from talentbrain.config import LLM_TIMEOUT
from talentbrain.llm import ChatModel, LLMError, clean_json_response
from talentbrain.models import PlannerRecommendation, SemanticContext
from talentbrain.results import StepResult

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.7

# ==================== TOOL VOCABULARY ====================

AVAILABLE_ACTIONS: Dict[str, Dict[str, str]] = {
    "candidate": {
        "getProfileContext": "Load profile details and embedding",
        "getSuggestedCareerPaths": "Recommend future roles based on profile",
        "getJobReadiness": "Score profile readiness for a job",
        "getOpenJobs": "Get list of available job opportunities",
        "getCapabilityGaps": "Compare profile capabilities to a role",
        "getSkillGaps": "Compare profile skills to a role",
        "getSemanticSkillRecommendations": "Suggest skill improvements via embeddings",
        "getSemanticMatches": "Return semantically similar records",
        "embedContext": "Generate and store an embedding",
        "nudge": "Prompt profile to take an action",
        "handleChatInteraction": "Interpret chat and guide next steps",
        "scoreProfileFit": "Calculate overall fit score for a role",
    },
    "hiring": {
        "getRoleDetail": "Load role details and embedding",
        "getMatchingProfiles": "Find profiles that match role requirements",
        "getCapabilityGaps": "Compare a profile to role capability needs",
        "getSkillGaps": "Compare a profile to role skill needs",
        "scoreProfileFit": "Calculate fit score for a specific profile",
        "getSemanticCompanyFit": "Compare profile to company/division embedding",
        "embedContext": "Generate and store an embedding",
        "nudge": "Send a system-generated prompt",
        "handleChatInteraction": "Understand and respond to manager input",
    },
    "analyst": {
        "generateCapabilityHeatmap": "Capability distribution by taxonomy, division, region or company",
        "summarizeCapabilityHeatmap": "Summarize the most and least common capabilities",
        "generateCapabilityInsights": "Narrative insights over the capability rollup",
        "handleChatInteraction": "Answer follow-up questions about the analysis",
    },
    "general": {
        "analyzeSkillsAndCapabilities": "Explain skills and capabilities relevant to the question",
        "getSemanticMatches": "Return roles and profiles similar to the message",
        "getMatchingRolesForPerson": "Find roles that suit a profile",
        "getMatchingPeopleForRole": "Find people who suit a role",
        "handleChatInteraction": "Interpret chat and guide next steps",
    },
}

FALLBACK_TOOLS = {
    "candidate": ("getSuggestedCareerPaths", "Fallback: suggesting career paths based on profile"),
    "hiring": ("getMatchingProfiles", "Fallback: finding matching profiles for the role"),
    "analyst": ("generateCapabilityHeatmap", "Fallback: building the capability heatmap"),
    "general": ("analyzeSkillsAndCapabilities", "Fallback: analyzing relevant skills and capabilities"),
}

SYSTEM_PROMPT = """You are an AI workforce planning assistant that selects the most appropriate tools to run for the user's request.

Available tools:
{tools}

Your task is to:
1. Analyze the user's message and context
2. Select the most appropriate tools to use
3. Provide a clear reason for each tool selection
4. Only select tools whose required inputs are available

Respond with ONLY a JSON object of the form:
{{"recommendations": [{{"tool": "name_of_tool", "reason": "why", "confidence": 0.0-1.0, "inputs": {{}}}}]}}"""


def fallback_recommendation(mode: str, anchor_ids: Optional[Dict[str, Any]] = None) -> PlannerRecommendation:
    tool, reason = FALLBACK_TOOLS[mode]
    inputs = {k: v for k, v in (anchor_ids or {}).items() if v}
    return PlannerRecommendation(tool=tool, reason=reason, confidence=FALLBACK_CONFIDENCE, inputs=inputs)


def parse_recommendations(content: str, mode: str) -> List[PlannerRecommendation]:
    """
    Parse planner output into validated recommendations.

    Accepts a bare JSON array or {"recommendations": [...]}. Unknown tools
    and malformed items are dropped; confidence is clamped to [0, 1].
    """
    data = json.loads(clean_json_response(content))
    if isinstance(data, dict):
        data = data.get("recommendations", [])
    if not isinstance(data, list):
        return []

    vocabulary = AVAILABLE_ACTIONS[mode]
    recommendations = []
    for item in data:
        if not isinstance(item, dict):
            continue
        tool = item.get("tool")
        if not isinstance(tool, str) or tool not in vocabulary:
            logger.debug("Dropping unknown planner tool: %r", tool)
            continue

        try:
            confidence = float(item.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        inputs = item.get("inputs") if isinstance(item.get("inputs"), dict) else {}

        try:
            recommendations.append(
                PlannerRecommendation(
                    tool=tool,
                    reason=str(item.get("reason") or "No reason provided"),
                    confidence=min(1.0, max(0.0, confidence)),
                    inputs=inputs,
                )
            )
        except ValidationError as e:
            logger.debug("Dropping malformed planner item: %s", e)

    return recommendations


class PlannerRecommender:
    def __init__(self, chat_model: ChatModel, timeout: float = LLM_TIMEOUT):
        self.chat_model = chat_model
        self.timeout = timeout

    async def recommend(
        self,
        mode: str,
        anchor_ids: Dict[str, Any],
        last_message: Optional[str],
        semantic_context: Optional[SemanticContext] = None,
    ) -> StepResult[List[PlannerRecommendation]]:
        """Never raises; the result always holds at least one recommendation."""
        if not last_message:
            return StepResult.ok([fallback_recommendation(mode, anchor_ids)])

        tools = "\n".join(f"- {tool}: {desc}" for tool, desc in AVAILABLE_ACTIONS[mode].items())
        user_prompt = (
            "Context:\n"
            f"- Mode: {mode}\n"
            f"- Profile ID: {anchor_ids.get('profileId') or 'Not provided'}\n"
            f"- Role ID: {anchor_ids.get('roleId') or 'Not provided'}\n"
            f"- Company IDs: {', '.join(anchor_ids.get('companyIds') or []) or 'Not provided'}\n"
            f"- Current Focus: {(semantic_context.current_focus if semantic_context else None) or 'None'}\n"
            f"- User Message: {last_message}\n\n"
            "Based on this context, return the recommended tools."
        )

        try:
            content = await asyncio.wait_for(
                self.chat_model.complete(
                    SYSTEM_PROMPT.format(tools=tools),
                    user_prompt,
                    json_mode=True,
                    temperature=0.2,
                    max_tokens=800,
                ),
                timeout=self.timeout,
            )
            recommendations = parse_recommendations(content, mode)
        except asyncio.TimeoutError:
            return self._fallback(mode, anchor_ids, "planner timed out")
        except LLMError as e:
            return self._fallback(mode, anchor_ids, f"planner unavailable: {e}")
        except (TypeError, ValueError) as e:
            return self._fallback(mode, anchor_ids, f"unparsable planner output: {e}")

        if not recommendations:
            return self._fallback(mode, anchor_ids, "planner returned no usable tools")

        recommendations.sort(key=lambda r: r.confidence, reverse=True)
        logger.info(f"🧭 Planner ({mode}): {', '.join(r.tool for r in recommendations)}")
        return StepResult.ok(recommendations)

    @staticmethod
    def _fallback(mode: str, anchor_ids: Dict[str, Any], reason: str) -> StepResult[List[PlannerRecommendation]]:
        logger.warning(f"⚠️  Planner fallback for {mode}: {reason}")
        return StepResult.fallback([fallback_recommendation(mode, anchor_ids)], reason=reason)

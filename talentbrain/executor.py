"""
MCP loop executor - per-request orchestration.

validating → context_loading → planning → matching → logging → responding,
with ``error`` reachable from any step. Mode-specific work is dispatched
through a handler table keyed by request mode.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from talentbrain.analyst import CapabilityRollup, summarize_heatmap
from talentbrain.audit import ActionLogger, create_action_payload
from talentbrain.batch_scorer import BatchScorer
from talentbrain.cache import CacheBackend, get_cache
from talentbrain.config import (
    CANDIDATE_MATCH_THRESHOLD,
    DEFAULT_SCORING_POLICY,
    ENABLE_RESULT_CACHE,
    GENERAL_MATCH_THRESHOLD,
    HIRING_MATCH_THRESHOLD,
    MAX_MATCHES_RETURNED,
    MAX_RECOMMENDATIONS_RETURNED,
    MAX_RETRIES,
    OPEN_JOBS_LIMIT,
    PLANNER_MODEL,
    PROFILE_POOL_LIMIT,
    RESULT_CACHE_TTL,
    ScoringPolicy,
)
from talentbrain.context_loader import ConversationContextLoader
from talentbrain.errors import (
    VALIDATION_ERROR,
    DatabaseError,
    InvalidInput,
    InvalidRequest,
    MCPError,
    error_type_of,
)
from talentbrain.fit_scorer import FitScorer
from talentbrain.formatter import (
    format_batch_results,
    format_gaps,
    format_heatmap_summary,
    format_history,
    format_matches,
)
from talentbrain.gap_analyzer import GapAnalyzer
from talentbrain.llm import ChatModel, Embedder, EmbeddingError
from talentbrain.models import (
    AnalystRequest,
    BaseMCPRequest,
    BatchResult,
    CandidateRequest,
    ChatResponse,
    ConversationContext,
    GeneralRequest,
    HiringRequest,
    MatchCandidate,
    MCPData,
    MCPResponse,
    NextAction,
    PlannerRecommendation,
    parse_request,
)
from talentbrain.narrator import DEGRADED_MESSAGE, GENERIC_FOLLOW_UP, Narrator, error_message
from talentbrain.planner import PlannerRecommender
from talentbrain.results import StepResult
from talentbrain.retry_cache import ResultCache, RetryTracker, is_replayable, request_hash
from talentbrain.semantic_matcher import SemanticMatcher
from talentbrain.store import SQLStore, WorkforceStore

logger = logging.getLogger(__name__)

# Planner tools the executor knows how to run when both IDs are present
GAP_TOOLS = {"getCapabilityGaps": "capability", "getSkillGaps": "skill"}
FIT_TOOL = "scoreProfileFit"
EXECUTABLE_TOOLS = set(GAP_TOOLS) | {FIT_TOOL}

MAX_NEXT_ACTIONS = 5


class LoopState(str, Enum):
    VALIDATING = "validating"
    CONTEXT_LOADING = "context_loading"
    PLANNING = "planning"
    MATCHING = "matching"
    LOGGING = "logging"
    RESPONDING = "responding"
    ERROR = "error"


@dataclass
class LoopDependencies:
    """Everything the loop talks to; tests swap in fakes."""

    store: WorkforceStore
    cache: CacheBackend
    chat_model: ChatModel
    embedder: Embedder
    planner_model: Optional[ChatModel] = None
    policy: ScoringPolicy = DEFAULT_SCORING_POLICY
    max_retries: int = MAX_RETRIES
    result_cache_ttl: int = RESULT_CACHE_TTL
    enable_result_cache: bool = ENABLE_RESULT_CACHE

    @classmethod
    def from_config(cls) -> "LoopDependencies":
        return cls(
            store=SQLStore(),
            cache=get_cache(),
            chat_model=ChatModel(),
            embedder=Embedder(),
            planner_model=ChatModel(model=PLANNER_MODEL),
        )


@dataclass
class LoopRun:
    """Mutable per-request bookkeeping."""

    request: Optional[BaseMCPRequest] = None
    state: LoopState = LoopState.VALIDATING
    actions_taken: List[str] = field(default_factory=list)
    degraded_steps: List[str] = field(default_factory=list)

    def advance(self, state: LoopState):
        logger.debug("MCP loop → %s", state.value)
        self.state = state

    def track(self, step: str, result: StepResult) -> Any:
        if result.degraded:
            self.degraded_steps.append(step)
        return result.value


@dataclass
class ModeOutcome:
    matches: List[MatchCandidate] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    data_text: str = ""
    next_actions: List[NextAction] = field(default_factory=list)
    degraded: bool = False
    reason: Optional[str] = None


def audit_entity(request: BaseMCPRequest) -> Tuple[str, str]:
    """(entity_type, entity_id) an audit entry for this request is filed under."""
    if isinstance(request, CandidateRequest):
        return "profile", request.profile_id
    if isinstance(request, HiringRequest):
        return "role", request.role_id
    if isinstance(request, AnalystRequest):
        return "analysis", ",".join(sorted(request.context.company_ids)) or "all"
    return "session", request.session_id or "anonymous"


def priority_for(confidence: float) -> str:
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.5:
        return "medium"
    return "low"


class MCPLoopExecutor:
    def __init__(self, deps: LoopDependencies):
        self.deps = deps
        self.store = deps.store
        self.embedder = deps.embedder
        self.policy = deps.policy

        self.matcher = SemanticMatcher(deps.store)
        self.gap_analyzer = GapAnalyzer(deps.store)
        self.fit_scorer = FitScorer(deps.store, self.gap_analyzer, deps.policy)
        self.batch_scorer = BatchScorer(self.fit_scorer, self.matcher)
        self.context_loader = ConversationContextLoader(deps.store)
        self.planner = PlannerRecommender(deps.planner_model or deps.chat_model)
        self.narrator = Narrator(deps.chat_model)
        self.audit = ActionLogger(deps.store)
        self.rollup = CapabilityRollup(deps.store)

        self.retry = RetryTracker(deps.cache, ceiling=deps.max_retries)
        self.result_cache = ResultCache(deps.cache, ttl=deps.result_cache_ttl)

        self.handlers = {
            "candidate": self._run_candidate,
            "hiring": self._run_hiring,
            "analyst": self._run_analyst,
            "general": self._run_general,
        }

    # ==================== ENTRY POINT ====================

    async def execute(self, payload: Any) -> Tuple[int, MCPResponse]:
        """
        Run one request through the loop.

        Returns (http_status, response). Never raises.
        """
        run = LoopRun()
        try:
            request = parse_request(payload)
            run.request = request
            self._validate_anchor(request)

            if request.session_id:
                await self.retry.check_and_increment(request.session_id)

            replayable = self.deps.enable_result_cache and is_replayable(request)
            digest = request_hash(request) if replayable else None
            if digest:
                cached = await self.result_cache.lookup(digest)
                if cached is not None:
                    if request.session_id:
                        await self.retry.record_success(request.session_id)
                    return 200, MCPResponse.model_validate(cached)

            response = await self._run(request, run)

            if request.session_id:
                await self.retry.record_success(request.session_id)
            if digest and not run.degraded_steps:
                await self.result_cache.save(digest, response.to_json_dict())
            elif run.degraded_steps:
                logger.info(f"Not caching degraded response ({', '.join(run.degraded_steps)})")

            return 200, response

        except MCPError as e:
            return await self._fail(run, e)
        except Exception as e:
            logger.exception(f"❌ Unexpected MCP loop error during {run.state.value}")
            return await self._fail(run, e)

    @staticmethod
    def _validate_anchor(request: BaseMCPRequest):
        if isinstance(request, CandidateRequest) and not request.profile_id:
            raise InvalidRequest("profileId is required for candidate mode")
        if isinstance(request, HiringRequest) and not request.role_id:
            raise InvalidRequest("roleId is required for hiring mode")

    # ==================== PIPELINE ====================

    async def _run(self, request: BaseMCPRequest, run: LoopRun) -> MCPResponse:
        logger.info(f"🔄 MCP loop start: mode={request.mode} session={request.session_id or '-'}")

        run.advance(LoopState.CONTEXT_LOADING)
        context: ConversationContext = run.track(
            "context", await self.context_loader.load(request.session_id)
        )
        if request.session_id:
            run.actions_taken.append("loadConversationContext")

        run.advance(LoopState.PLANNING)
        anchor_ids = {
            "profileId": request.profile_id,
            "roleId": request.role_id,
            "companyIds": request.context.company_ids,
        }
        plan: List[PlannerRecommendation] = run.track(
            "planner",
            await self.planner.recommend(
                request.mode, anchor_ids, request.last_message, request.context.semantic_context
            ),
        )
        run.actions_taken.append("getPlannerRecommendations")

        run.advance(LoopState.MATCHING)
        handler = self.handlers[request.mode]
        try:
            outcome = await handler(request, context, run)
            tool_recs, tool_text, executed = await self._run_planner_tools(request, plan, run)
            outcome.recommendations.extend(tool_recs)
            if tool_text:
                outcome.data_text = f"{outcome.data_text}\n\n{tool_text}".strip()
        except (DatabaseError, InvalidInput) as e:
            logger.warning(f"⚠️  {request.mode} matching degraded: {e}")
            outcome = ModeOutcome(degraded=True, reason=str(e))
            executed = set()
            run.degraded_steps.append("matching")

        outcome.next_actions = self._next_actions(plan, executed, outcome.next_actions)

        run.advance(LoopState.LOGGING)
        await self._log_run(request, plan, outcome, run)

        run.advance(LoopState.RESPONDING)
        if outcome.degraded:
            chat = ChatResponse(message=DEGRADED_MESSAGE, follow_up_question=GENERIC_FOLLOW_UP)
        else:
            chat = run.track(
                "narrative",
                await self.narrator.narrate(
                    request.mode, outcome.data_text, request.last_message, format_history(context)
                ),
            )

        logger.info(
            f"✅ MCP loop done: mode={request.mode} matches={len(outcome.matches)} "
            f"recommendations={len(outcome.recommendations)} degraded={run.degraded_steps or 'no'}"
        )
        return MCPResponse(
            success=True,
            data=MCPData(
                matches=outcome.matches[:MAX_MATCHES_RETURNED],
                recommendations=outcome.recommendations,
                chat_response=chat,
                next_actions=outcome.next_actions,
                actions_taken=run.actions_taken,
            ),
        )

    async def _fail(self, run: LoopRun, exc: BaseException) -> Tuple[int, MCPResponse]:
        error_type = error_type_of(exc)
        failed_at = run.state.value
        run.advance(LoopState.ERROR)

        message = exc.message if isinstance(exc, MCPError) else "An unexpected error occurred"
        status = exc.status_code if isinstance(exc, MCPError) else 500
        if isinstance(exc, MCPError):
            logger.warning(f"❌ MCP loop failed during {failed_at}: [{error_type}] {message}")

        request = run.request
        # Validation failures never touch the store
        if request is not None and request.session_id and error_type != VALIDATION_ERROR:
            entity_type, entity_id = audit_entity(request)
            await self.audit.record(
                entity_type,
                entity_id,
                create_action_payload(
                    "mcp_loop_error",
                    {"mode": request.mode, "errorType": error_type, "message": message, "state": failed_at},
                ),
                session_id=request.session_id,
            )

        return status, MCPResponse(
            success=False,
            error=message,
            error_type=error_type,
            data=MCPData(
                chat_response=ChatResponse(message=error_message(error_type)),
                actions_taken=run.actions_taken,
            ),
        )

    # ==================== MODE HANDLERS ====================

    async def _run_candidate(self, request: CandidateRequest, context: ConversationContext, run: LoopRun) -> ModeOutcome:
        profile_id = request.profile_id
        matches = run.track(
            "semantic_matches",
            await self.matcher.match(
                profile_id, "profile", "role", limit=MAX_MATCHES_RETURNED, min_similarity=CANDIDATE_MATCH_THRESHOLD
            ),
        )
        run.actions_taken.append("getSemanticMatches")

        try:
            role_ids = await self.store.get_open_job_role_ids(OPEN_JOBS_LIMIT)
        except DatabaseError as e:
            return self._partial(matches, e, run)
        run.actions_taken.append("getOpenJobs")

        results = await self.batch_scorer.batch_score(profile_id, role_ids, anchor_type="profile")
        run.actions_taken.append("scoreProfileFit")

        names = await self._names("role", [r.candidate_id for r in results])
        profile = (await self._names("profile", [profile_id])).get(profile_id, profile_id)
        recommendations = self._rank(results, names, "role_fit")

        data_text = (
            f"Profile: {profile}\n\n"
            f"Semantically similar roles:\n{format_matches(matches)}\n\n"
            f"Fit scores against open roles:\n{format_batch_results(results, names)}"
        )
        next_actions = []
        if recommendations:
            next_actions.append(
                NextAction(
                    type="explore_role",
                    description=f"Review the capability and skill gaps for {recommendations[0]['name']}",
                    priority="high",
                )
            )
        return ModeOutcome(
            matches=matches, recommendations=recommendations, data_text=data_text, next_actions=next_actions
        )

    async def _run_hiring(self, request: HiringRequest, context: ConversationContext, run: LoopRun) -> ModeOutcome:
        role_id = request.role_id
        matches = run.track(
            "semantic_matches",
            await self.matcher.match(
                role_id, "role", "profile", limit=MAX_MATCHES_RETURNED, min_similarity=HIRING_MATCH_THRESHOLD
            ),
        )
        run.actions_taken.append("getMatchingProfiles")

        try:
            profile_ids = await self.store.list_profile_ids(PROFILE_POOL_LIMIT)
        except DatabaseError as e:
            return self._partial(matches, e, run)

        results = await self.batch_scorer.batch_score(role_id, profile_ids, anchor_type="role")
        run.actions_taken.append("scoreProfileFit")

        names = await self._names("profile", [r.candidate_id for r in results])
        role = (await self._names("role", [role_id])).get(role_id, role_id)
        recommendations = self._rank(results, names, "profile_fit")

        data_text = (
            f"Role: {role}\n\n"
            f"Semantically matched people:\n{format_matches(matches)}\n\n"
            f"Fit scores:\n{format_batch_results(results, names)}"
        )
        next_actions = []
        if recommendations:
            next_actions.append(
                NextAction(
                    type="review_candidate",
                    description=f"Review the fit breakdown for {recommendations[0]['name']}",
                    priority="high",
                )
            )
        return ModeOutcome(
            matches=matches, recommendations=recommendations, data_text=data_text, next_actions=next_actions
        )

    async def _run_analyst(self, request: AnalystRequest, context: ConversationContext, run: LoopRun) -> ModeOutcome:
        scope = request.scope
        rows = await self.rollup.run(scope, request.context.company_ids)
        run.actions_taken.append(f"generateCapabilityHeatmapBy{scope.capitalize()}")

        heatmap = summarize_heatmap(rows)
        summary = heatmap["summary"]
        recommendations = [{"type": "capability_heatmap", "scope": scope, **summary}]

        next_actions = [
            NextAction(
                type="change_scope",
                description=f"Break the capability distribution down by {other}",
                priority="low",
            )
            for other in ("taxonomy", "division", "region", "company")
            if other != scope
        ][:2]
        return ModeOutcome(
            recommendations=recommendations,
            data_text=f"Capability distribution by {scope}:\n{format_heatmap_summary(heatmap)}",
            next_actions=next_actions,
        )

    async def _run_general(self, request: GeneralRequest, context: ConversationContext, run: LoopRun) -> ModeOutcome:
        query_vector = None
        if request.last_message:
            try:
                query_vector = await self.embedder.embed(request.last_message)
                run.actions_taken.append("embedContext")
            except EmbeddingError as e:
                logger.warning(f"⚠️  Could not embed message: {e}")
                run.degraded_steps.append("embedding")
        if query_vector is None and context.context_embedding:
            query_vector = context.context_embedding

        matches: List[MatchCandidate] = []
        if query_vector:
            roles = run.track(
                "role_matches",
                await self.matcher.match_vector(query_vector, "role", limit=5, min_similarity=GENERAL_MATCH_THRESHOLD),
            )
            profiles = run.track(
                "profile_matches",
                await self.matcher.match_vector(query_vector, "profile", limit=5, min_similarity=GENERAL_MATCH_THRESHOLD),
            )
            matches = sorted(roles + profiles, key=lambda m: m.similarity, reverse=True)
            run.actions_taken.append("getSemanticMatches")

        text = f"Related roles and people:\n{format_matches(matches)}"
        if context.summary:
            text = f"Conversation summary: {context.summary}\n\n{text}"
        return ModeOutcome(matches=matches, data_text=text)

    # ==================== PLANNER TOOLS ====================

    async def _run_planner_tools(self, request: BaseMCPRequest, plan: List[PlannerRecommendation], run: LoopRun):
        """Run the gap/fit tools the planner (or caller) asked for when both IDs are present."""
        recommendations: List[Dict[str, Any]] = []
        sections: List[str] = []
        executed = set()
        if not (request.profile_id and request.role_id):
            return recommendations, "", executed

        wanted = ([request.action] if request.action else []) + [rec.tool for rec in plan]
        for tool in dict.fromkeys(wanted):
            if tool not in EXECUTABLE_TOOLS:
                continue
            try:
                if tool == FIT_TOOL:
                    fit = await self.fit_scorer.score(request.profile_id, request.role_id)
                    recommendations.append({"type": "profile_fit", **fit.to_json_dict()})
                    sections.append(f"Direct fit: {fit.score}/100 - {fit.summary}")
                else:
                    gaps = await self.gap_analyzer.analyze(request.profile_id, request.role_id, GAP_TOOLS[tool])
                    recommendations.append(
                        {
                            "type": f"{GAP_TOOLS[tool]}_gaps",
                            "profileId": request.profile_id,
                            "roleId": request.role_id,
                            "gaps": [g.to_json_dict() for g in gaps],
                        }
                    )
                    sections.append(f"{GAP_TOOLS[tool].capitalize()} gaps:\n{format_gaps(gaps)}")
            except (DatabaseError, InvalidInput) as e:
                logger.warning(f"⚠️  Planner tool {tool} failed: {e}")
                run.degraded_steps.append(tool)
                continue

            executed.add(tool)
            if tool not in run.actions_taken:
                run.actions_taken.append(tool)

        return recommendations, "\n\n".join(sections), executed

    # ==================== HELPERS ====================

    def _rank(self, results: List[BatchResult], names: Dict[str, str], kind: str) -> List[Dict[str, Any]]:
        """Display order blends fit score with raw similarity."""
        ranked = []
        for result in results:
            if not result.succeeded:
                continue
            fit = result.fit
            similarity = result.match.similarity * 100 if result.match else fit.semantic_score
            ranking = fit.score * self.policy.ranking_fit_weight + similarity * self.policy.ranking_semantic_weight
            ranked.append(
                {
                    "type": kind,
                    "name": names.get(result.candidate_id) or result.candidate_id,
                    **fit.to_json_dict(),
                    "rankingScore": round(ranking, 1),
                }
            )
        ranked.sort(key=lambda r: r["rankingScore"], reverse=True)
        return ranked[:MAX_RECOMMENDATIONS_RETURNED]

    @staticmethod
    def _partial(matches: List[MatchCandidate], exc: MCPError, run: LoopRun) -> ModeOutcome:
        """Degraded outcome that keeps whatever semantic matches were already found."""
        logger.warning(f"⚠️  Candidate pool unavailable, returning {len(matches)} matches only: {exc}")
        run.degraded_steps.append("matching")
        return ModeOutcome(matches=matches, degraded=True, reason=str(exc))

    async def _names(self, entity_type: str, ids: List[str]) -> Dict[str, str]:
        if not ids:
            return {}
        try:
            details = await self.store.get_entity_details(entity_type, ids)
        except DatabaseError as e:
            logger.warning(f"Could not load {entity_type} names: {e}")
            return {}
        return {entity_id: info.get("name") or entity_id for entity_id, info in details.items()}

    @staticmethod
    def _next_actions(plan: List[PlannerRecommendation], executed, defaults: List[NextAction]) -> List[NextAction]:
        actions = list(defaults)
        for rec in plan:
            if rec.tool in executed:
                continue
            actions.append(NextAction(type=rec.tool, description=rec.reason, priority=priority_for(rec.confidence)))
        return actions[:MAX_NEXT_ACTIONS]

    async def _log_run(self, request: BaseMCPRequest, plan, outcome: ModeOutcome, run: LoopRun):
        entity_type, entity_id = audit_entity(request)
        if not request.session_id and entity_type == "session":
            # Anonymous general-mode chat has nothing to attach an audit trail to
            return

        await self.audit.record(
            entity_type,
            entity_id,
            create_action_payload(
                "planner_recommendations",
                {"mode": request.mode, "recommendations": [r.to_json_dict() for r in plan]},
            ),
            session_id=request.session_id,
        )

        top_similarity = max((m.similarity for m in outcome.matches), default=None)
        entry = await self.audit.record(
            entity_type,
            entity_id,
            create_action_payload(
                "mcp_loop_complete",
                {
                    "mode": request.mode,
                    "actionsTaken": list(run.actions_taken),
                    "recommendations": outcome.recommendations[:MAX_RECOMMENDATIONS_RETURNED],
                    "matches": [m.to_json_dict() for m in outcome.matches[:MAX_MATCHES_RETURNED]],
                    "degraded": outcome.degraded or bool(run.degraded_steps),
                },
            ),
            session_id=request.session_id,
            semantic_metrics={
                "matchCount": len(outcome.matches),
                "topSimilarity": top_similarity,
                "matchingStrategy": "hybrid",
            },
        )
        if entry is not None:
            run.actions_taken.append("logAgentAction")

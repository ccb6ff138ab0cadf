"""Shared fakes: in-memory store, scripted chat model and embedder."""
import os

# Keep test runs from writing talentbrain.log into the working tree
os.environ.setdefault("TB_LOG_FILE", "")

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402

from talentbrain.cache import InMemoryCache  # noqa: E402
from talentbrain.errors import DatabaseError  # noqa: E402
from talentbrain.executor import LoopDependencies, MCPLoopExecutor  # noqa: E402
from talentbrain.llm import EmbeddingError, LLMError  # noqa: E402
from talentbrain.store import WorkforceStore  # noqa: E402

NARRATIVE = "Here is what stands out in the data.\n\nFollow-up question: Want me to compare the top two?"
PLANNER_REPLY = '{"recommendations": [{"tool": "handleChatInteraction", "reason": "chat turn", "confidence": 0.9}]}'


class FakeStore(WorkforceStore):
    """Dict-backed store that records every call and can be told to fail."""

    def __init__(self):
        self.calls: List[str] = []
        self.fail: Dict[str, Exception] = {}

        self.role_requirements: Dict[tuple, List[Dict[str, Any]]] = {}
        self.profile_levels: Dict[tuple, Dict[str, str]] = {}
        self.similarities: Dict[tuple, float] = {}
        self.matches: Dict[tuple, List[Dict[str, Any]]] = {}
        self.vector_matches: Dict[str, List[Dict[str, Any]]] = {}
        self.details: Dict[str, Dict[str, Any]] = {}
        self.open_role_ids: List[str] = []
        self.profile_ids: List[str] = []
        self.messages: List[Dict[str, Any]] = []
        self.actions: List[Dict[str, Any]] = []
        self.summary: Optional[str] = None
        self.heatmap_rows: List[Dict[str, Any]] = []
        self.inserted: List[Dict[str, Any]] = []

    def _record(self, name: str):
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]

    def fail_with_db_error(self, name: str):
        self.fail[name] = DatabaseError(f"{name} failed")

    # ---- helpers for building fixtures ----
    def require(self, role_id, kind, item_id, name, level, category=""):
        self.role_requirements.setdefault((role_id, kind), []).append(
            {"item_id": item_id, "name": name, "category": category, "level": level}
        )

    def achieve(self, profile_id, kind, item_id, level):
        self.profile_levels.setdefault((profile_id, kind), {})[item_id] = level

    # ---- WorkforceStore ----
    async def match_embeddings(self, query_id, source_table, target_table, threshold, limit):
        self._record("match_embeddings")
        rows = self.matches.get((query_id, target_table), [])
        return [r for r in rows if r["similarity"] >= threshold][:limit]

    async def match_embeddings_by_vector(self, embedding, table, threshold, limit):
        self._record("match_embeddings_by_vector")
        rows = self.vector_matches.get(table, [])
        return [r for r in rows if r["similarity"] >= threshold][:limit]

    async def similarity(self, profile_id, role_id):
        self._record("similarity")
        return self.similarities.get((profile_id, role_id))

    async def get_role_requirements(self, role_id, kind):
        self._record("get_role_requirements")
        return list(self.role_requirements.get((role_id, kind), []))

    async def get_profile_levels(self, profile_id, kind):
        self._record("get_profile_levels")
        return dict(self.profile_levels.get((profile_id, kind), {}))

    async def get_entity_details(self, table, ids):
        self._record("get_entity_details")
        return {i: {"id": i, **self.details[i]} for i in ids if i in self.details}

    async def get_open_job_role_ids(self, limit):
        self._record("get_open_job_role_ids")
        return self.open_role_ids[:limit]

    async def list_profile_ids(self, limit):
        self._record("list_profile_ids")
        return self.profile_ids[:limit]

    async def get_recent_messages(self, session_id, limit):
        self._record("get_recent_messages")
        return self.messages[:limit]

    async def get_recent_actions(self, session_id, limit):
        self._record("get_recent_actions")
        return self.actions[:limit]

    async def get_session_summary(self, session_id):
        self._record("get_session_summary")
        return self.summary

    async def insert_agent_action(self, record):
        self._record("insert_agent_action")
        self.inserted.append(record)
        return f"action-{len(self.inserted)}"

    async def capability_heatmap(self, scope, company_ids):
        self._record("capability_heatmap")
        return list(self.heatmap_rows)

    async def ping(self):
        return "ping" not in self.fail


class FakeChatModel:
    """Returns ``planner_reply`` for JSON-mode calls and ``narrative`` otherwise."""

    def __init__(self, planner_reply: str = PLANNER_REPLY, narrative: str = NARRATIVE, error=None):
        self.planner_reply = planner_reply
        self.narrative = narrative
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_prompt, user_prompt, *, json_mode=False, temperature=0.7, max_tokens=1000):
        self.calls.append({"system": system_prompt, "user": user_prompt, "json_mode": json_mode})
        if self.error is not None:
            raise self.error
        return self.planner_reply if json_mode else self.narrative


class FakeEmbedder:
    def __init__(self, vector=None, fail: bool = False):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("encoder offline")
        return list(self.vector)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def cache():
    return InMemoryCache(max_size=100)


@pytest.fixture
def chat_model():
    return FakeChatModel()


@pytest.fixture
def failing_chat_model():
    return FakeChatModel(error=LLMError("model down"))


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def deps(store, cache, chat_model, embedder):
    return LoopDependencies(store=store, cache=cache, chat_model=chat_model, embedder=embedder)


@pytest.fixture
def executor(deps):
    return MCPLoopExecutor(deps)


@pytest.fixture
def hiring_world(store):
    """Role r1 with one capability and one skill; three profiles of varying fit."""
    store.require("r1", "capability", "c1", "Data Analysis", "Adept", category="Analytics")
    store.require("r1", "skill", "s1", "SQL", "Intermediate", category="Data")

    store.achieve("p1", "capability", "c1", "Advanced")
    store.achieve("p1", "skill", "s1", "Advanced")
    store.achieve("p2", "capability", "c1", "Intermediate")
    # p3 has nothing

    store.similarities.update({("p1", "r1"): 0.9, ("p2", "r1"): 0.7, ("p3", "r1"): 0.4})
    store.matches[("r1", "profile")] = [
        {"id": "p1", "similarity": 0.9},
        {"id": "p2", "similarity": 0.7},
        {"id": "p3", "similarity": 0.4},
    ]
    store.profile_ids = ["p1", "p2", "p3"]
    store.details.update(
        {
            "r1": {"name": "Data Analyst", "summary": "Analyses data"},
            "p1": {"name": "Ada", "summary": "Senior analyst"},
            "p2": {"name": "Grace", "summary": "Analyst"},
            "p3": {"name": "Linus", "summary": "Engineer"},
        }
    )
    return store

"""
Workforce store - relational reads, pgvector similarity and audit inserts.

All SQL goes through SQLAlchemy's async engine (asyncpg driver). Driver
failures and timeouts surface as DatabaseError so callers can decide whether
to abort or degrade.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from talentbrain.config import DB_TIMEOUT, VECTOR_TIMEOUT, get_engine
from talentbrain.errors import DatabaseError

logger = logging.getLogger(__name__)

ENTITY_TABLES = {"profile": "profiles", "role": "roles"}

REQUIREMENT_SOURCES = {
    "capability": {
        "role_table": "role_capabilities",
        "profile_table": "profile_capabilities",
        "item_table": "capabilities",
        "item_column": "capability_id",
        "category": "group_name",
    },
    "skill": {
        "role_table": "role_skills",
        "profile_table": "profile_skills",
        "item_table": "skills",
        "item_column": "skill_id",
        "category": "category",
    },
}

# (group expression, extra joins) per analyst scope
HEATMAP_SCOPES = {
    "taxonomy": (
        "t.name",
        "JOIN role_taxonomies rt ON rt.role_id = r.id JOIN taxonomy t ON t.id = rt.taxonomy_id",
    ),
    "division": ("d.name", "JOIN divisions d ON d.id = r.division_id"),
    "region": ("r.location", ""),
    "company": ("co.name", ""),
}

DETAIL_COLUMNS = {
    "profiles": "name AS name, role_title AS summary",
    "roles": "title AS name, description AS summary",
}


def _table_for(entity_type: str) -> str:
    try:
        return ENTITY_TABLES[entity_type]
    except KeyError:
        raise DatabaseError(f"Unknown entity type: {entity_type}")


def _vector_literal(embedding: Sequence[float]) -> str:
    return "[" + ",".join(f"{float(x):.8f}" for x in embedding) + "]"


def parse_vector(value: Any) -> Optional[List[float]]:
    """pgvector columns come back as '[0.1,0.2,...]' strings when cast to text."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [float(x) for x in value]
    if isinstance(value, str):
        try:
            return [float(x) for x in json.loads(value)]
        except (ValueError, TypeError):
            logger.warning("Unparseable embedding value, ignoring")
            return None
    return None


def _parse_json(value: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


class WorkforceStore:
    """Abstract store interface consumed by the loop components."""

    # ---- vector similarity ----
    async def match_embeddings(
        self, query_id: str, source_table: str, target_table: str, threshold: float, limit: int
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def match_embeddings_by_vector(
        self, embedding: Sequence[float], table: str, threshold: float, limit: int
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def similarity(self, profile_id: str, role_id: str) -> Optional[float]:
        raise NotImplementedError

    # ---- requirements / levels ----
    async def get_role_requirements(self, role_id: str, kind: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_profile_levels(self, profile_id: str, kind: str) -> Dict[str, str]:
        raise NotImplementedError

    # ---- entities ----
    async def get_entity_details(self, table: str, ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    async def get_open_job_role_ids(self, limit: int) -> List[str]:
        raise NotImplementedError

    async def list_profile_ids(self, limit: int) -> List[str]:
        raise NotImplementedError

    # ---- conversation ----
    async def get_recent_messages(self, session_id: str, limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_recent_actions(self, session_id: str, limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_session_summary(self, session_id: str) -> Optional[str]:
        raise NotImplementedError

    async def insert_agent_action(self, record: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    # ---- analyst ----
    async def capability_heatmap(self, scope: str, company_ids: Sequence[str]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError


class SQLStore(WorkforceStore):
    """PostgreSQL + pgvector implementation."""

    def __init__(self, engine=None, timeout: float = DB_TIMEOUT, vector_timeout: float = VECTOR_TIMEOUT):
        self._engine = engine
        self.timeout = timeout
        self.vector_timeout = vector_timeout

    @property
    def engine(self):
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    async def _fetch(self, sql: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        timeout = timeout or self.timeout
        try:
            async with self.engine.connect() as conn:
                result = await asyncio.wait_for(conn.execute(text(sql), params or {}), timeout=timeout)
                return [dict(row) for row in result.mappings().all()]
        except asyncio.TimeoutError as e:
            logger.error(f"❌ Query timed out after {timeout}s")
            raise DatabaseError(f"Database query timed out after {timeout}s") from e
        except SQLAlchemyError as e:
            logger.error(f"❌ Database error: {e}")
            raise DatabaseError("Database query failed", details=str(e)) from e

    async def _execute(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            async with self.engine.begin() as conn:
                result = await asyncio.wait_for(conn.execute(text(sql), params), timeout=self.timeout)
                return [dict(row) for row in result.mappings().all()] if result.returns_rows else []
        except asyncio.TimeoutError as e:
            raise DatabaseError(f"Database write timed out after {self.timeout}s") from e
        except SQLAlchemyError as e:
            logger.error(f"❌ Database write failed: {e}")
            raise DatabaseError("Database write failed", details=str(e)) from e

    # ==================== VECTOR SIMILARITY ====================

    async def match_embeddings(self, query_id, source_table, target_table, threshold, limit):
        source = _table_for(source_table)
        target = _table_for(target_table)
        sql = f"""
            SELECT t.id::text AS id, 1 - (t.embedding <=> s.embedding) AS similarity
            FROM {target} t, {source} s
            WHERE s.id::text = :query_id
              AND t.embedding IS NOT NULL
              AND t.id::text <> :query_id
              AND 1 - (t.embedding <=> s.embedding) >= :threshold
            ORDER BY similarity DESC
            LIMIT :limit
        """
        return await self._fetch(
            sql,
            {"query_id": query_id, "threshold": threshold, "limit": limit},
            timeout=self.vector_timeout,
        )

    async def match_embeddings_by_vector(self, embedding, table, threshold, limit):
        target = _table_for(table)
        sql = f"""
            SELECT id::text AS id, 1 - (embedding <=> CAST(:embedding AS vector)) AS similarity
            FROM {target}
            WHERE embedding IS NOT NULL
              AND 1 - (embedding <=> CAST(:embedding AS vector)) >= :threshold
            ORDER BY similarity DESC
            LIMIT :limit
        """
        return await self._fetch(
            sql,
            {"embedding": _vector_literal(embedding), "threshold": threshold, "limit": limit},
            timeout=self.vector_timeout,
        )

    async def similarity(self, profile_id, role_id):
        sql = """
            SELECT 1 - (p.embedding <=> r.embedding) AS similarity
            FROM profiles p, roles r
            WHERE p.id::text = :profile_id AND r.id::text = :role_id
              AND p.embedding IS NOT NULL AND r.embedding IS NOT NULL
        """
        rows = await self._fetch(
            sql, {"profile_id": profile_id, "role_id": role_id}, timeout=self.vector_timeout
        )
        if not rows or rows[0]["similarity"] is None:
            return None
        return float(rows[0]["similarity"])

    # ==================== REQUIREMENTS ====================

    async def get_role_requirements(self, role_id, kind):
        src = REQUIREMENT_SOURCES[kind]
        sql = f"""
            SELECT rr.{src['item_column']}::text AS item_id,
                   i.name AS name,
                   COALESCE(i.{src['category']}, '') AS category,
                   rr.level AS level
            FROM {src['role_table']} rr
            JOIN {src['item_table']} i ON i.id = rr.{src['item_column']}
            WHERE rr.role_id::text = :role_id
        """
        return await self._fetch(sql, {"role_id": role_id})

    async def get_profile_levels(self, profile_id, kind):
        src = REQUIREMENT_SOURCES[kind]
        sql = f"""
            SELECT {src['item_column']}::text AS item_id, level
            FROM {src['profile_table']}
            WHERE profile_id::text = :profile_id
        """
        rows = await self._fetch(sql, {"profile_id": profile_id})
        return {row["item_id"]: row["level"] for row in rows if row.get("level") is not None}

    # ==================== ENTITIES ====================

    async def get_entity_details(self, table, ids):
        if not ids:
            return {}
        name = _table_for(table)
        sql = f"""
            SELECT id::text AS id, {DETAIL_COLUMNS[name]}
            FROM {name}
            WHERE id::text = ANY(:ids)
        """
        rows = await self._fetch(sql, {"ids": list(ids)})
        return {row["id"]: row for row in rows}

    async def get_open_job_role_ids(self, limit):
        sql = """
            SELECT role_id::text AS role_id
            FROM jobs
            WHERE role_id IS NOT NULL
              AND (close_date IS NULL OR close_date > NOW())
              AND (open_date IS NULL OR open_date <= NOW())
            GROUP BY role_id
            LIMIT :limit
        """
        rows = await self._fetch(sql, {"limit": limit})
        return [row["role_id"] for row in rows]

    async def list_profile_ids(self, limit):
        rows = await self._fetch("SELECT id::text AS id FROM profiles LIMIT :limit", {"limit": limit})
        return [row["id"] for row in rows]

    # ==================== CONVERSATION ====================

    async def get_recent_messages(self, session_id, limit):
        sql = """
            SELECT id::text AS id, role AS sender, content, timestamp, embedding::text AS embedding
            FROM chat_messages
            WHERE session_id::text = :session_id AND role <> 'system'
            ORDER BY timestamp DESC
            LIMIT :limit
        """
        rows = await self._fetch(sql, {"session_id": session_id, "limit": limit})
        for row in rows:
            row["embedding"] = parse_vector(row.get("embedding"))
        return rows

    async def get_recent_actions(self, session_id, limit):
        sql = """
            SELECT id::text AS id, entity_type, entity_id, payload, semantic_metrics,
                   session_id::text AS session_id, timestamp, embedding::text AS embedding
            FROM agent_actions
            WHERE session_id::text = :session_id
            ORDER BY timestamp DESC
            LIMIT :limit
        """
        rows = await self._fetch(sql, {"session_id": session_id, "limit": limit})
        for row in rows:
            row["embedding"] = parse_vector(row.get("embedding"))
            row["payload"] = _parse_json(row.get("payload")) or {}
            row["semantic_metrics"] = _parse_json(row.get("semantic_metrics"))
            row["entity_id"] = str(row.get("entity_id") or "")
        return rows

    async def get_session_summary(self, session_id):
        rows = await self._fetch(
            "SELECT summary FROM conversation_sessions WHERE id::text = :session_id",
            {"session_id": session_id},
        )
        return rows[0]["summary"] if rows else None

    async def insert_agent_action(self, record):
        sql = """
            INSERT INTO agent_actions (entity_type, entity_id, payload, semantic_metrics, session_id, timestamp)
            VALUES (:entity_type, :entity_id, CAST(:payload AS jsonb), CAST(:semantic_metrics AS jsonb),
                    :session_id, :timestamp)
            RETURNING id::text AS id
        """
        params = {
            "entity_type": record["entity_type"],
            "entity_id": record["entity_id"],
            "payload": json.dumps(record["payload"], default=str),
            "semantic_metrics": json.dumps(record.get("semantic_metrics"), default=str)
            if record.get("semantic_metrics") is not None else None,
            "session_id": record.get("session_id"),
            "timestamp": record["timestamp"],
        }
        rows = await self._execute(sql, params)
        return rows[0]["id"] if rows else None

    # ==================== ANALYST ====================

    async def capability_heatmap(self, scope, company_ids):
        group_expr, joins = HEATMAP_SCOPES[scope]
        sql = f"""
            WITH scoped_roles AS (
                SELECT r.id AS role_id, {group_expr} AS group_name, co.name AS company
                FROM roles r
                JOIN companies co ON co.id = r.company_id
                {joins}
                WHERE (:all_companies OR r.company_id::text = ANY(:company_ids))
            ),
            totals AS (
                SELECT group_name, COUNT(DISTINCT role_id) AS total_roles
                FROM scoped_roles
                GROUP BY group_name
            )
            SELECT sr.group_name AS group_name,
                   c.name AS capability,
                   COUNT(DISTINCT sr.role_id) AS role_count,
                   t.total_roles AS total_roles,
                   MIN(sr.company) AS company,
                   ROUND(COUNT(DISTINCT sr.role_id)::numeric / NULLIF(t.total_roles, 0) * 100, 1) AS percentage
            FROM scoped_roles sr
            JOIN role_capabilities rc ON rc.role_id = sr.role_id
            JOIN capabilities c ON c.id = rc.capability_id
            JOIN totals t ON t.group_name = sr.group_name
            WHERE sr.group_name IS NOT NULL
            GROUP BY sr.group_name, c.name, t.total_roles
            ORDER BY sr.group_name, role_count DESC
        """
        rows = await self._fetch(
            sql, {"all_companies": not company_ids, "company_ids": list(company_ids)}
        )
        return [
            {
                "group": row["group_name"],
                "capability": row["capability"],
                "role_count": int(row["role_count"] or 0),
                "total_roles": int(row["total_roles"] or 0),
                "company": row["company"],
                "percentage": float(row["percentage"] or 0),
            }
            for row in rows
        ]

    async def ping(self) -> bool:
        try:
            await self._fetch("SELECT 1")
            return True
        except DatabaseError:
            return False

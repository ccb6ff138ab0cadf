"""TalentBrain configuration - environment, scoring policy and lazy clients."""
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from talentbrain.env_loader import load_env

logger = logging.getLogger(__name__)

# ========================
# LOAD .ENV FILES
# ========================
_loaded = load_env()
if _loaded:
    logger.info(f"✅ Loaded .env from: {', '.join(str(p) for p in _loaded)}")
else:
    logger.debug("No .env file found, using process environment only")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# ========================
# Environment
# ========================
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+asyncpg://localhost/talentbrain")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
PLANNER_MODEL = os.getenv("PLANNER_MODEL", OPENAI_MODEL)
EMBED_MODEL = os.getenv("EMBED_MODEL", "intfloat/e5-base-v2")

# ========================
# Retry / Result Cache
# ========================
REDIS_URL = os.getenv("REDIS_URL", "")  # e.g., redis://localhost:6379/0
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "2"))
RETRY_STATE_TTL = int(os.getenv("RETRY_STATE_TTL", "3600"))        # 1 hour
ENABLE_RESULT_CACHE = _env_bool("ENABLE_RESULT_CACHE", "true")
RESULT_CACHE_TTL = int(os.getenv("RESULT_CACHE_TTL", "86400"))     # 24 hours

# ========================
# Outbound call timeouts (seconds)
# ========================
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))
VECTOR_TIMEOUT = float(os.getenv("VECTOR_TIMEOUT", "10"))
DB_TIMEOUT = float(os.getenv("DB_TIMEOUT", "15"))

# ========================
# Matching / Batch Parameters
# ========================
BATCH_MAX_CONCURRENT = int(os.getenv("BATCH_MAX_CONCURRENT", "5"))
BATCH_MAX_CANDIDATES = int(os.getenv("BATCH_MAX_CANDIDATES", "10"))
PREFILTER_SIMILARITY_FLOOR = 0.3   # wide net before scoring
HIRING_MATCH_THRESHOLD = 0.6
CANDIDATE_MATCH_THRESHOLD = 0.7
GENERAL_MATCH_THRESHOLD = 0.5
OPEN_JOBS_LIMIT = 20
PROFILE_POOL_LIMIT = 200
MAX_MATCHES_RETURNED = 10
MAX_RECOMMENDATIONS_RETURNED = 5

# ========================
# Conversation Context
# ========================
CONTEXT_MESSAGE_LIMIT = 10
CONTEXT_ACTION_LIMIT = 5
CONTEXT_EMBEDDING_AVERAGE_COUNT = 3

# ========================
# Levels (ordered, lowest first)
# ========================
LEVELS = [
    "Foundational",
    "Intermediate",
    "Adept",
    "Advanced",
    "Highly Advanced",
]


# ========================
# Scoring Policy
# ========================
@dataclass(frozen=True)
class ScoringPolicy:
    """Every weight and threshold used to turn gaps and similarity into a fit score."""

    capability_weight: float = 0.4
    skill_weight: float = 0.3
    semantic_weight: float = 0.3

    missing_penalty: float = 1.0
    insufficient_penalty: float = 0.5

    excellent_threshold: int = 80
    good_threshold: int = 60
    moderate_threshold: int = 40

    # Display ordering of recommendations (fit score vs raw similarity)
    ranking_fit_weight: float = 0.4
    ranking_semantic_weight: float = 0.6

    def tier(self, score: float) -> str:
        if score >= self.excellent_threshold:
            return "Excellent fit"
        if score >= self.good_threshold:
            return "Good fit"
        if score >= self.moderate_threshold:
            return "Moderate fit"
        return "Limited fit"


DEFAULT_SCORING_POLICY = ScoringPolicy()


# ========================
# Lazy Clients
# ========================
@lru_cache(maxsize=1)
def get_engine():
    """Get the SQLAlchemy async engine (singleton)."""
    from sqlalchemy.ext.asyncio import create_async_engine

    logger.info("Initializing database engine")
    return create_async_engine(
        DATABASE_URL,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


@lru_cache(maxsize=1)
def get_encoder():
    """Get embedding model (singleton)."""
    from sentence_transformers import SentenceTransformer

    logger.info(f"Loading embedding model: {EMBED_MODEL}")
    return SentenceTransformer(EMBED_MODEL)


@lru_cache(maxsize=1)
def get_openai_client() -> Optional[object]:
    """Get the async OpenAI client, or None when no key is configured."""
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set")
        return None
    from openai import AsyncOpenAI

    return AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=LLM_TIMEOUT)

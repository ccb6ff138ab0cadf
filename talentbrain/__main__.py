"""FastAPI entrypoint for TalentBrain."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from talentbrain import __version__
from talentbrain.errors import INTERNAL_ERROR
from talentbrain.executor import LoopDependencies, MCPLoopExecutor
from talentbrain.llm import describe_model
from talentbrain.logging_config import configure_logging
from talentbrain.models import ChatResponse, MCPData, MCPResponse
from talentbrain.narrator import error_message

# ==================== LOGGING SETUP ====================
configure_logging()
logger = logging.getLogger(__name__)

# ==================== FASTAPI APP ====================
app = FastAPI(title="TalentBrain MCP Loop", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_executor() -> MCPLoopExecutor:
    """Executor singleton wired to the configured store, cache and models."""
    logger.info("Initializing MCP loop executor")
    return MCPLoopExecutor(LoopDependencies.from_config())


# ==================== ROUTES ====================

@app.get("/api")
def root() -> Dict[str, Any]:
    """API root endpoint."""
    return {
        "message": "TalentBrain MCP Loop API",
        "version": __version__,
        "model": describe_model(),
        "endpoints": {
            "mcp_loop": "POST /v2/mcp-loop",
            "health": "GET /health",
        },
    }


@app.options("/v2/mcp-loop")
def mcp_loop_preflight() -> PlainTextResponse:
    return PlainTextResponse("ok", status_code=200)


@app.post("/v2/mcp-loop")
async def mcp_loop_endpoint(request: Request, executor: MCPLoopExecutor = Depends(get_executor)) -> JSONResponse:
    """
    Run one MCP loop turn.

    The body is parsed here rather than by FastAPI so that malformed JSON and
    schema violations come back as VALIDATION_ERROR envelopes (400).
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("MCP loop request with unparseable JSON body")
        payload = None

    try:
        status, response = await executor.execute(payload)
    except Exception:
        logger.exception("MCP loop error")
        status = 500
        response = MCPResponse(
            success=False,
            error="An unexpected error occurred",
            error_type=INTERNAL_ERROR,
            data=MCPData(chat_response=ChatResponse(message=error_message(INTERNAL_ERROR))),
        )

    return JSONResponse(content=response.to_json_dict(), status_code=status)


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check(executor: MCPLoopExecutor = Depends(get_executor)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    database = await executor.store.ping()
    cache = await executor.deps.cache.ping()
    return {
        "status": "healthy" if database and cache else "degraded",
        "database": "ok" if database else "unavailable",
        "cache": "ok" if cache else "unavailable",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ==================== MAIN ====================

def main():
    import uvicorn

    uvicorn.run(
        "talentbrain.__main__:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
    )


if __name__ == "__main__":
    main()

"""
FastAPI server exposing the Browserbase tools over HTTP.

Every tool call is routed through ToolCallOrchestrator, which owns the
context lifecycle:
  - remote deployment: rehydrate from Redis, run, merge back
  - local deployment:  one long-lived context for the whole process

Tenant credentials come from the ``x-api-key`` / ``x-project-id`` headers or
the ``browserbaseApiKey`` / ``browserbaseProjectId`` query parameters.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from .config import settings
from .continuity import ContinuityStore
from .exceptions import ResourceNotFoundError, ResourceUriError, UnknownToolError
from .models.schemas import RequestConfig
from .orchestrator import ToolCallOrchestrator
from .session_factory import PlaywrightSessionFactory
from .session_manager import SessionRegistry
from .tools import build_registry
from .utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# FastAPI Application Setup
# ============================================================================

app = FastAPI(
    title="Browserbase MCP Continuity Server",
    description="Browserbase browser tools with session and snapshot continuity across server instances",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Global Exception Handler
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Structured JSON for anything a route did not handle."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "path": str(request.url),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ============================================================================
# Initialization
# ============================================================================

def create_orchestrator(factory: PlaywrightSessionFactory) -> ToolCallOrchestrator:
    """Wire tools, session registry and (in remote mode) the continuity store."""
    tools = build_registry()
    registry = SessionRegistry(factory)

    store = None
    if settings.deployment_mode == "remote":
        store = ContinuityStore(url=settings.REDIS_URL)

    return ToolCallOrchestrator(tools, registry, store, mode=settings.deployment_mode)


@app.on_event("startup")
async def startup_event():
    """Initialize all components on server startup."""
    logger.info("=" * 70)
    logger.info("BROWSERBASE MCP CONTINUITY SERVER STARTUP")
    logger.info("=" * 70)

    try:
        if getattr(app.state, "orchestrator", None) is None:
            app.state.session_factory = PlaywrightSessionFactory(
                headless=settings.BROWSER_HEADLESS,
                timeout_ms=settings.BROWSER_TIMEOUT_MS,
                api_url=settings.BROWSERBASE_API_URL,
            )
            app.state.orchestrator = create_orchestrator(app.state.session_factory)
        orchestrator = app.state.orchestrator
        logger.info(f"[OK] Deployment mode: {orchestrator.mode}")
        logger.info(f"[OK] Tools registered: {orchestrator.tools.available()}")
    except Exception as e:
        logger.error(f"STARTUP FAILED: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Release browser sessions and the Redis connection."""
    logger.info("Server shutting down...")

    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        try:
            await orchestrator.shutdown()
        except Exception as e:
            logger.error(f"Shutdown error (orchestrator): {e}")

    factory = getattr(app.state, "session_factory", None)
    if factory is not None:
        try:
            await factory.stop()
        except Exception as e:
            logger.error(f"Shutdown error (playwright): {e}")

    logger.info("Server shutdown complete")


# ============================================================================
# Helper Functions
# ============================================================================

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(request: Request, query_name: str, header_name: str) -> Optional[str]:
    value = request.query_params.get(query_name)
    if value is None:
        value = request.headers.get(header_name)
    return value


def _bool_flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _int_flag(value: Optional[str], default: int, name: str) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


def _get_orchestrator(request: Request) -> ToolCallOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Server is not initialized")
    return orchestrator


def request_config_from(request: Request, require_credentials: bool = True) -> RequestConfig:
    """
    Build the per-call RequestConfig from headers and query parameters.

    Raises:
        HTTPException: 401 when credentials are required but missing
    """
    api_key = (
        request.headers.get("x-api-key")
        or request.query_params.get("browserbaseApiKey")
        or settings.BROWSERBASE_API_KEY
        or None
    )
    project_id = (
        request.headers.get("x-project-id")
        or request.query_params.get("browserbaseProjectId")
        or settings.BROWSERBASE_PROJECT_ID
        or None
    )
    if require_credentials and not (api_key and project_id):
        raise HTTPException(
            status_code=401,
            detail="Browserbase API key and project id are required",
        )

    return RequestConfig(
        api_key=api_key,
        project_id=project_id,
        proxies=_bool_flag(_flag(request, "proxies", "x-proxies"), False),
        advanced_stealth=_bool_flag(_flag(request, "advancedStealth", "x-advanced-stealth"), False),
        context_id=_flag(request, "contextId", "x-context-id"),
        persist=_bool_flag(_flag(request, "persist", "x-persist"), True),
        viewport_width=_int_flag(
            _flag(request, "browserWidth", "x-browser-width"), settings.BROWSER_WIDTH, "browserWidth"
        ),
        viewport_height=_int_flag(
            _flag(request, "browserHeight", "x-browser-height"), settings.BROWSER_HEIGHT, "browserHeight"
        ),
    )


def _config_for(request: Request, orchestrator: ToolCallOrchestrator) -> RequestConfig:
    # Local mode may launch a local browser without Browserbase credentials.
    return request_config_from(request, require_credentials=orchestrator.is_remote)


# ============================================================================
# Health & Tool Endpoints
# ============================================================================

@app.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    orchestrator = _get_orchestrator(request)
    return {
        "status": "healthy",
        "mode": orchestrator.mode,
        "tools": len(orchestrator.tools.available()),
        "sessions": orchestrator.registry.stats,
        "calls": orchestrator.stats,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/tools")
async def list_tools(request: Request) -> Dict[str, Any]:
    orchestrator = _get_orchestrator(request)
    return {"tools": orchestrator.tools.list_tools()}


@app.post("/tools/{tool_name}")
async def call_tool(tool_name: str, request: Request) -> Dict[str, Any]:
    """
    Run one tool call.

    The request body is the tool's raw argument object; argument problems are
    reported inside the result (``isError``), not as HTTP errors.
    """
    orchestrator = _get_orchestrator(request)
    if not orchestrator.tools.has(tool_name):
        raise HTTPException(status_code=404, detail=f"Unknown tool: {tool_name}")
    config = _config_for(request, orchestrator)

    raw = await request.body()
    try:
        args = json.loads(raw) if raw.strip() else None
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")

    try:
        result = await orchestrator.call_tool(tool_name, args, config, tenant_key=config.project_id)
    except UnknownToolError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info(f"[API] {tool_name} -> isError={result.is_error}")
    return result.to_dict()


# ============================================================================
# Resource Endpoints
# ============================================================================

@app.get("/resources")
async def list_resources(request: Request) -> Dict[str, Any]:
    orchestrator = _get_orchestrator(request)
    config = _config_for(request, orchestrator)
    context = await orchestrator.get_context(config.project_id, config)
    return {"resources": [d.to_dict() for d in context.list_resources()]}


@app.get("/resources/read")
async def read_resource(uri: str, request: Request) -> Dict[str, Any]:
    orchestrator = _get_orchestrator(request)
    config = _config_for(request, orchestrator)
    context = await orchestrator.get_context(config.project_id, config)
    try:
        blob = context.read_resource(uri)
    except ResourceUriError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ResourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"contents": [blob.to_dict()]}


# ============================================================================
# Main Entry Point
# ============================================================================

def main() -> None:
    import uvicorn

    logger.info("Starting Browserbase MCP continuity server...")

    uvicorn.run(
        "browserbase_mcp.api_server:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD,
        log_config=None,  # Use logger configuration from utils.logger
    )


if __name__ == "__main__":
    main()

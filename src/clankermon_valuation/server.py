"""Clankermon Valuation Server.

FastMCP server exposing the valuation as an MCP tool, plus the JSON endpoint
and the Farcaster frame routes on the same Starlette app.
Run: clankermon-valuation
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import uvicorn
from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from . import cards, get_frame_html
from .config import Settings, load_settings
from .core.errors import EvaluationError, PollTimeoutError, RemoteServiceError, ValidationError
from .core.models import EvaluationResult
from .core.service import EvaluationService

logger = logging.getLogger(__name__)

# nginx's "client closed request"; the body is never read
CLIENT_CLOSED_REQUEST = 499
DISCONNECT_CHECK_SECONDS = 1.0

EVALUATE_TOOL = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)

_settings: Optional[Settings] = None
_service: Optional[EvaluationService] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_service() -> EvaluationService:
    global _service
    if _service is None:
        _service = EvaluationService.from_settings(get_settings())
    return _service


mcp = FastMCP(
    "Clankermon Valuation",
    instructions="Value a Clankermon by level and type. Valuations come from a live Dune Analytics query, in USD and ETH.",
)


class ClientDisconnected(Exception):
    """The caller went away while its evaluation was still running."""


def _base_url(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


async def _evaluate_while_connected(request: Request, level: Any, cm_type: Any) -> EvaluationResult:
    """Run an evaluation, cancelling it if the client disconnects first."""
    task = asyncio.create_task(get_service().evaluate(level, cm_type))
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_CHECK_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling evaluation (level=%s, type=%s)", level, cm_type)
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise ClientDisconnected()
    finally:
        if not task.done():
            task.cancel()


# ─── MCP Tool ────────────────────────────────────────────────────────────────


@mcp.tool(annotations=EVALUATE_TOOL)
async def evaluate_clankermon(level: str, cm_type: str) -> dict:
    """Valuation of a Clankermon in USD and ETH, per category plus a `_Final` summary row.

    Args:
        level: Clankermon level, e.g. '42'.
        cm_type: Clankermon type, e.g. 'Fire', 'Water'.
    """
    result = await get_service().evaluate(level, cm_type)
    return result.to_response()


# ─── Entry document ──────────────────────────────────────────────────────────


@mcp.custom_route("/", methods=["GET"])
@mcp.custom_route("/frame", methods=["GET"])
async def frame_index(request: Request) -> Response:
    return HTMLResponse(get_frame_html(_base_url(request)))


# ─── JSON API ────────────────────────────────────────────────────────────────


@mcp.custom_route("/api/evaluate", methods=["POST"])
async def api_evaluate(request: Request) -> Response:
    """Evaluate ``{level, cm_type}`` and return the formatted valuations."""
    body = await _read_json(request)
    if not isinstance(body, dict):
        body = {}

    try:
        result = await _evaluate_while_connected(request, body.get("level"), body.get("cm_type"))
    except ClientDisconnected:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except ValidationError as exc:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
    except PollTimeoutError as exc:
        return JSONResponse({"error": "Query timeout. Please try again."}, status_code=exc.status_code)
    except RemoteServiceError as exc:
        logger.error("Error evaluating Clankermon: %s", exc.details)
        return JSONResponse(
            {"error": "Failed to evaluate Clankermon", "details": exc.details},
            status_code=exc.status_code,
        )
    except Exception as exc:
        logger.error("Unexpected error evaluating Clankermon: %s", exc, exc_info=True)
        return JSONResponse({"error": "Failed to evaluate Clankermon", "details": str(exc)}, status_code=500)

    return JSONResponse(result.to_response())


# ─── Frame ───────────────────────────────────────────────────────────────────


@mcp.custom_route("/api/frame/start", methods=["POST"])
async def frame_start(request: Request) -> Response:
    return HTMLResponse(cards.to_html(cards.render_start(_base_url(request))))


@mcp.custom_route("/api/frame/get-type", methods=["POST"])
async def frame_get_type(request: Request) -> Response:
    level = cards.read_input_text(await _read_json(request))
    return HTMLResponse(cards.to_html(cards.render_get_type(_base_url(request), level)))


@mcp.custom_route("/api/frame/evaluate", methods=["POST"])
async def frame_evaluate(request: Request) -> Response:
    base_url = _base_url(request)
    level, cm_type = cards.evaluate_inputs(
        request.query_params.get("level"),
        cards.read_input_text(await _read_json(request)),
    )

    try:
        result = await _evaluate_while_connected(request, level, cm_type)
    except ClientDisconnected:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except EvaluationError as exc:
        logger.warning("Frame evaluation failed (level=%s, type=%s): %s", level, cm_type, exc)
        card = cards.render_error(base_url)
    except Exception as exc:
        logger.error("Error in frame evaluation: %s", exc, exc_info=True)
        card = cards.render_error(base_url)
    else:
        card = cards.render_evaluate(base_url, result)

    return HTMLResponse(cards.to_html(card))


@mcp.custom_route("/api/frame/donate", methods=["POST"])
async def frame_donate(request: Request) -> Response:
    settings = get_settings()
    tx = cards.donation_transaction(settings.donation_chain_id, settings.donation_address, settings.donation_value)
    return JSONResponse(tx.model_dump())


def create_app() -> Starlette:
    """Starlette app serving the MCP transport at /mcp and the HTTP routes."""
    app = mcp.streamable_http_app()
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    return app


def main():
    """Entry point for the CLI command."""
    load_dotenv()
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    logger.info("Server is running on http://%s:%d", settings.host, settings.port)
    logger.info("Dune API configured: %s", "yes" if settings.has_api_key else "no")
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()

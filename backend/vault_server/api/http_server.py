"""
HTTP server implementation for the Workflow Vault.

This module exposes the vault over a small REST API used by the editor's
admin screens and its document save path:
- /admin/backup, /admin/backups/...: full archives
- /admin/workflow-versions/...: per-document versions
- /api/workflows/...: document CRUD (writes snapshot first)

Invariants:
    - Callers are already authorized; X-Actor is only used for logging
    - JSON request/response format
    - VaultError subclasses map to stable status codes and error bodies

How to change safely:
    - Keep route paths stable; the editor frontend calls them directly
    - Add new fields to responses, don't rename existing ones
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..errors import CorruptEntryError, NotFoundError, RestoreError, StoreIOError, VaultError
from .service import VaultServicer

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[VaultError], int]] = [
    (NotFoundError, 404),
    (CorruptEntryError, 422),
    (RestoreError, 500),
    (StoreIOError, 500),
]


def status_for(error: VaultError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def create_http_app(
    servicer: VaultServicer,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for the vault.

    Args:
        servicer: VaultServicer instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    # Archives
    app.router.add_post("/admin/backup", lambda r: handle_create_backup(r, servicer))
    app.router.add_get("/admin/backups", lambda r: handle_list_backups(r, servicer))
    app.router.add_get("/admin/backups/{file}/info", lambda r: handle_backup_info(r, servicer))
    app.router.add_post(
        "/admin/backups/{file}/restore", lambda r: handle_restore_backup(r, servicer)
    )

    # Versions
    app.router.add_get("/admin/workflow-versions", lambda r: handle_list_versions(r, servicer))
    app.router.add_get(
        "/admin/workflow-versions/{version_file}", lambda r: handle_get_version(r, servicer)
    )
    app.router.add_post(
        "/admin/workflow-versions/restore/{version_file}",
        lambda r: handle_restore_version(r, servicer),
    )

    # Documents
    app.router.add_get("/api/workflows", lambda r: handle_list_documents(r, servicer))
    app.router.add_post("/api/workflows", lambda r: handle_save_document(r, servicer))
    app.router.add_get("/api/workflows/{id}", lambda r: handle_get_document(r, servicer))
    app.router.add_put("/api/workflows/{id}", lambda r: handle_save_document(r, servicer))
    app.router.add_delete("/api/workflows/{id}", lambda r: handle_delete_document(r, servicer))

    app.router.add_get("/health", lambda r: handle_health(r, servicer))

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, X-Actor"

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except VaultError as e:
            status = status_for(e)
            log = logger.error if status >= 500 else logger.info
            log(
                f"{request.method} {request.path} failed: {e.message}",
                extra={"error_code": e.code, "actor": request.headers.get("X-Actor")},
            )
            return web.json_response({"success": False, **e.to_dict()}, status=status)
        except ValueError as e:
            return web.json_response(
                {"success": False, "error": str(e), "error_code": "INVALID_ARGUMENT"},
                status=400,
            )
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"success": False, "error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.append(error_middleware)

    return app


async def read_json_body(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body.

    Raises:
        web.HTTPBadRequest: If the body is not a JSON object
    """
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body", "error_code": "INVALID_ARGUMENT"}),
            content_type="application/json",
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps(
                {"error": "JSON body must be an object", "error_code": "INVALID_ARGUMENT"}
            ),
            content_type="application/json",
        )
    return body


async def handle_create_backup(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle POST /admin/backup - Archive the data dir."""
    result = await servicer.create_backup()
    return web.json_response(result)


async def handle_list_backups(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /admin/backups - List archives, newest first."""
    return web.json_response(await servicer.list_backups())


async def handle_backup_info(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /admin/backups/{file}/info - Summarize an archive."""
    result = await servicer.backup_info(request.match_info["file"])
    return web.json_response(result)


async def handle_restore_backup(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle POST /admin/backups/{file}/restore - Restore the data dir."""
    name = request.match_info["file"]
    logger.warning(
        "Restore requested",
        extra={"archive": name, "actor": request.headers.get("X-Actor")},
    )
    result = await servicer.restore_backup(name)
    return web.json_response(result)


async def handle_list_versions(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /admin/workflow-versions - List versions."""
    document_id = request.query.get("document_id")
    return web.json_response(await servicer.list_versions(document_id))


async def handle_get_version(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /admin/workflow-versions/{version_file} - Version content."""
    result = await servicer.get_version(request.match_info["version_file"])
    return web.json_response(result)


async def handle_restore_version(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle POST /admin/workflow-versions/restore/{version_file}."""
    result = await servicer.restore_version(request.match_info["version_file"])
    return web.json_response(result)


async def handle_list_documents(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /api/workflows - Document summaries."""
    return web.json_response(await servicer.list_documents())


async def handle_save_document(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle POST /api/workflows and PUT /api/workflows/{id}."""
    body = await read_json_body(request)
    result = await servicer.save_document(body, request.match_info.get("id"))
    status = 201 if result["created"] else 200
    return web.json_response(result["document"], status=status)


async def handle_get_document(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /api/workflows/{id}."""
    return web.json_response(await servicer.get_document(request.match_info["id"]))


async def handle_delete_document(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle DELETE /api/workflows/{id}."""
    await servicer.delete_document(request.match_info["id"])
    return web.Response(status=204)


async def handle_health(request: web.Request, servicer: VaultServicer) -> web.Response:
    """Handle GET /health - Health check."""
    result = await servicer.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)

"""
Admin HTTP surface for the recovery subsystem.

A small JSON API over RecoveryService for operators and tooling:

    GET    /v1/health
    POST   /v1/recovery-points
    GET    /v1/recovery-points
    GET    /v1/recovery-points/{id}
    DELETE /v1/recovery-points/{id}
    POST   /v1/recovery-points/{id}/verify
    POST   /v1/recovery-points/{id}/restore
    GET    /v1/transaction-logs
    POST   /v1/transaction-logs/cleanup

Invariants:
    - Response bodies are the service envelopes, unchanged
    - 200 on success, 404 for unknown recovery points, 400 for other
      failures, 500 only from the error middleware
    - Bind to localhost by default; this surface can replace the datastore

How to change safely:
    - Keep routes in sync with RecoveryService methods
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from .._version import __version__
from ..service import RecoveryService

logger = logging.getLogger(__name__)


def create_admin_app(service: RecoveryService) -> web.Application:
    """Create the admin HTTP application.

    Args:
        service: RecoveryService the routes delegate to

    Returns:
        aiohttp Application instance
    """
    app = web.Application()

    app.router.add_get("/v1/health", lambda r: handle_health(r, service))
    app.router.add_post("/v1/recovery-points", lambda r: handle_create_point(r, service))
    app.router.add_get("/v1/recovery-points", lambda r: handle_list_points(r, service))
    app.router.add_get("/v1/recovery-points/{id}", lambda r: handle_get_point(r, service))
    app.router.add_delete("/v1/recovery-points/{id}", lambda r: handle_delete_point(r, service))
    app.router.add_post("/v1/recovery-points/{id}/verify", lambda r: handle_verify(r, service))
    app.router.add_post("/v1/recovery-points/{id}/restore", lambda r: handle_restore(r, service))
    app.router.add_get("/v1/transaction-logs", lambda r: handle_get_logs(r, service))
    app.router.add_post("/v1/transaction-logs/cleanup", lambda r: handle_cleanup(r, service))

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.Response:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"success": False, "error": "Internal server error", "error_code": "INTERNAL_ERROR"},
                status=500,
            )

    app.middlewares.append(error_middleware)

    return app


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"success": False, "error": message, "error_code": "INVALID_ARGUMENT"}),
        content_type="application/json",
    )


def _envelope_response(result: dict[str, Any]) -> web.Response:
    if result.get("success"):
        status = 200
    elif result.get("error_code") == "NOT_FOUND":
        status = 404
    else:
        status = 400
    return web.json_response(result, status=status)


def _recovery_point_id(request: web.Request) -> int:
    try:
        return int(request.match_info["id"])
    except ValueError:
        raise _bad_request("Recovery point id must be an integer")


def _int_query(request: web.Request, name: str, default: int | None = None) -> int | None:
    value = request.query.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise _bad_request(f"{name} must be an integer")


def _bool_query(request: web.Request, name: str) -> bool | None:
    value = request.query.get(name)
    if value is None or value == "":
        return None
    return value.lower() == "true"


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise _bad_request("Invalid JSON body")
    if not isinstance(body, dict):
        raise _bad_request("JSON body must be an object")
    return body


async def handle_health(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle GET /v1/health - Health check."""
    healthy = service.db.is_open
    result = {
        "healthy": healthy,
        "version": __version__,
        "restore_in_progress": service.restore_in_progress,
        "pending_log_writes": service.dispatcher.pending,
    }
    status = 200 if healthy or service.restore_in_progress else 503
    return web.json_response(result, status=status)


async def handle_create_point(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle POST /v1/recovery-points - Create a recovery point."""
    body = await _json_body(request)

    result = await service.create_recovery_point(
        name=body.get("name"),
        description=body.get("description"),
        timestamp=body.get("timestamp"),
        create_backup=bool(body.get("create_backup", False)),
        user_id=body.get("user_id"),
        is_automatic=bool(body.get("is_automatic", False)),
    )
    return _envelope_response(result)


async def handle_list_points(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle GET /v1/recovery-points - List recovery points."""
    result = await service.list_recovery_points(
        start_date=request.query.get("start_date"),
        end_date=request.query.get("end_date"),
        is_automatic=_bool_query(request, "is_automatic"),
        page=_int_query(request, "page", 1),
        page_size=_int_query(request, "page_size", 20),
    )
    return _envelope_response(result)


async def handle_get_point(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle GET /v1/recovery-points/{id} - Get a recovery point."""
    result = await service.get_recovery_point(_recovery_point_id(request))
    return _envelope_response(result)


async def handle_delete_point(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle DELETE /v1/recovery-points/{id} - Delete a recovery point and its backup."""
    result = await service.delete_recovery_point(_recovery_point_id(request))
    return _envelope_response(result)


async def handle_verify(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle POST /v1/recovery-points/{id}/verify - Verify backup integrity."""
    result = await service.verify_backup_integrity(_recovery_point_id(request))
    return _envelope_response(result)


async def handle_restore(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle POST /v1/recovery-points/{id}/restore - Restore to a recovery point."""
    recovery_point_id = _recovery_point_id(request)
    body = await _json_body(request)

    backup_before = body.get("create_backup_before_restore")
    result = await service.restore_to_point_in_time(
        recovery_point_id,
        create_backup_before_restore=None if backup_before is None else bool(backup_before),
        user_id=body.get("user_id"),
    )
    return _envelope_response(result)


async def handle_get_logs(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle GET /v1/transaction-logs - Query the transaction log."""
    result = await service.get_transaction_logs(
        start_date=request.query.get("start_date"),
        end_date=request.query.get("end_date"),
        table=request.query.get("table"),
        operation=request.query.get("operation"),
        user_id=_int_query(request, "user_id"),
        page=_int_query(request, "page", 1),
        page_size=_int_query(request, "page_size", 20),
    )
    return _envelope_response(result)


async def handle_cleanup(request: web.Request, service: RecoveryService) -> web.Response:
    """Handle POST /v1/transaction-logs/cleanup - Prune old unpinned entries."""
    body = await _json_body(request)
    try:
        days = int(body.get("days_to_keep", 90))
    except (TypeError, ValueError):
        raise _bad_request("days_to_keep must be an integer")

    result = await service.cleanup_old_logs(days)
    return _envelope_response(result)

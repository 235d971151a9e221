"""Webhook HTTP handler: FastAPI route for Lemon Squeezy deliveries.

Flow:
1. Read raw body (needed for HMAC verification)
2. Verify signature -> 401 on failure, nothing parsed or stored
3. Parse JSON -> 400 on malformed body
4. Reconcile against the order store
5. 200 on success, 500 on processing failure so the provider retries

Security contract:
- Never return error details to the webhook caller
- Log every delivery for the audit trail
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.config import Settings
from storefront.errors import AuthenticationError, InputValidationError
from storefront.webhooks.reconciler import OrderReconciler
from storefront.webhooks.verification import check_webhook_signature

logger = logging.getLogger(__name__)

PROVIDER = "lemonsqueezy"

def _log_webhook(
    counts: dict[str, int], event_name: str, webhook_id: str, status: str
) -> None:
    """Audit log for webhook activity, counted per app for the status endpoint."""
    counts[status] = counts.get(status, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s",
        PROVIDER,
        event_name,
        webhook_id,
        status,
    )


def _failure(error: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": error}, status_code=status_code)


async def handle_webhook(
    request: Request, settings: Settings, reconciler: OrderReconciler
) -> JSONResponse:
    """Verify, parse and reconcile one delivery."""
    start = time.time()
    counts = request.app.state.webhook_counts
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    try:
        check_webhook_signature(settings, body, headers)
    except AuthenticationError:
        _log_webhook(counts, "unknown", "unknown", "signature_failed")
        return _failure("Invalid signature", 401)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _log_webhook(counts, "unknown", "unknown", "invalid_json")
        return _failure("Invalid payload", 400)
    if not isinstance(payload, dict):
        _log_webhook(counts, "unknown", "unknown", "invalid_json")
        return _failure("Invalid payload", 400)

    meta = payload.get("meta") or {}
    if not isinstance(meta, dict):
        _log_webhook(counts, "unknown", "unknown", "invalid_payload")
        return _failure("Invalid payload", 400)

    event_name = str(meta.get("event_name") or "unknown")
    data = payload.get("data")
    webhook_id = str(data.get("id", "")) if isinstance(data, dict) else ""

    try:
        outcome = await run_in_threadpool(reconciler.handle, event_name, payload)
    except InputValidationError as e:
        logger.warning("Rejected webhook %s/%s: %s", event_name, webhook_id, e.message)
        _log_webhook(counts, event_name, webhook_id, "invalid_payload")
        return _failure("Invalid payload", 400)
    except Exception:
        logger.exception("Webhook processing failed: %s/%s", event_name, webhook_id)
        _log_webhook(counts, event_name, webhook_id, "failed")
        return _failure("Webhook processing failed", 500)

    _log_webhook(counts, event_name, webhook_id, outcome.value)
    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s/%s", elapsed_ms, event_name, webhook_id)
    return JSONResponse({"success": True, "received": True})


def register_webhook_routes(
    app: FastAPI, settings: Settings, reconciler: OrderReconciler
) -> None:
    """Register the webhook endpoints on the FastAPI app."""
    app.state.webhook_counts = {}

    @app.post("/api/webhooks/lemonsqueezy")
    async def lemonsqueezy_webhook(request: Request):
        """Receive Lemon Squeezy order webhooks (signature-verified)."""
        return await handle_webhook(request, settings, reconciler)

    @app.get("/api/webhooks/status")
    async def webhook_status():
        """Webhook receive counts by outcome."""
        return {"success": True, "data": {"counts": dict(app.state.webhook_counts)}}

    logger.info("Webhook routes registered: /api/webhooks/lemonsqueezy")

"""FastAPI server for Threads webhooks and mention operations."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .bot import AutoReplyBot
from .errors import (
    AutoReplyError,
    CredentialError,
    ForbiddenError,
    InvalidStateError,
    MalformedPayloadError,
    NotFoundError,
    ThreadsAPIError,
)
from .models import MentionStatus
from .threads_webhook import parse_webhook_payload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=status_code)


def create_webhook_app(bot: AutoReplyBot, resume_on_startup: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        bot: Fully wired pipeline
        resume_on_startup: Schedule mentions left ``pending`` by a previous run

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if resume_on_startup:
            try:
                await bot.mention_service.resume_pending()
            except Exception as e:
                logger.error("Failed to resume pending mentions: %s", e, exc_info=True)
        yield
        await bot.close()

    app = FastAPI(
        title="Threads Auto-Reply",
        description="Threads mention webhook receiver and reply pipeline",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
        return _error(403, exc)

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(CredentialError)
    async def credential_handler(request: Request, exc: CredentialError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(ThreadsAPIError)
    async def threads_api_handler(request: Request, exc: ThreadsAPIError) -> JSONResponse:
        return _error(502, exc)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "threads-autoreply"}

    @app.get("/webhooks/threads")
    async def verify_subscription(request: Request) -> PlainTextResponse:
        """Answer the provider's subscription handshake."""
        mode = request.query_params.get("hub.mode")
        token = request.query_params.get("hub.verify_token")
        challenge = request.query_params.get("hub.challenge")

        if not mode or not token or not challenge:
            raise HTTPException(status_code=400, detail="Missing verification parameters")

        response, ok = bot.verifier.verify_challenge(mode, token, challenge)
        if not ok:
            logger.warning("Webhook verification failed: mode=%s", mode)
            raise HTTPException(status_code=403, detail="Verification failed")

        logger.info("Webhook subscription verified")
        return PlainTextResponse(response)

    @app.post("/webhooks/threads")
    async def threads_webhook(request: Request) -> JSONResponse:
        """Handle a Threads webhook delivery.

        Security:
        - Verifies HMAC signature over the raw body before parsing
        - Returns 401 for missing or invalid signatures

        Returns:
            200 once mentions are admitted; replies are produced in the background
        """
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER, "")

        if not bot.verifier.verify_signature(body, signature):
            raise HTTPException(status_code=401, detail="Invalid signature")

        # Signature verified, safe to parse
        try:
            payload = parse_webhook_payload(body)
        except MalformedPayloadError as e:
            logger.error("Failed to parse webhook payload: %s", e)
            raise HTTPException(status_code=400, detail="Invalid payload")

        try:
            admitted = await bot.webhook_handler.handle_payload(payload)
        except AutoReplyError as e:
            logger.error("Webhook admission failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to process webhook")

        return JSONResponse({"status": "accepted", "admitted": admitted}, status_code=200)

    @app.get("/accounts/{account_id}/mentions")
    async def list_mentions(
        account_id: str,
        limit: int = Query(default=20),
        offset: int = Query(default=0),
        status: Optional[MentionStatus] = Query(default=None),
    ) -> JSONResponse:
        mentions = await bot.mention_service.list_mentions(account_id, limit, offset, status)
        return JSONResponse({"mentions": [m.to_dict() for m in mentions], "count": len(mentions)})

    @app.get("/accounts/{account_id}/mentions/{mention_id}")
    async def get_mention(account_id: str, mention_id: str) -> JSONResponse:
        mention = await bot.mention_service.get_mention(account_id, mention_id)
        return JSONResponse(mention.to_dict())

    @app.post("/accounts/{account_id}/mentions/sync")
    async def sync_mentions(account_id: str) -> JSONResponse:
        """Run one reconciliation pull and report its counters."""
        result = await bot.reconciliation.pull_mentions(account_id)
        return JSONResponse(result.as_dict())

    @app.post("/accounts/{account_id}/mentions/{mention_id}/retry")
    async def retry_mention(account_id: str, mention_id: str) -> JSONResponse:
        mention = await bot.mention_service.retry_mention(account_id, mention_id)
        return JSONResponse(
            {"message": "mention queued for retry", "mention_id": mention.id}, status_code=202
        )

    return app

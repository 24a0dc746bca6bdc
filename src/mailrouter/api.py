"""Summary: FastAPI application for MailRouter.

Importance: Exposes sync triggers, lock status and model usage over HTTP.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mailrouter.app import AppServices, build_context, default_user_id
from mailrouter.config import AppConfig
from mailrouter.orchestrator import STATUS_ALREADY_RUNNING
from mailrouter.services import message_summary, sync_log_summary


class SyncAiRequest(BaseModel):
    """Summary: Request payload for an AI batch run.

    Importance: Bounds batch size for a single trigger.
    Alternatives: Always process the configured batch limit.
    """

    limit: int | None = Field(default=None, ge=1, le=500)


class CancelRequest(BaseModel):
    """Summary: Request payload for releasing a sync lock.

    Importance: Restricts recovery to the known lock names.
    Alternatives: Accept arbitrary cache keys.
    """

    key: Literal["messages", "ai"]


class CredentialRequest(BaseModel):
    """Summary: Request payload for storing a provider API key.

    Importance: Lets a user route calls through their own provider account.
    Alternatives: Configure keys only through environment variables.
    """

    service: Literal["groq", "openai"]
    api_key: str = Field(min_length=1)


def envelope(
    data: Any = None, message: str | None = None, success: bool = True, error: str | None = None
) -> dict[str, Any]:
    """Build the standard response body, omitting empty fields."""

    body: dict[str, Any] = {"success": success}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    if error is not None:
        body["error"] = error
    return body


def _run_result(result: dict[str, Any], message: str) -> Any:
    """Summary: Map an orchestrator result onto an HTTP response.

    Importance: A rejected lock becomes 409 so clients can tell it apart from a failure.
    Alternatives: Always return 200 and let clients inspect the body.
    """

    if result.get("status") == STATUS_ALREADY_RUNNING:
        return JSONResponse(status_code=409, content=envelope(success=False, error=result["error"]))
    if not result.get("success"):
        return JSONResponse(
            status_code=500, content=envelope(success=False, error=result.get("error"))
        )
    data = {key: value for key, value in result.items() if key != "success"}
    return envelope(data=data, message=message)


def create_app(config: AppConfig) -> FastAPI:
    """Summary: Create a FastAPI app wired to MailRouter services.

    Importance: Ensures the API layer shares the same configuration, storage and cache.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="MailRouter API", version="0.1.0")
    context = build_context(config)
    user_id = default_user_id(context)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def services() -> AppServices:
        # Adapters carry the user's key, so they are rebuilt for every request.
        return context.services_for_user(user_id)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return envelope(data={"status": "ok"})

    @app.get("/messages", dependencies=[Depends(require_api_key)])
    def list_messages(
        limit: int = 10,
        status: Literal["pending", "processing", "completed", "failed"] | None = None,
    ) -> dict[str, Any]:
        """Summary: List recent messages with their analysis state.

        Importance: Lets clients inspect failed messages and their error text.
        Alternatives: Return only message IDs with separate detail endpoints.
        """

        messages = context.store.list_messages(limit, user_id=user_id, ai_status=status)
        return envelope(data=[message_summary(message) for message in messages])

    @app.get("/messages/stats", dependencies=[Depends(require_api_key)])
    def message_stats() -> dict[str, Any]:
        return envelope(data=context.store.count_messages_by_status(user_id=user_id))

    @app.post("/sync/mail", dependencies=[Depends(require_api_key)])
    def sync_mail(deps: AppServices = Depends(services)) -> Any:
        """Summary: Sync every configured channel.

        Importance: Returns 409 instead of waiting when a sync is already running.
        Alternatives: Queue the request behind the running sync.
        """

        return _run_result(deps.orchestrator.sync_messages_only(), "Message sync completed")

    @app.post("/sync/ai", dependencies=[Depends(require_api_key)])
    def sync_ai(
        payload: SyncAiRequest | None = None, deps: AppServices = Depends(services)
    ) -> Any:
        """Summary: Analyze pending messages in one batch.

        Importance: Returns 409 instead of waiting when a batch is already running.
        Alternatives: Run analysis only from the CLI.
        """

        limit = payload.limit if payload and payload.limit else config.ai_batch_limit
        return _run_result(deps.orchestrator.process_ai_only(limit), "AI processing completed")

    @app.post("/sync/ai/{message_id}", dependencies=[Depends(require_api_key)])
    def sync_ai_message(
        message_id: int, force: bool = False, deps: AppServices = Depends(services)
    ) -> Any:
        """Summary: Analyze a single message outside the batch lock.

        Importance: Allows re-running a failed message on demand.
        Alternatives: Reset the message to pending and wait for the next batch.
        """

        result = deps.orchestrator.process_single_message_by_id(message_id, force)
        if result["success"]:
            if result.get("skipped"):
                return envelope(message=result["reason"])
            return envelope(data={"analysis": result["data"], "meta": result["meta"]})
        status_code = 404 if result["error"] == "Message not found" else 500
        return JSONResponse(
            status_code=status_code, content=envelope(success=False, error=result["error"])
        )

    @app.get("/sync/status", dependencies=[Depends(require_api_key)])
    def sync_status(
        key: Literal["messages", "ai"] = "messages", deps: AppServices = Depends(services)
    ) -> dict[str, Any]:
        return envelope(data=deps.orchestrator.get_sync_status(key))

    @app.get("/sync/logs", dependencies=[Depends(require_api_key)])
    def sync_logs(limit: int = 20) -> dict[str, Any]:
        """Summary: List recent channel sync runs.

        Importance: Shows which channel failed and why without reading server logs.
        Alternatives: Return only the latest run per channel.
        """

        logs = context.store.list_sync_logs(limit, user_id=user_id)
        return envelope(data=[sync_log_summary(log) for log in logs])

    @app.post("/sync/cancel", dependencies=[Depends(require_api_key)])
    def sync_cancel(payload: CancelRequest, deps: AppServices = Depends(services)) -> dict[str, Any]:
        """Summary: Force-release a sync lock.

        Importance: Recovers from a crashed worker before the lock TTL runs out.
        Alternatives: Wait for the lock to expire.
        """

        released = deps.orchestrator.force_release_lock(payload.key)
        message = "Lock released" if released else "Lock was not held"
        return envelope(data={"released": released}, message=message)

    @app.get("/ai/usage", dependencies=[Depends(require_api_key)])
    def ai_usage(deps: AppServices = Depends(services)) -> dict[str, Any]:
        return envelope(data=deps.router.get_usage_stats())

    @app.get("/ai/audit", dependencies=[Depends(require_api_key)])
    def ai_audit(limit: int = 20, deps: AppServices = Depends(services)) -> dict[str, Any]:
        """Summary: List recent AI requests and responses.

        Importance: Supports review of which model handled which prompt.
        Alternatives: Inspect the database directly.
        """

        return envelope(
            data={
                "requests": deps.ai_audit.list_requests(limit),
                "responses": deps.ai_audit.list_responses(limit),
            }
        )

    @app.post("/credentials", dependencies=[Depends(require_api_key)])
    def store_credential(payload: CredentialRequest) -> dict[str, Any]:
        """Summary: Store a provider API key for the current user.

        Importance: Subsequent requests build adapters with this key.
        Alternatives: Require a server restart with new environment variables.
        """

        credential_id = context.credentials.store_api_key(user_id, payload.service, payload.api_key)
        return envelope(data={"id": credential_id}, message="API key stored")

    @app.delete("/credentials/{service}", dependencies=[Depends(require_api_key)])
    def revoke_credential(service: Literal["groq", "openai"]) -> dict[str, Any]:
        context.credentials.revoke_api_key(user_id, service)
        return envelope(message="API key revoked")

    return app


def app_from_env() -> FastAPI:
    """Application factory for ASGI servers (`uvicorn --factory mailrouter.api:app_from_env`)."""

    return create_app(AppConfig.from_env())

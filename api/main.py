"""
FastAPI Application — chat endpoints, WebSocket, OAuth redirect callback.

Provides:
- POST /api/v1/messages for request/response chat clients
- WebSocket endpoint for real-time chat (replies pushed, offline queue drained)
- GET /oauth2callback, where the identity provider sends the user back
- Conversation inspection and health
- Periodic sweep of expired login attempts
"""
from __future__ import annotations

import json
import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, Field

from core.dispatcher import Runtime, build_runtime
from dialogs.session import CREDENTIALS

logger = structlog.get_logger()

CALLBACK_SUCCESS_HTML = """<!doctype html>
<html><head><title>Signed in</title></head>
<body><h1>You're signed in</h1><p>You can close this window and return to the chat.</p></body></html>"""

CALLBACK_REJECTED_HTML = """<!doctype html>
<html><head><title>Login expired</title></head>
<body><h1>Login expired</h1><p>This login link is no longer valid. Please return to the chat and retry.</p></body></html>"""

CALLBACK_FAILED_HTML = """<!doctype html>
<html><head><title>Login failed</title></head>
<body><h1>Login didn't complete</h1><p>We couldn't finish signing you in. Please try again from the chat.</p></body></html>"""


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class InboundMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_address: str = Field(alias="conversationAddress", min_length=1)
    utterance_text: str = Field(alias="utteranceText")


# ──────────────────────────────────────────────────────────────
#  Background sweep
# ──────────────────────────────────────────────────────────────

async def _sweep_loop(runtime: Runtime, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await runtime.resolver.sweep_expired()
        except Exception as e:
            logger.error("expiry_sweep_failed", error=str(e))


def _conversation_view(runtime: Runtime, conversation) -> dict[str, Any]:
    private = dict(conversation.private_data)
    if CREDENTIALS in private:
        private[CREDENTIALS] = "<redacted>"

    pending = conversation.pending_continuation
    state = runtime.resolver.auth_state(conversation)
    return {
        "address": conversation.address,
        "dialog_stack": [frame.model_dump() for frame in conversation.dialog_stack],
        "private_data": private,
        "pending_continuation": {
            "follow_up_dialog": pending.follow_up_dialog,
            "expires_at": pending.expires_at.isoformat(),
            "auth_state": state.value if state else None,
        } if pending else None,
        "chat": {
            "connected": runtime.channel.is_connected(conversation.address),
            "queued_messages": runtime.channel.pending(conversation.address),
        },
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
    }


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(runtime: Runtime = None) -> FastAPI:
    runtime = runtime or build_runtime()
    settings = runtime.settings
    dispatcher = runtime.dispatcher
    chat_adapter = runtime.channel

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await chat_adapter.initialize({"max_queue_size": settings.chat.max_queue_size})
        sweep_task = asyncio.create_task(
            _sweep_loop(runtime, settings.oauth.sweep_interval_seconds)
        )
        logger.info("calendar_bot_started",
                    app_name=settings.app_name,
                    store=type(runtime.store).__name__,
                    dialogs=[d.name for d in runtime.registry.list_all()])
        yield

        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
        await runtime.close()
        logger.info("calendar_bot_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Calendar chat assistant with OAuth login continuation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "dialogs": [d.name for d in runtime.registry.list_all()],
            "chat": await chat_adapter.health_check(),
        }

    # ══════════════════════════════════════════════════════════
    #  CHAT
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/messages")
    async def receive_message(req: InboundMessageRequest):
        text = chat_adapter.sanitize(req.utterance_text)
        result = await dispatcher.handle_message(req.conversation_address, text)
        return result.model_dump(mode="json")

    @app.get("/api/v1/conversations/{address}")
    async def get_conversation(address: str):
        conversation = await runtime.store.load(address)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return _conversation_view(runtime, conversation)

    @app.get("/api/v1/conversations/{address}/messages")
    async def poll_messages(address: str):
        """Replies queued while no WebSocket was connected (e.g. after login)."""
        return {"address": address, "messages": chat_adapter.drain(address)}

    @app.websocket("/ws/chat/{address}")
    async def websocket_chat(websocket: WebSocket, address: str):
        """
        Client sends JSON events:
          {"type": "message", "content": "add \\"Lunch\\" 2026-10-20 12:00"}
          {"type": "heartbeat"}
        Plain text frames are treated as messages.
        """
        await websocket.accept()
        await chat_adapter.register_connection(address, websocket)

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    event = json.loads(raw)
                except json.JSONDecodeError:
                    event = {"type": "message", "content": raw}
                if not isinstance(event, dict):
                    event = {"type": "message", "content": raw}

                text = await chat_adapter.handle_client_event(address, event)
                if text:
                    await dispatcher.handle_message(address, text, deliver=True)
        except WebSocketDisconnect:
            await chat_adapter.remove_connection(address, websocket)

    # ══════════════════════════════════════════════════════════
    #  OAUTH REDIRECT
    # ══════════════════════════════════════════════════════════

    @app.get("/oauth2callback")
    async def oauth_callback(request: Request):
        params = dict(request.query_params)
        token = params.pop("state", "")
        result = await dispatcher.handle_callback(token, params)
        if result.resumed:
            return HTMLResponse(CALLBACK_SUCCESS_HTML, status_code=200)
        if result.reason == "exchange_failed":
            return HTMLResponse(CALLBACK_FAILED_HTML, status_code=400)
        return HTMLResponse(CALLBACK_REJECTED_HTML, status_code=400)

    return app


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3978)

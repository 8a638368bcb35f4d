from __future__ import annotations

import asyncio
import hmac
import inspect
import json
import logging
from typing import TYPE_CHECKING, Literal

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from localid.core.metrics import METRICS_CONTENT_TYPE, metrics_generate_latest
from localid.errors import IdentityProfileError
from localid.models.consent import ConsentDecision, ConsentSession
from localid.models.identity import DENIAL_MESSAGES, DenialReason, SignedAssertion, utc_now
from localid.protocols.consent import ConsentDecisionHandler

if TYPE_CHECKING:
    from localid.consent.broker import ConsentBroker
    from localid.core.assertion_service import AssertionService
    from localid.persistence.profile_store import IdentityProfileStore

logger = logging.getLogger(__name__)

_SERVICE_NAME = "Local OAuth Agent"
_TOKEN_HEADER = "X-LocalID-Token"
_JSON_MEDIA_TYPE = "application/json"

_STATUS_BY_REASON: dict[DenialReason, int] = {
    DenialReason.validation_failed: 400,
    DenialReason.user_denied: 403,
    DenialReason.timed_out: 403,
    DenialReason.identity_not_configured: 409,
    DenialReason.internal_error: 500,
}


class ConsentResponsePayload(BaseModel):
    action: Literal["approve", "deny", "decline", "dismiss"]
    name: str | None = None
    email: str | None = None
    remember: bool = False

    def to_decision(self) -> ConsentDecision:
        return ConsentDecision(
            approved=self.action == "approve",
            name=self.name,
            email=self.email,
            remember=self.remember,
        )


class IdentityPayload(BaseModel):
    name: str
    email: str


class WebChannel:
    """HTTP transport for assertion requests plus a browser-facing consent surface.

    ``POST /oauth`` is the endpoint local web applications call. Consent
    prompts presented on this surface are listed under ``/api/consent`` and
    pushed to ``/ws`` clients; decisions posted back are routed strictly by
    the session id they carry.
    """

    channel_name = "web"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 5000,
        auth_token: str | None = None,
        allowed_origins: list[str] | None = None,
        profile_store: IdentityProfileStore | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._auth_token = auth_token
        # Consent and identity routes answer only pages served by the agent itself;
        # allowed_origins governs /oauth alone.
        self._own_origins = frozenset(
            f"http://{name}:{port}" for name in {host, "127.0.0.1", "localhost"}
        )
        self._profile_store = profile_store
        self._service: AssertionService | None = None
        self._broker: ConsentBroker | None = None
        self._decision_handler: ConsentDecisionHandler | None = None
        self._pending: dict[str, ConsentSession] = {}
        self._websockets: set[WebSocket] = set()
        self._ws_lock = asyncio.Lock()

        self.app = FastAPI(title="localid")
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins if allowed_origins is not None else ["http://localhost:3000"],
            allow_methods=["GET", "POST", "PUT", "OPTIONS"],
            allow_headers=["Content-Type", _TOKEN_HEADER],
        )
        self._setup_routes()

    def bind_service(self, service: AssertionService, broker: ConsentBroker | None = None) -> None:
        """Attach the assertion service once the consent broker has been built."""
        self._service = service
        self._broker = broker

    # ── Routes ───────────────────────────────────────────────────────

    def _setup_routes(self) -> None:
        @self.app.get("/health")
        async def health() -> JSONResponse:
            pending = len(self._broker.pending()) if self._broker is not None else len(self._pending)
            return JSONResponse(
                {
                    "status": "ok",
                    "service": _SERVICE_NAME,
                    "pending_consents": pending,
                },
            )

        @self.app.get("/metrics")
        async def metrics() -> Response:
            return Response(content=metrics_generate_latest(), media_type=METRICS_CONTENT_TYPE)

        @self.app.post("/oauth")
        async def oauth(request: Request) -> JSONResponse:
            service = self._service
            if service is None:
                return JSONResponse({"error": "Assertion service not ready"}, status_code=503)

            body: object = {}
            if _is_json(request):
                try:
                    body = await request.json()
                except (json.JSONDecodeError, UnicodeDecodeError):
                    body = {}
            if not isinstance(body, dict):
                body = {}

            result = await service.assert_identity(body)
            if isinstance(result, SignedAssertion):
                return JSONResponse(result.to_response())
            return JSONResponse(result.to_response(), status_code=_STATUS_BY_REASON[result.reason])

        self._setup_identity_routes()
        self._setup_consent_routes()

        @self.app.websocket("/ws")
        async def ws_endpoint(websocket: WebSocket) -> None:
            if not await self._check_ws_access(websocket):
                return

            await websocket.accept()
            async with self._ws_lock:
                self._websockets.add(websocket)
            try:
                for session in list(self._pending.values()):
                    await websocket.send_text(json.dumps(self._card_message(session)))
                while True:
                    payload = await websocket.receive_text()
                    await self._handle_client_payload(websocket, payload)
            except WebSocketDisconnect:
                pass
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)

    def _setup_identity_routes(self) -> None:
        @self.app.get("/api/identity")
        async def get_identity(request: Request) -> JSONResponse:
            self._check_http_access(request)
            store = self._require_profile_store()
            profile = store.load()
            if profile is None:
                return JSONResponse(
                    {"error": DENIAL_MESSAGES[DenialReason.identity_not_configured]},
                    status_code=404,
                )
            return JSONResponse(profile.to_record())

        @self.app.put("/api/identity")
        async def put_identity(request: Request, payload: IdentityPayload) -> JSONResponse:
            self._check_http_access(request)
            store = self._require_profile_store()
            try:
                profile = store.save(payload.name, payload.email)
            except IdentityProfileError as exc:
                return JSONResponse({"error": str(exc)}, status_code=400)
            except OSError as exc:
                logger.warning("Failed to persist identity profile", exc_info=True)
                raise HTTPException(status_code=500, detail="Unable to save identity") from exc
            return JSONResponse(profile.to_record())

    def _setup_consent_routes(self) -> None:
        @self.app.get("/api/consent/pending")
        async def pending_consents(request: Request) -> JSONResponse:
            self._check_http_access(request)
            return JSONResponse([session.to_card() for session in self._pending.values()])

        @self.app.post("/api/consent/{session_id}")
        async def respond(
            request: Request,
            session_id: str,
            payload: ConsentResponsePayload,
        ) -> JSONResponse:
            self._check_http_access(request)
            accepted = await self._dispatch_decision(session_id, payload.to_decision())
            if not accepted:
                raise HTTPException(status_code=404, detail="No pending consent with that id")
            return JSONResponse({"status": "ok", "session_id": session_id})

    # ── ConsentSurface ───────────────────────────────────────────────

    def register_decision_handler(self, handler: ConsentDecisionHandler | None) -> None:
        self._decision_handler = handler

    async def present(self, session: ConsentSession) -> None:
        self._pending[session.session_id] = session
        await self._broadcast(self._card_message(session))

    async def withdraw(self, session_id: str) -> None:
        if self._pending.pop(session_id, None) is None:
            return
        await self._broadcast(
            {
                "type": "consent_withdrawn",
                "id": session_id,
                "timestamp": utc_now().isoformat(),
            },
        )

    async def _dispatch_decision(self, session_id: str, decision: ConsentDecision) -> bool:
        # Only sessions presented on this surface can be answered through it.
        if session_id not in self._pending:
            return False
        handler = self._decision_handler
        if handler is None:
            return False
        result = handler(session_id, decision)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def _handle_client_payload(self, websocket: WebSocket, payload: str) -> None:
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            return
        if not isinstance(parsed, dict) or parsed.get("type") != "consent_response":
            return

        session_id = parsed.get("session_id")
        if not isinstance(session_id, str) or not session_id.strip():
            return
        try:
            response = ConsentResponsePayload.model_validate(parsed)
        except ValidationError:
            return

        accepted = await self._dispatch_decision(session_id, response.to_decision())
        await websocket.send_text(
            json.dumps({"type": "consent_ack", "session_id": session_id, "accepted": accepted}),
        )

    def _card_message(self, session: ConsentSession) -> dict[str, object]:
        return {
            "type": "consent_card",
            "card": session.to_card(),
            "timestamp": utc_now().isoformat(),
        }

    async def _broadcast(self, payload: dict[str, object]) -> None:
        async with self._ws_lock:
            targets = list(self._websockets)
        text = json.dumps(payload)
        for websocket in targets:
            try:
                await websocket.send_text(text)
            except (RuntimeError, WebSocketDisconnect):
                logger.debug("Dropping closed consent websocket")
                async with self._ws_lock:
                    self._websockets.discard(websocket)

    # ── Auth helpers ─────────────────────────────────────────────────

    def _token_matches(self, candidate: str | None) -> bool:
        if not self._auth_token:
            return True
        if candidate is None:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), self._auth_token.encode("utf-8"))

    def _origin_allowed(self, origin: str | None) -> bool:
        # Non-browser clients send no Origin header.
        return origin is None or origin in self._own_origins

    def _check_http_access(self, request: Request) -> None:
        if not self._origin_allowed(request.headers.get("origin")):
            raise HTTPException(status_code=403, detail="forbidden origin")
        candidate = request.headers.get(_TOKEN_HEADER) or request.query_params.get("token")
        if not self._token_matches(candidate):
            raise HTTPException(status_code=401, detail="unauthorized")

    async def _check_ws_access(self, websocket: WebSocket) -> bool:
        """Reject WebSocket connections from foreign pages or without the token.

        Browsers do not apply CORS to WebSockets, so the Origin header is
        checked here.
        """
        if not self._origin_allowed(websocket.headers.get("origin")):
            await websocket.close(code=4403, reason="forbidden origin")
            return False
        if self._token_matches(websocket.query_params.get("token")):
            return True
        await websocket.close(code=4401, reason="unauthorized")
        return False

    def _require_profile_store(self) -> IdentityProfileStore:
        if self._profile_store is None:
            raise HTTPException(status_code=503, detail="Identity store not configured")
        return self._profile_store

    async def serve(self, log_level: str = "info") -> None:
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level=log_level)
        server = uvicorn.Server(config)
        await server.serve()


def _is_json(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower() == _JSON_MEDIA_TYPE


__all__ = ["ConsentResponsePayload", "IdentityPayload", "WebChannel"]

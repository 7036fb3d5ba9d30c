"""Socket.IO server for live cursor tracking.

Frontend convention:
- URL base: ws://<host>:8000
- Socket.IO path: /ws/tracking/
- Auth: optional `query.token` or `auth.token` (JWT access token); without a
  token the connection is anonymous

Handlers run with ``async_handlers=False`` so the messages of one connection
are processed strictly in arrival order.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import parse_qs

import socketio
from channels.db import database_sync_to_async
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import TokenError

from event_analytics.realtime.pipeline import MESSAGE_KINDS
from event_analytics.realtime.pipeline import IngestionPipeline
from event_analytics.realtime.pipeline import PipelineContext
from event_analytics.realtime.reconciler import Reconciler
from event_analytics.realtime.registry import ConnectionRegistry
from event_analytics.realtime.registry import Identity
from event_analytics.realtime.rooms import RoomBroadcaster
from event_analytics.realtime.sampling import MoveSampler
from event_analytics.tracking.store import SessionLogStore

logger = logging.getLogger(__name__)


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",
    async_handlers=False,
    logger=False,
    engineio_logger=False,
)

registry = ConnectionRegistry()
broadcaster = RoomBroadcaster(sio, registry)
store = SessionLogStore()
pipeline = IngestionPipeline(
    PipelineContext(
        registry=registry,
        broadcaster=broadcaster,
        store=store,
        lookup_event=store.joinable_event_id,
        should_persist=MoveSampler.from_settings(),
    )
)
reconciler = Reconciler(pipeline, disconnect=sio.disconnect)


@database_sync_to_async
def _get_identity_from_access_token(token: str) -> Identity:
    jwt_auth = JWTAuthentication()
    validated = jwt_auth.get_validated_token(token)
    user = jwt_auth.get_user(validated)
    return Identity(
        user_id=int(user.id),
        name=getattr(user, "display_name", "") or user.get_username(),
        avatar=getattr(user, "avatar", "") or "",
    )


def _scope(environ: dict[str, Any]) -> Any:
    if isinstance(environ, dict) and "asgi.scope" in environ:
        inner = environ.get("asgi.scope")
        if isinstance(inner, dict):
            return inner
    return environ


def _extract_token(environ: dict[str, Any], auth: Any | None) -> str | None:
    """Extract JWT token from Socket.IO environ/auth.

    Handles python-socketio environ shapes across ASGI/WSGI servers.
    """

    scope = _scope(environ)
    query_string: str | bytes = ""
    if isinstance(scope, dict) and "query_string" in scope:
        query_string = scope.get("query_string", b"")
    elif isinstance(scope, dict) and "QUERY_STRING" in scope:
        query_string = scope.get("QUERY_STRING", "")

    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    if isinstance(token, str) and token:
        return token

    # Allow `auth: { token }` as fallback.
    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token

    return None


def _transport_context(environ: dict[str, Any]) -> dict[str, str]:
    """User agent and client IP from the handshake request."""
    if not isinstance(environ, dict):
        return {}
    user_agent = str(environ.get("HTTP_USER_AGENT", "") or "")
    ip = ""
    xff = environ.get("HTTP_X_FORWARDED_FOR")
    if xff:
        # XFF format: client, proxy1, proxy2
        ip = str(xff).split(",")[0].strip()
    if not ip:
        ip = str(environ.get("REMOTE_ADDR", "") or "").strip()
    if not ip:
        scope = _scope(environ)
        client = scope.get("client") if isinstance(scope, dict) else None
        if client:
            ip = str(client[0])
    return {"user_agent": user_agent[:512], "ip_address": ip}


async def _resolve_identity(token: str | None) -> Identity | None:
    if not token:
        return None
    try:
        return await _get_identity_from_access_token(token)
    except TokenError as exc:
        message = str(exc)
        if "expired" in message.lower():
            msg = "jwt_expired"
            raise ConnectionRefusedError(msg) from exc
        msg = "unauthorized"
        raise ConnectionRefusedError(msg) from exc
    except AuthenticationFailed as exc:  # user not found / inactive, etc.
        msg = "unauthorized"
        raise ConnectionRefusedError(msg) from exc
    except Exception as exc:
        logger.exception("Socket.IO connect error")
        msg = "server_error"
        raise ConnectionRefusedError(msg) from exc


@sio.event
async def connect(sid: str, environ: dict[str, Any], auth: Any | None = None):
    identity = await _resolve_identity(_extract_token(environ, auth))
    pipeline.on_connect(sid, identity, _transport_context(environ))
    # Covers servers that do not deliver ASGI lifespan events.
    reconciler.start()
    logger.info(
        "Tracking connection %s (%s)",
        sid,
        f"user {identity.user_id}" if identity else "anonymous",
    )


@sio.event
async def disconnect(sid: str, *args: Any):
    await pipeline.on_disconnect(sid)


def _make_handler(kind: str):
    async def handler(sid: str, data: Any = None):
        return await pipeline.dispatch(kind, sid, data)

    handler.__name__ = f"on_{kind.replace('-', '_')}"
    return handler


for _kind in MESSAGE_KINDS:
    sio.on(_kind, _make_handler(_kind))


async def start_reconciler() -> None:
    reconciler.start()


async def stop_reconciler() -> None:
    await reconciler.stop()

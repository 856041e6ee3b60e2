"""HTTP front end: routes upgrade requests into relay sessions and serves the link form."""

from __future__ import annotations

import contextlib
import html
from pathlib import Path
from string import Template

import structlog
from aiohttp import web

from wsbridge.core.config import RelayConfig, get_config
from wsbridge.core.errors import (
    InvalidTargetError,
    SessionLimitError,
    UpgradeSetupError,
)
from wsbridge.core.target import TargetEndpoint, is_valid_target, resolve_target
from wsbridge.observability.metrics import (
    ACTIVE_SESSIONS,
    SESSIONS,
    generate_metrics,
    get_content_type,
)
from wsbridge.relay.connection import InboundConnection, dial
from wsbridge.relay.registry import SessionRegistry
from wsbridge.relay.session import Dialer, RelaySession

logger = structlog.get_logger()

STATIC_DIR = Path(__file__).parent.parent / "static"

FORM_FIELD = "target_url"
TRY_AGAIN_LATER_CLOSE_CODE = 1013


def is_upgrade_request(request: web.Request) -> bool:
    """True if the request asks to upgrade to a WebSocket."""
    return request.headers.get("Upgrade", "").lower() == "websocket"


def _render(name: str, **values: str) -> str:
    style = (STATIC_DIR / "style.css").read_text(encoding="utf-8")
    page = Template((STATIC_DIR / name).read_text(encoding="utf-8"))
    escaped = {key: html.escape(value) for key, value in values.items()}
    return page.safe_substitute(style=style, **escaped)


class RelayServer:
    """WebSocket relay server.

    Any request carrying ``Upgrade: websocket`` becomes a relay session to
    the target named in the query string (or the configured default).
    Everything else is plain page dispatch.
    """

    def __init__(self, config: RelayConfig | None = None, dialer: Dialer = dial):
        self.config = config or get_config()
        self.sessions = SessionRegistry(max_sessions=self.config.max_sessions)
        self._dialer = dialer
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._routes = {
            ("GET", "/"): self._handle_index,
            ("GET", "/index.html"): self._handle_index,
            ("POST", "/connect"): self._handle_connect,
            ("GET", "/health"): self._handle_health_check,
            ("GET", "/metrics"): self._handle_metrics,
        }

    def create_app(self) -> web.Application:
        """Build the aiohttp application (also used directly by tests)."""
        app = web.Application()
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        app.on_shutdown.append(self._on_shutdown)
        self._app = app
        return app

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse bind address into host and port."""
        if ":" in bind:
            host, port = bind.rsplit(":", 1)
            return host, int(port)
        return "0.0.0.0", int(bind)

    async def start(self) -> None:
        """Start listening on the configured bind address."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        host, port = self._parse_bind(self.config.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Relay server started",
            host=host,
            port=port,
            default_target=self.config.default_target,
            max_sessions=self.config.max_sessions,
            dial_timeout=self.config.dial_timeout,
        )

    async def stop(self) -> None:
        """Stop the server, closing every live session."""
        logger.info("Stopping relay server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Relay server stopped")

    async def _on_shutdown(self, app: web.Application) -> None:
        for session in self.sessions.sessions():
            with contextlib.suppress(Exception):
                await session.close(1001, "Relay shutting down")

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        if is_upgrade_request(request):
            return await self._handle_relay(request)

        handler = self._routes.get((request.method, request.path))
        if handler is None:
            return web.Response(text="Not Found", status=404)
        return await handler(request)

    def _resolve(self, request: web.Request) -> TargetEndpoint:
        requested = request.query.get(self.config.target_param)
        return resolve_target(requested, self.config.default_target)

    async def _handle_relay(self, request: web.Request) -> web.StreamResponse:
        """Accept the client WebSocket and relay it to the resolved target."""
        try:
            target = self._resolve(request)
            self.sessions.check_capacity()
        except (InvalidTargetError, SessionLimitError) as e:
            # MissingTargetError (nothing requested, no default) carries 503:
            # no backend is available. A malformed target is a 400.
            logger.warning("Relay request rejected", peer=request.remote, reason=str(e))
            SESSIONS.labels(outcome="rejected").inc()
            return web.Response(text=str(e), status=e.status)

        logger.info("Attempting to relay WebSocket", peer=request.remote, target=target.url)

        try:
            ws = await self._accept(request)
        except UpgradeSetupError as e:
            logger.error("WebSocket upgrade failed", peer=request.remote, error=str(e))
            SESSIONS.labels(outcome="rejected").inc()
            return web.Response(text=f"WebSocket proxy setup failed: {e}", status=e.status)

        session = RelaySession(InboundConnection(ws), target, self.config, dialer=self._dialer)
        try:
            self.sessions.add(session)
        except SessionLimitError as e:
            logger.warning("Session limit reached after handshake", session=str(session.id)[:8])
            SESSIONS.labels(outcome="rejected").inc()
            await ws.close(code=TRY_AGAIN_LATER_CLOSE_CODE, message=str(e).encode())
            return ws

        ACTIVE_SESSIONS.set(len(self.sessions))
        try:
            await session.run()
        finally:
            self.sessions.discard(session)
            ACTIVE_SESSIONS.set(len(self.sessions))
            outcome = "dial_failed" if session.dial_error else "completed"
            SESSIONS.labels(outcome=outcome).inc()

        return ws

    async def _accept(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(max_msg_size=self.config.max_message_size)
        if not ws.can_prepare(request).ok:
            raise UpgradeSetupError("request is not a valid WebSocket handshake")
        try:
            await ws.prepare(request)
        except (web.HTTPException, ConnectionError, RuntimeError) as e:
            raise UpgradeSetupError(str(e)) from e
        return ws

    async def _handle_index(self, request: web.Request) -> web.Response:
        page = _render("index.html", default_target=self.config.default_target or "")
        return web.Response(text=page, content_type="text/html")

    async def _handle_connect(self, request: web.Request) -> web.Response:
        """Turn a submitted backend URL into a relay link for the client."""
        try:
            form = await request.post()
        except ValueError as e:
            logger.error("Failed to parse connect form", error=str(e))
            return web.Response(text=f"Error processing form: {e}", status=500)

        target = form.get(FORM_FIELD)
        if not isinstance(target, str) or not is_valid_target(target):
            return web.Response(
                text="Invalid target URL provided. Must start with 'wss://' or 'ws://'.",
                status=400,
            )

        proxy_url = request.url.origin().with_query({self.config.target_param: target})
        page = _render("link.html", proxy_url=str(proxy_url), target_url=target)
        return web.Response(text=page, content_type="text/html")

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "sessions": len(self.sessions)})

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        ACTIVE_SESSIONS.set(len(self.sessions))
        # CONTENT_TYPE_LATEST carries a charset, which content_type= rejects.
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

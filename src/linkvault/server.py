"""HTTP server for linkvault.

Single aiohttp server handling all routes:
- /health - Health check
- /code - Pair by phone number, answers with a pairing code
- /qr - Pair by QR code, answers with an HTML page or JSON
- /download - Redirect a locator to the archive URL
- /load, /load/list - Reconnect and list retained sessions
- /status - Session record and live state
- /session/{id} - Cancel a workflow or disconnect a loaded session
"""

import logging
import time
from collections import defaultdict
from typing import Dict, Optional

from aiohttp import web

from linkvault import __version__
from linkvault.archive import ArchiveClient, HttpArchiveClient
from linkvault.config import Config
from linkvault.errors import LinkVaultError, SessionBusy
from linkvault.loader import SessionLoader
from linkvault.locator import parse_locator
from linkvault.logging import short_id
from linkvault.pairing import PairingManager, PairingMode, QrGenerator
from linkvault.pairing.validation import validate_session_id
from linkvault.protocols import SocketFactory
from linkvault.session_index import SessionIndex
from linkvault.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Rate Limiter
# =============================================================================


class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = defaultdict(list)

    def is_allowed(self, key: str) -> bool:
        now = time.time()
        cutoff = now - self.window_seconds
        self.requests[key] = [t for t in self.requests[key] if t > cutoff]
        if len(self.requests[key]) >= self.max_requests:
            return False
        self.requests[key].append(now)
        return True


def _error_response(error: LinkVaultError) -> web.Response:
    """JSON error body for a linkvault error."""
    return web.json_response({"error": str(error), "code": error.code}, status=error.status)


# =============================================================================
# Server
# =============================================================================


class SessionServer:
    """HTTP front end for pairing and session management.

    Each pairing request gets exactly one response: the QR code or pairing
    code, or the error that stopped the workflow before either existed.
    Anything that goes wrong later is recorded in the session index.
    """

    def __init__(
        self,
        manager: PairingManager,
        loader: SessionLoader,
        registry: SessionRegistry,
        index: Optional[SessionIndex] = None,
        qr_response: str = "html",
        locator_tag: str = "SESS",
        public_url: str = "https://mega.nz",
        rate_limit_per_minute: int = 30,
    ):
        """Initialize server.

        Args:
            manager: Runs pairing workflows.
            loader: Reconnects retained sessions.
            registry: Shared registry of live handles.
            index: Session records for /status and /load/list.
            qr_response: Default /qr answer, "html" or "json".
            locator_tag: Tag accepted by /download.
            public_url: Archive origin /download redirects to.
            rate_limit_per_minute: Pairing requests per client IP per minute.
        """
        self.manager = manager
        self.loader = loader
        self.registry = registry
        self.index = index
        self.qr_response = qr_response
        self.locator_tag = locator_tag
        self.public_url = public_url

        self._pairing_limiter = RateLimiter(max_requests=rate_limit_per_minute, window_seconds=60)
        self._started_at = time.time()

        self.app = web.Application()
        self._setup_routes()
        self.app.on_shutdown.append(self._on_shutdown)
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    @classmethod
    def from_config(
        cls,
        config: Config,
        socket_factory: SocketFactory,
        archive: Optional[ArchiveClient] = None,
    ) -> "SessionServer":
        """Wire the server and its collaborators from configuration."""
        registry = SessionRegistry()
        index = SessionIndex(config.index_path, max_records=config.index_max_records)
        if archive is None:
            archive = HttpArchiveClient(
                config.archive.upload_url,
                username=config.archive.username,
                password=config.archive.password,
                tag=config.archive.tag,
                timeout=config.archive.timeout,
            )

        manager = PairingManager.from_config(config, socket_factory, archive, registry, index)
        loader = SessionLoader(
            config.sessions_dir,
            socket_factory,
            registry,
            reconnect_delay=config.pairing.reconnect_delay,
            reconnect_attempts=config.pairing.reconnect_attempts,
        )
        return cls(
            manager=manager,
            loader=loader,
            registry=registry,
            index=index,
            qr_response=config.qr_response,
            locator_tag=config.archive.tag,
            public_url=config.archive.public_url,
            rate_limit_per_minute=config.rate_limit_per_minute,
        )

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)

        # Pairing
        self.app.router.add_get("/code", self._handle_code)
        self.app.router.add_get("/qr", self._handle_qr)

        # Locators
        self.app.router.add_get("/download", self._handle_download)

        # Retained sessions
        self.app.router.add_get("/load", self._handle_load)
        self.app.router.add_get("/load/list", self._handle_load_list)
        self.app.router.add_get("/status", self._handle_status)
        self.app.router.add_delete("/session/{session_id}", self._handle_delete_session)

    # =========================================================================
    # Health
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "ok",
            "version": __version__,
            "uptime": round(time.time() - self._started_at, 1),
            "pairing": len(self.manager),
            "active": len(self.registry),
        })

    # =========================================================================
    # Pairing
    # =========================================================================

    def _rate_limited(self, request: web.Request) -> Optional[web.Response]:
        client = request.remote or "unknown"
        if self._pairing_limiter.is_allowed(client):
            return None
        logger.warning(f"Rate limited pairing request from {client}")
        return web.json_response(
            {"error": "Too many requests", "code": "RATE_LIMITED"},
            status=429,
        )

    async def _handle_code(self, request: web.Request) -> web.Response:
        """Start pairing-code linking for a phone number."""
        limited = self._rate_limited(request)
        if limited is not None:
            return limited

        try:
            artifact = await self.manager.start_pairing(
                PairingMode.CODE,
                phone_number=request.query.get("number"),
                session_id=request.query.get("sessionId"),
            )
        except LinkVaultError as e:
            return _error_response(e)

        return web.json_response({"code": artifact.code, "sessionId": artifact.session_id})

    async def _handle_qr(self, request: web.Request) -> web.Response:
        """Start QR linking."""
        limited = self._rate_limited(request)
        if limited is not None:
            return limited

        response_format = request.query.get("format", self.qr_response)
        if response_format not in ("html", "json"):
            response_format = self.qr_response

        try:
            artifact = await self.manager.start_pairing(
                PairingMode.QR,
                session_id=request.query.get("sessionId"),
            )
        except LinkVaultError as e:
            return _error_response(e)

        if response_format == "json":
            return web.json_response({"qr": artifact.qr_data_url, "sessionId": artifact.session_id})

        page = QrGenerator(artifact.qr).to_html(artifact.session_id, artifact.qr_data_url)
        return web.Response(text=page, content_type="text/html")

    # =========================================================================
    # Locators
    # =========================================================================

    async def _handle_download(self, request: web.Request) -> web.Response:
        """Redirect a locator to its archive URL."""
        try:
            parts = parse_locator(request.query.get("id", ""), self.locator_tag)
        except LinkVaultError as e:
            return _error_response(e)
        raise web.HTTPFound(parts.to_url(self.public_url))

    # =========================================================================
    # Retained sessions
    # =========================================================================

    async def _handle_load(self, request: web.Request) -> web.Response:
        """Reconnect a retained session."""
        session_id = request.query.get("sessionId", "")
        try:
            # The pairing workflow owns the credential directory until it ends
            if self.manager.get_workflow(session_id) is not None:
                raise SessionBusy(f"Session {session_id} is still pairing")
            result = await self.loader.load(session_id)
        except LinkVaultError as e:
            return _error_response(e)
        return web.json_response(result)

    async def _handle_load_list(self, request: web.Request) -> web.Response:
        """List retained sessions."""
        sessions = self.loader.list()
        if self.index is not None:
            for entry in sessions:
                record = self.index.get(entry["sessionId"])
                entry["record"] = record.to_dict() if record else None
        return web.json_response({"sessions": sessions})

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Record, live workflow state and registry activity for a session."""
        try:
            session_id = validate_session_id(request.query.get("sessionId"))
        except LinkVaultError as e:
            return _error_response(e)

        record = self.index.get(session_id) if self.index is not None else None
        workflow = self.manager.get_workflow(session_id)
        handle = self.registry.get(session_id)
        if record is None and workflow is None and handle is None:
            return web.json_response(
                {"error": "Session not found", "code": "SESSION_NOT_FOUND"},
                status=404,
            )

        return web.json_response({
            "sessionId": session_id,
            "record": record.to_dict() if record else None,
            "state": workflow.describe()["state"] if workflow else None,
            "isActive": bool(handle is not None and handle.is_connected),
        })

    async def _handle_delete_session(self, request: web.Request) -> web.Response:
        """Cancel a running workflow or disconnect a loaded session."""
        session_id = request.match_info["session_id"]

        workflow = self.manager.get_workflow(session_id)
        if workflow is not None:
            cancelled = workflow.cancel()
            await workflow.wait()
            logger.info(f"Session {short_id(session_id)} cancelled via API")
            return web.json_response({"cancelled": cancelled, "sessionId": session_id})

        if await self.loader.disconnect(session_id):
            return web.json_response({"cancelled": True, "sessionId": session_id})

        return web.json_response(
            {"error": "Session not found", "code": "SESSION_NOT_FOUND"},
            status=404,
        )

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.manager.stop()
        await self.loader.stop()

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        if self.index is not None:
            await self.index.load()

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"linkvault server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Stop workflows, loaded sessions and the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        else:
            await self._on_shutdown(self.app)

        logger.info("linkvault server closed")

"""
Gridwall Server - HTTP and WebSocket edge.

Routes:
- GET /               control page with role and socket endpoint baked in
- GET /ws             socket protocol (origin checked, identity attached)
- GET /invite/{token} redeem an invite code, set the session cookie, redirect to /
- GET /auth/me        caller's identity
- GET /health         liveness

Architecture invariants:
- One process, one event loop; layout document, app state and the
  connection set are owned here and mutated only on the loop
- Identity is resolved once per connection, before the upgrade
- Every inbound frame goes through the AuthorizationGate
- Revoking a session closes its connections on the same token-store change
"""

import asyncio
import orjson
import string
import uuid
from aiohttp import web, WSMsgType
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urljoin, urlsplit

from gridwall.core.appState import AppState
from gridwall.core.layoutDoc import LayoutDoc, LayoutUpdateError
from gridwall.core.streamCatalog import StreamCatalog
from gridwall.logging import getLogger, bindConnectionContext
from gridwall.server.auth import AuthManager, SESSION_COOKIE_NAME
from gridwall.server.broadcaster import DeltaBroadcaster
from gridwall.server.connection import ClientConnection, CLOSE_UNAUTHORIZED
from gridwall.server.dispatch import ActionDispatcher, ActionHandler
from gridwall.server.gate import AuthorizationGate
from gridwall.server.tokenStore import TokenStore, InvalidTokenError, inviteCode

TEMPLATE_PATH = Path(__file__).parent / 'templates' / 'control.html'

# How far ahead of the server clock a client update may run
MAX_CLOCK_STEP = 2 ** 20


def originOf(baseUrl: str) -> str:
    parts = urlsplit(baseUrl)
    return f"{parts.scheme}://{parts.netloc}"


def wsEndpointFor(baseUrl: str) -> str:
    endpoint = urljoin(baseUrl if baseUrl.endswith('/') else baseUrl + '/', 'ws')
    if endpoint.startswith('http'):
        endpoint = 'ws' + endpoint[len('http'):]
    return endpoint


class WallServer:
    """
    Gridwall Server.

    Owns the token store, layout document, stream catalog and app state, and
    wires them to the socket edge. actionHandler receives the display actions
    (see dispatch.py); without one they are answered with {error: 'unhandled'}.
    """

    def __init__(self, config: Dict[str, Any], actionHandler: Optional[ActionHandler] = None):
        self.config = config
        self.log = getLogger()

        serverConfig = config.get('server', {})
        self.baseUrl = serverConfig.get('baseUrl', 'http://localhost:8080')
        self.expectedOrigin = originOf(self.baseUrl)
        self.heartbeat = serverConfig.get('heartbeatSeconds', 20)

        # Tokens and sessions
        authConfig = config.get('auth', {})
        self.tokenStore = TokenStore(authConfig.get('tokensPath'), hashRounds=authConfig.get('hashRounds', 10))
        self.authManager = AuthManager(authConfig, self.tokenStore)

        # Shared layout
        gridConfig = config.get('grid', {})
        layoutConfig = config.get('layout', {})
        self.layoutPath = Path(layoutConfig['path']) if layoutConfig.get('path') else None
        self.saveDelay = layoutConfig.get('saveDelaySeconds', 2.0)
        self.layoutDoc = LayoutDoc(clientId='server')
        self._restoreLayout()
        self.layoutDoc.ensureGrid(gridConfig.get('count', 3))
        self.layoutDoc.maxClockStep = MAX_CLOCK_STEP
        self._saveHandle: Optional[asyncio.TimerHandle] = None
        self.layoutDoc.observe(self._scheduleLayoutSave)

        # Streams
        streamsConfig = config.get('streams', {})
        self.catalog = StreamCatalog(streamsConfig.get('customPath'))
        self._loadSourceStreams(streamsConfig.get('path'))

        self.appState = AppState(gridConfig, self.catalog, self.layoutDoc, self.tokenStore)

        # Socket edge
        self.broadcaster = DeltaBroadcaster(self.appState, self.layoutDoc)
        self.dispatcher = ActionDispatcher(self.authManager, self.catalog, actionHandler, self.baseUrl)
        self.gate = AuthorizationGate(self.layoutDoc, self.dispatcher)
        self.tokenStore.changed.subscribe(self._onTokensChanged)
        self._closeTasks: Set[asyncio.Task] = set()

        self.app = web.Application()
        self._setupRoutes()
        self.app.on_startup.append(self._onStartup)
        self.app.on_shutdown.append(self._onShutdown)

        self._runner = None
        self._site = None

    def _setupRoutes(self):
        self.app.router.add_get('/', self.handleControlPage)
        self.app.router.add_get('/ws', self.handleWebSocket)
        self.app.router.add_get('/invite/{token}', self.handleInvite)
        self.app.router.add_get('/auth/me', self.handleAuthMe)
        self.app.router.add_get('/health', self.handleHealth)

    @property
    def connections(self) -> Dict[str, ClientConnection]:
        return self.broadcaster.connections

    async def start(self):
        """Start Server"""
        self.log.info("[Server] Starting...")

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        serverConfig = self.config.get('server', {})
        host = serverConfig.get('host', '0.0.0.0')
        port = serverConfig.get('port', 8080)

        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        self.log.info(f"[Server] Listening on {host}:{port}, baseUrl={self.baseUrl}")

    async def stop(self):
        """Stop Server"""
        self.log.info("[Server] Stopping...")
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self.log.info("[Server] Stopped")

    async def _onStartup(self, app: web.Application):
        invite = self.authManager.ensureBootstrapInvite()
        if invite:
            self.log.warning(f"[Server] Admin invite: {self.dispatcher.inviteUrl(inviteCode(invite))}")

    async def _onShutdown(self, app: web.Application):
        for conn in list(self.connections.values()):
            await conn.close(code=1001, message='Server shutdown')
        self.broadcaster.close()
        self.appState.close()
        if self._saveHandle is not None:
            self._saveHandle.cancel()
            self._saveHandle = None
        self._saveLayout()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _restoreLayout(self):
        if not self.layoutPath or not self.layoutPath.exists():
            return
        try:
            changed = self.layoutDoc.applyUpdate(self.layoutPath.read_bytes(), origin='restore')
            self.log.info(f"[Server] Layout restored from {self.layoutPath}: {changed} registers")
        except (OSError, LayoutUpdateError) as e:
            self.log.error(f"[Server] Failed to restore layout: {e}")

    def _scheduleLayoutSave(self, update: bytes, origin: Any):
        """Save at most once per saveDelay after any layout change"""
        if not self.layoutPath or self._saveHandle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet (construction or scripts): write through
            self._saveLayout()
            return
        self._saveHandle = loop.call_later(self.saveDelay, self._flushLayout)

    def _flushLayout(self):
        self._saveHandle = None
        try:
            self._saveLayout()
        except OSError as e:
            self.log.error(f"[Server] Failed to save layout: {e}")

    def _saveLayout(self):
        if not self.layoutPath:
            return
        self.layoutPath.parent.mkdir(parents=True, exist_ok=True)
        self.layoutPath.write_bytes(self.layoutDoc.encodeStateAsUpdate())
        self.log.info(f"[Server] Layout saved to {self.layoutPath}")

    def _loadSourceStreams(self, path: Optional[str]):
        if not path:
            return
        try:
            streams = orjson.loads(Path(path).read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            self.log.error(f"[Server] Failed to load streams from {path}: {e}")
            return
        if isinstance(streams, dict):
            streams = streams.get('streams', [])
        self.catalog.setSourceStreams(streams)

    # =========================================================================
    # Session revocation
    # =========================================================================

    def _onTokensChanged(self, state: Dict[str, List[Dict[str, Any]]]):
        """Close every non-admin connection whose session token is gone"""
        sessionIds = {t['id'] for t in state.get('sessions', [])}
        for conn in list(self.connections.values()):
            if conn.role == 'admin' or conn.identity.id in sessionIds:
                continue
            self.log.info(f"[Server] Session revoked, closing {conn.connId} ({conn.identity.name})")
            self.broadcaster.detach(conn)
            task = asyncio.ensure_future(conn.close(code=CLOSE_UNAUTHORIZED, message='Session revoked'))
            self._closeTasks.add(task)
            task.add_done_callback(self._closeTasks.discard)

    # =========================================================================
    # HTTP Handlers
    # =========================================================================

    async def _identity(self, request: web.Request) -> tuple:
        return await self.authManager.identityForRequest(request.cookies.get(SESSION_COOKIE_NAME))

    async def handleHealth(self, request: web.Request) -> web.Response:
        return web.json_response({'status': 'ok', 'connections': len(self.connections)})

    async def handleAuthMe(self, request: web.Request) -> web.Response:
        identity, authError = await self._identity(request)
        if authError:
            return web.json_response({'error': authError}, status=401)
        return web.json_response(identity.toDict())

    async def handleInvite(self, request: web.Request) -> web.Response:
        """Redeem an invite and bind the new session to the cookie"""
        try:
            identity, cookieValue = await self.authManager.redeemInvite(request.match_info['token'])
        except InvalidTokenError:
            self.log.warning(f"[Server] Invalid invite from {request.remote}")
            return web.Response(status=403, text='Invalid invite')

        cookieSettings = self.authManager.getCookieSettings()
        response = web.Response(status=302, headers={'Location': '/'})
        response.set_cookie(
            cookieSettings['name'],
            cookieValue,
            max_age=cookieSettings['max_age'],
            httponly=cookieSettings['httponly'],
            secure=cookieSettings['secure'],
            samesite=cookieSettings['samesite'],
            path=cookieSettings['path']
        )
        return response

    async def handleControlPage(self, request: web.Request) -> web.Response:
        identity, authError = await self._identity(request)
        if authError:
            return web.Response(status=403, text=authError)
        html = string.Template(TEMPLATE_PATH.read_text(encoding='utf-8')).safe_substitute(
            role=identity.role,
            wsEndpoint=wsEndpointFor(self.baseUrl)
        )
        return web.Response(text=html, content_type='text/html')

    # =========================================================================
    # WebSocket
    # =========================================================================

    async def handleWebSocket(self, request: web.Request) -> web.StreamResponse:
        """
        Handle a control-panel socket.

        Rejected before the upgrade: non-upgrade requests (404), foreign
        origins (403), missing or invalid sessions (403).
        """
        ws = web.WebSocketResponse(heartbeat=self.heartbeat)
        if not ws.can_prepare(request).ok:
            return web.Response(status=404, text='Not found')

        origin = request.headers.get('Origin')
        if origin != self.expectedOrigin:
            self.log.warning(f"[Server] Rejected socket from origin {origin!r}")
            return web.Response(status=403, text='Forbidden')

        identity, authError = await self._identity(request)
        if authError:
            self.log.warning(f"[Server] Rejected socket: {authError}")
            return web.Response(status=403, text=authError)

        await ws.prepare(request)

        connId = str(uuid.uuid4())
        bindConnectionContext(connId, identity.name)
        self.log.info(f"[Server] WebSocket connection: {connId} from {request.remote}, "
                      f"user={identity.name}, role={identity.role}")

        conn = ClientConnection(connId, ws, identity)
        conn.start()
        self.broadcaster.attach(conn)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.BINARY:
                    self.gate.handleBinary(conn, msg.data)
                elif msg.type == WSMsgType.TEXT:
                    self.gate.handleText(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self.log.error(f"[Server] WebSocket error: {ws.exception()}")

        except Exception as e:
            self.log.error(f"[Server] Error in WebSocket loop: {e}", exc_info=True)

        finally:
            self.broadcaster.detach(conn)
            await conn.stop()
            self.log.info(f"[Server] Disconnected: {connId}")

        return ws

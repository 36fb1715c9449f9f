"""
Action dispatch.

Token and stream-catalog actions are handled here. Display actions (views,
listening, devtools, stream-delay control) belong to the display layer and
are forwarded to an ActionHandler together with a respond callback bound to
the request id, so concurrent requests on one connection stay correlated.
Forwarded actions run concurrently; their replies may arrive in any order.
"""

from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from gridwall.core.actions import (
    Action, ActionError, CreateInvite, DeleteToken, UpdateCustomStream,
    DeleteCustomStream, RotateStream, SetListeningView, SetViewBackgroundListening,
    SetViewBlurred, ReloadView, Browse, DevTools, SetStreamCensored, SetStreamRunning,
)
from gridwall.core.streamCatalog import StreamCatalog
from gridwall.logging import getLogger
from gridwall.server.auth import AuthManager, Identity
from gridwall.server.connection import ClientConnection
from gridwall.server.tokenStore import inviteCode

Respond = Callable[[Dict[str, Any]], Any]

FORWARDED_ACTIONS = (
    SetListeningView, SetViewBackgroundListening, SetViewBlurred, ReloadView,
    Browse, DevTools, SetStreamCensored, SetStreamRunning,
)


class ActionHandler:
    """Display-layer collaborator. Must call respond exactly once per action."""

    async def handle(self, action: Action, identity: Identity, respond: Respond):
        raise NotImplementedError


class NullActionHandler(ActionHandler):
    """Used when no display layer is attached"""

    def __init__(self):
        self.log = getLogger()

    async def handle(self, action: Action, identity: Identity, respond: Respond):
        self.log.warning(f"[Dispatch] No action handler for {action.TYPE.value}", user=identity.name)
        respond({'error': 'unhandled'})


class ActionDispatcher:

    def __init__(self, authManager: AuthManager, catalog: StreamCatalog,
                 handler: Optional[ActionHandler] = None, baseUrl: str = ''):
        self.log = getLogger()
        self.authManager = authManager
        self.catalog = catalog
        self.handler = handler or NullActionHandler()
        self.baseUrl = baseUrl.rstrip('/')

    def inviteUrl(self, code: str) -> str:
        return f"{self.baseUrl}/invite/{code}"

    def dispatch(self, conn: ClientConnection, action: Action):
        """
        Perform an already authorized action; exactly one response per action.

        Catalog and token deletions complete inline. Invite creation (bcrypt)
        and forwarded display actions run as connection tasks, so a slow one
        never holds up the frames behind it.
        """
        respond = partial(conn.respond, action.requestId)
        identity = conn.identity

        if isinstance(action, CreateInvite):
            conn.spawn(self._guarded(conn, action, self._createInvite(action, identity, respond)))

        elif isinstance(action, DeleteToken):
            deleted = self.authManager.deleteToken(action.tokenId)
            if deleted:
                self.log.info(f"[Dispatch] Token {action.tokenId} deleted by {identity.name}")
            respond({'deleted': deleted})

        elif isinstance(action, UpdateCustomStream):
            try:
                stream = self.catalog.updateCustomStream(action.url, action.data)
            except ValueError as e:
                respond({'error': 'invalid-request', 'detail': str(e)})
                return
            respond({'stream': stream})

        elif isinstance(action, DeleteCustomStream):
            respond({'deleted': self.catalog.deleteCustomStream(action.url)})

        elif isinstance(action, RotateStream):
            self.catalog.setRotation(action.url, action.rotation)
            respond({})

        elif isinstance(action, FORWARDED_ACTIONS):
            conn.spawn(self._guarded(conn, action, self.handler.handle(action, identity, respond)))

        else:
            raise ActionError(f"Unhandled action type: {action.TYPE.value}")

    async def _createInvite(self, action: CreateInvite, identity: Identity, respond: Respond):
        try:
            invite = await self.authManager.createInvite(identity, action.name, action.role)
        except PermissionError as e:
            self.log.warning(f"[Dispatch] Invite refused: {e}", user=identity.name)
            respond({'error': 'unauthorized'})
            return
        except ValueError as e:
            respond({'error': 'invalid-request', 'detail': str(e)})
            return
        respond({
            'tokenId': invite['id'],
            'name': invite['name'],
            'role': invite['role'],
            'secret': invite['secret'],
            'url': self.inviteUrl(inviteCode(invite)),
        })

    async def _guarded(self, conn: ClientConnection, action: Action, work: Awaitable[Any]):
        try:
            await work
        except Exception as e:
            self.log.error(f"[Dispatch] Action {action.TYPE.value} failed: {e}", exc_info=True)
            conn.sendError(action.requestId, 'internal-error')

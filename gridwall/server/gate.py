"""
Authorization Gate - every inbound frame passes through here.

Binary frames are layout updates and need `mutate-state-doc`; a refused
update is dropped without a reply and never reaches the document. Text
frames are JSON actions and need the capability named by their `type`; a
refused action gets {error: 'unauthorized'} echoing the request id.

The check runs before the payload is even parsed into an action, so nothing
is mutated on denial. Nothing here waits: slow actions are handed to the
connection as tasks by the dispatcher, and the read loop moves on.
"""

import orjson
from typing import Any, Dict

from gridwall.core.actions import ActionError, parseAction
from gridwall.core.layoutDoc import LayoutDoc, LayoutUpdateError
from gridwall.core.roles import MUTATE_STATE_DOC, roleCan
from gridwall.logging import getLogger
from gridwall.server.auth import Identity
from gridwall.server.connection import ClientConnection
from gridwall.server.dispatch import ActionDispatcher


class AuthorizationGate:

    def __init__(self, layoutDoc: LayoutDoc, dispatcher: ActionDispatcher):
        self.log = getLogger()
        self.layoutDoc = layoutDoc
        self.dispatcher = dispatcher

    def check(self, identity: Identity, action: str) -> bool:
        return roleCan(identity.role, action)

    def handleBinary(self, conn: ClientConnection, data: bytes) -> bool:
        """Apply a layout update from conn. Returns True if it was applied."""
        if not self.check(conn.identity, MUTATE_STATE_DOC):
            self.log.warning("[Gate] Layout update refused", role=conn.role)
            return False
        try:
            changed = self.layoutDoc.applyUpdate(data, origin=conn)
        except LayoutUpdateError as e:
            self.log.warning(f"[Gate] Dropping bad layout update: {e}")
            return False
        self.log.debug(f"[Gate] Layout update applied: {changed} registers")
        return True

    def handleText(self, conn: ClientConnection, data: str):
        try:
            message = orjson.loads(data)
        except orjson.JSONDecodeError:
            self.log.warning("[Gate] Dropping unparseable message", size=len(data))
            return
        if not isinstance(message, dict):
            self.log.warning("[Gate] Dropping non-object message")
            return

        requestId = message.get('id')
        actionType = message.get('type')
        if not isinstance(actionType, str) or not self.check(conn.identity, actionType):
            self.log.warning(f"[Gate] Unauthorized action: {actionType}", role=conn.role)
            conn.sendError(requestId, 'unauthorized')
            return

        self.handleAction(conn, message)

    def handleAction(self, conn: ClientConnection, message: Dict[str, Any]):
        requestId = message.get('id')
        try:
            action = parseAction(message)
        except ActionError as e:
            conn.sendError(requestId, 'invalid-request', detail=str(e))
            return

        try:
            self.dispatcher.dispatch(conn, action)
        except Exception as e:
            self.log.error(f"[Gate] Action {action.TYPE.value} failed: {e}", exc_info=True)
            conn.sendError(requestId, 'internal-error')

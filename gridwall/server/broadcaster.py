"""
Delta Broadcaster - pushes state to every attached connection.

Two channels per connection:
- JSON: a full role-scoped snapshot once at attach ({type: 'state'}), then
  structural deltas against what that connection last received
  ({type: 'state-delta', diff}). Nothing is sent when a role's view did not
  change.
- Binary: the full layout document once at attach, then every layout update
  verbatim, except back to the connection the update came from.

Attach queues the full state before the connection joins the broadcast set,
so no connection ever sees a delta or update ahead of its snapshot.
"""

from typing import Any, Dict, Optional

from gridwall.core.appState import AppState, project
from gridwall.core.layoutDoc import LayoutDoc
from gridwall.core.stateDiff import diff
from gridwall.logging import getLogger
from gridwall.server.connection import ClientConnection


class DeltaBroadcaster:
    """Owns the live-connection set and both outbound channels"""

    def __init__(self, appState: AppState, layoutDoc: LayoutDoc):
        self.log = getLogger()
        self.appState = appState
        self.layoutDoc = layoutDoc
        self.connections: Dict[str, ClientConnection] = {}
        self._unsubscribers = [
            appState.subscribe(self.broadcastState),
            layoutDoc.observe(self.broadcastUpdate),
        ]

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.connections.clear()

    def __len__(self):
        return len(self.connections)

    def attach(self, conn: ClientConnection):
        """Send the full state on both channels, then start including conn in broadcasts"""
        roleView = self.appState.view(conn.role)
        conn.lastState = roleView
        conn.sendMessage({'type': 'state', 'state': roleView})
        conn.sendBytes(self.layoutDoc.encodeStateAsUpdate())
        self.connections[conn.connId] = conn
        self.log.info(f"[Broadcaster] Attached {conn.connId} ({conn.identity.name}, {conn.role}), "
                      f"total={len(self.connections)}")

    def detach(self, conn: ClientConnection):
        if self.connections.pop(conn.connId, None) is not None:
            self.log.info(f"[Broadcaster] Detached {conn.connId}, total={len(self.connections)}")

    def broadcastState(self, snapshot: Dict[str, Any]):
        """Send each open connection the delta between its last view and this snapshot"""
        views: Dict[str, Dict[str, Any]] = {}
        sent = 0
        for conn in list(self.connections.values()):
            if not conn.isOpen:
                continue
            if conn.role not in views:
                views[conn.role] = project(snapshot, conn.role)
            roleView = views[conn.role]

            delta = diff(conn.lastState, roleView)
            if delta is None:
                continue
            if conn.sendMessage({'type': 'state-delta', 'diff': delta}):
                conn.lastState = roleView
                sent += 1
        if sent:
            self.log.debug(f"[Broadcaster] State delta sent to {sent} connections")

    def broadcastUpdate(self, update: bytes, origin: Optional[Any] = None):
        """Relay a layout update to every open connection except its origin"""
        for conn in list(self.connections.values()):
            if conn is origin or not conn.isOpen:
                continue
            conn.sendBytes(update)

"""
Per-connection logging context.

Each WebSocket handler runs in its own asyncio task, so context variables
bound at the top of the handler stay local to that connection. The filter
copies them onto every record emitted while the handler is running.
"""

import logging
from typing import Optional
from contextvars import ContextVar

_connId: ContextVar[Optional[str]] = ContextVar('conn_id', default=None)
_user: ContextVar[Optional[str]] = ContextVar('user', default=None)


class ConnectionContextFilter(logging.Filter):
    """Adds connId/user to records logged inside a connection task"""

    def filter(self, record):
        connId = _connId.get()
        user = _user.get()
        if connId and not hasattr(record, 'connId'):
            record.connId = connId
        if user and not hasattr(record, 'user'):
            record.user = user
        return True


def bindConnectionContext(connId: str, user: Optional[str] = None):
    """Bind connection identity for the current task"""
    _connId.set(connId)
    _user.set(user)


def getConnectionContext() -> dict:
    return {
        'connId': _connId.get(),
        'user': _user.get()
    }


def clearConnectionContext():
    _connId.set(None)
    _user.set(None)


def installConnectionContextFilter(logger: logging.Logger):
    """
    Install the context filter on a logger's handlers.

    Handler-level so records from loggers with propagate=False still get it.
    Safe to call repeatedly.
    """
    for handler in logger.handlers:
        if not any(isinstance(f, ConnectionContextFilter) for f in handler.filters):
            handler.addFilter(ConnectionContextFilter())

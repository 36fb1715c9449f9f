"""
Gridwall logging - hierarchical structured logger.

API:
    from gridwall.logging import getLogger

    class TokenStore:
        def __init__(self):
            self.log = getLogger()  # Auto: 'gridwall.server.tokenStore.TokenStore'

        def deleteToken(self, tokenId):
            self.log.info("[TokenStore] Deleted", tokenId=tokenId)

    # Once at startup
    from gridwall.logging import configureLogging
    configureLogging(logDir='./logs', level='DEBUG')

    # Inside a socket handler task
    from gridwall.logging import bindConnectionContext
    bindConnectionContext(connId, identity.name)
"""

from .logger import getLogger, configureLogging
from .context import (
    bindConnectionContext,
    getConnectionContext,
    clearConnectionContext,
    installConnectionContextFilter
)

__all__ = [
    'getLogger',
    'configureLogging',
    'bindConnectionContext',
    'getConnectionContext',
    'clearConnectionContext',
    'installConnectionContextFilter'
]

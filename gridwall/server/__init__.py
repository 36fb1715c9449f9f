"""
Package init for gridwall.server
"""

from gridwall.server.server import WallServer
from gridwall.server.auth import AuthManager, Identity
from gridwall.server.tokenStore import TokenStore, InvalidTokenError
from gridwall.server.dispatch import ActionHandler

__all__ = ['WallServer', 'AuthManager', 'Identity', 'TokenStore', 'InvalidTokenError', 'ActionHandler']

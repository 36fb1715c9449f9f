"""
Identity and session lifecycle for Server.

- Invite redemption: invite code -> new session token -> session cookie
- Session cookie: HS256 JWT carrying the session token id and secret,
  httpOnly, ~1 year lifetime, overwritten on every issuance
- Identity resolution for HTTP and WebSocket requests
- Optional default admin identity for requests without any cookie

bcrypt work (hashing new secrets, checking presented ones) runs in a worker
thread via asyncio.to_thread; store mutations stay on the event loop.
"""

import asyncio
import jwt
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple

from gridwall.core.roles import canGrant, isValidRole
from gridwall.logging import getLogger
from gridwall.server.tokenStore import TokenStore, InvalidTokenError, splitInviteCode

SESSION_COOKIE_NAME = 's'
COOKIE_MAX_AGE_DAYS = 365
DEV_JWT_SECRET = 'dev-secret-change-in-production'


@dataclass(frozen=True)
class Identity:
    """Who is on the other end of a request; fixed for a connection's lifetime"""
    id: str
    name: str
    role: str

    def toDict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_ADMIN = Identity(id='admin', name='admin', role='admin')


class AuthManager:
    """
    Session manager on top of the token store.

    With auth.anonymousAdmin set, requests that carry no cookie at all act as
    DEFAULT_ADMIN. That makes every capability check advisory for anyone who
    can reach the server, so it is off unless configured.
    """

    def __init__(self, config: Dict[str, Any], tokenStore: TokenStore):
        self.config = config
        self.log = getLogger()
        self.tokenStore = tokenStore

        self.secret = config.get('jwtSecret') or DEV_JWT_SECRET
        if self.secret == DEV_JWT_SECRET:
            self.log.warning("[Auth] Using development JWT secret; set auth.jwtSecret")
        self.cookieMaxAge = int(config.get('cookieMaxAgeDays', COOKIE_MAX_AGE_DAYS) * 86400)
        self.secure = config.get('secureCookies', False)
        self.anonymousAdmin = config.get('anonymousAdmin', False)

        self.log.info(f"[Auth] Initialized: anonymousAdmin={self.anonymousAdmin}, "
                      f"tokens={len(self.tokenStore.list())}")

    def admin(self) -> Identity:
        return DEFAULT_ADMIN

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issueSessionCookie(self, session: Dict[str, Any]) -> str:
        """Cookie value for a freshly created session token (must carry `secret`)"""
        expiresAt = datetime.now(timezone.utc) + timedelta(seconds=self.cookieMaxAge)
        payload = {
            'sid': session['id'],
            'secret': session['secret'],
            'exp': expiresAt
        }
        return jwt.encode(payload, self.secret, algorithm='HS256')

    async def redeemInvite(self, code: str) -> Tuple[Identity, str]:
        """
        Redeem an invite code. Returns (identity, cookieValue).

        Raises InvalidTokenError for malformed, unknown, already redeemed, or
        non-invite codes.
        """
        inviteId, secret = splitInviteCode(code)
        invite = await asyncio.to_thread(self.tokenStore.validateToken, inviteId, secret)
        if not invite or invite['kind'] != 'invite':
            raise InvalidTokenError("Invalid invite token")

        credentials = await asyncio.to_thread(self.tokenStore.newCredentials)
        session = self.tokenStore.exchangeInvite(inviteId, credentials)
        identity = Identity(id=session['id'], name=session['name'], role=session['role'])
        self.log.info(f"[Auth] Invite redeemed: {identity.name}, role={identity.role}")
        return identity, self.issueSessionCookie(session)

    async def validateSessionCookie(self, cookieValue: str) -> Optional[Identity]:
        """Identity behind a session cookie, or None if invalid, expired or revoked"""
        try:
            payload = jwt.decode(cookieValue, self.secret, algorithms=['HS256'])
        except jwt.ExpiredSignatureError:
            self.log.warning("[Auth] Session cookie expired")
            return None
        except jwt.InvalidTokenError as e:
            self.log.warning(f"[Auth] Invalid session cookie: {e}")
            return None

        token = await asyncio.to_thread(self.tokenStore.validateToken, payload.get('sid'), payload.get('secret', ''))
        if not token or token['kind'] != 'session':
            self.log.warning(f"[Auth] Session revoked or unknown: {payload.get('sid')}")
            return None
        return Identity(id=token['id'], name=token['name'], role=token['role'])

    async def identityForRequest(self, cookieValue: Optional[str]) -> Tuple[Optional[Identity], Optional[str]]:
        """Resolve a request's identity. Returns (identity, error)."""
        if not cookieValue:
            if self.anonymousAdmin:
                return self.admin(), None
            return None, 'Authentication required'

        identity = await self.validateSessionCookie(cookieValue)
        if not identity:
            return None, 'Invalid or expired session'
        return identity, None

    def getCookieSettings(self) -> Dict[str, Any]:
        return {
            'name': SESSION_COOKIE_NAME,
            'max_age': self.cookieMaxAge,
            'httponly': True,
            'secure': self.secure,
            'samesite': 'Strict',
            'path': '/'
        }

    # ------------------------------------------------------------------
    # Token administration (over RPC)
    # ------------------------------------------------------------------

    async def createInvite(self, inviter: Identity, name: str, role: str) -> Dict[str, Any]:
        """
        Create an invite on behalf of inviter.

        Raises PermissionError if inviter may not grant role, ValueError for an unknown role.
        """
        if not isValidRole(role):
            raise ValueError(f"Unknown role: {role}")
        if not canGrant(inviter.role, role):
            raise PermissionError(f"{inviter.role} may not invite {role}")
        credentials = await asyncio.to_thread(self.tokenStore.newCredentials)
        invite = self.tokenStore.createToken('invite', name, role, credentials)
        self.log.info(f"[Auth] Invite created by {inviter.name}: {name}, role={role}")
        return invite

    def deleteToken(self, tokenId: str) -> bool:
        return self.tokenStore.deleteToken(tokenId)

    def ensureBootstrapInvite(self) -> Optional[Dict[str, Any]]:
        """
        With anonymous admin off and no tokens at all, nobody could ever get
        in; create one admin invite so the operator can.
        """
        if self.anonymousAdmin or self.tokenStore.list():
            return None
        invite = self.tokenStore.createToken('invite', 'bootstrap', 'admin')
        self.log.warning("[Auth] No tokens found, created bootstrap admin invite")
        return invite

"""
Token Store - JSON-backed invite and session tokens.

Invite tokens are single-use onboarding credentials: redeeming one deletes
it and issues a session token with the same name and role. Session tokens
back the long-lived browser cookie.

Secrets are returned once, at creation, and only their bcrypt hashes are
kept. Every change to the token set is published on `changed` with the new
public state, which is what drives revocation of live connections.

Invites travel as a code "<tokenId>.<secret>", so checking one costs a
single hash comparison whatever the number of stored tokens.
"""

import json
import secrets
import uuid
import bcrypt
from pathlib import Path
from typing import Optional, Dict, List, Any, Tuple
from datetime import datetime, timezone

from gridwall.core.events import Observable
from gridwall.core.roles import isValidRole
from gridwall.logging import getLogger

TOKEN_KINDS = ('invite', 'session')
SECRET_BYTES = 24
CODE_SEPARATOR = '.'


class InvalidTokenError(Exception):
    """Unknown token, or a token of the wrong kind"""


def inviteCode(token: Dict[str, Any]) -> str:
    """Code for a freshly created token (must carry `secret`)"""
    return f"{token['id']}{CODE_SEPARATOR}{token['secret']}"


def splitInviteCode(code: str) -> Tuple[str, str]:
    """(tokenId, secret) from an invite code. Raises InvalidTokenError."""
    tokenId, sep, secret = code.partition(CODE_SEPARATOR) if isinstance(code, str) else ('', '', '')
    if not sep or not tokenId or not secret:
        raise InvalidTokenError("Malformed invite code")
    return tokenId, secret


class TokenStore:
    """
    Token storage.

    Token record structure:
    {
        "id": "uuid",
        "kind": "invite|session",
        "name": "string",
        "role": "admin|operator|monitor",
        "secretHash": "bcrypt hash",
        "createdAt": "ISO timestamp"
    }
    """

    def __init__(self, filePath: Optional[str] = None, hashRounds: int = 10):
        self.filePath = Path(filePath) if filePath else None
        self.hashRounds = hashRounds
        self.log = getLogger()
        self._tokens: Dict[str, Dict[str, Any]] = {}
        self.changed = Observable('TokenStore')
        self._load()

    def _load(self):
        if not self.filePath:
            self.log.info("[TokenStore] No tokens file, tokens kept in memory")
            return
        if not self.filePath.exists():
            self.log.info("[TokenStore] Tokens file missing, starting empty")
            return
        try:
            with open(self.filePath, 'r') as f:
                data = json.load(f)
            self._tokens = {t['id']: t for t in data.get('tokens', []) if t.get('kind') in TOKEN_KINDS}
            self.log.info(f"[TokenStore] Loaded {len(self._tokens)} tokens")
        except (OSError, ValueError, KeyError) as e:
            self.log.error(f"[TokenStore] Failed to load tokens: {e}")
            self._tokens = {}

    def _save(self):
        if not self.filePath:
            return
        self.filePath.parent.mkdir(parents=True, exist_ok=True)
        with open(self.filePath, 'w') as f:
            json.dump({'tokens': list(self._tokens.values())}, f, indent=2)

    def _commit(self):
        self._save()
        self.changed.emit(self.state())

    # ------------------------------------------------------------------

    def newCredentials(self) -> Tuple[str, str]:
        """
        Fresh (secret, bcrypt hash) pair.

        Touches no store state, so callers on the event loop run it with
        asyncio.to_thread.
        """
        secret = secrets.token_urlsafe(SECRET_BYTES)
        secretHash = bcrypt.hashpw(secret.encode('utf-8'), bcrypt.gensalt(rounds=self.hashRounds))
        return secret, secretHash.decode('utf-8')

    def _insert(self, kind: str, name: str, role: str,
                credentials: Optional[Tuple[str, str]] = None) -> Dict[str, Any]:
        if kind not in TOKEN_KINDS:
            raise ValueError(f"Unknown token kind: {kind}")
        if not isValidRole(role):
            raise ValueError(f"Unknown role: {role}")

        secret, secretHash = credentials or self.newCredentials()
        token = {
            'id': str(uuid.uuid4()),
            'kind': kind,
            'name': name,
            'role': role,
            'secretHash': secretHash,
            'createdAt': datetime.now(timezone.utc).isoformat()
        }
        self._tokens[token['id']] = token
        self.log.info(f"[TokenStore] Created {kind} token: {name}, role={role}")

        result = self._sanitize(token)
        result['secret'] = secret
        return result

    def createToken(self, kind: str, name: str, role: str,
                    credentials: Optional[Tuple[str, str]] = None) -> Dict[str, Any]:
        """
        Create a token. The returned record carries the plaintext `secret`;
        it cannot be recovered later.
        """
        token = self._insert(kind, name, role, credentials)
        self._commit()
        return token

    def validateToken(self, tokenId: Optional[str], secret: str) -> Optional[Dict[str, Any]]:
        """
        The token with this id, if secret is its secret.

        One bcrypt comparison at most, and no store mutation, so it can run
        in a worker thread.
        """
        if not isinstance(secret, str) or not secret or not isinstance(tokenId, str):
            return None
        token = self._tokens.get(tokenId)
        if not token:
            return None
        if not bcrypt.checkpw(secret.encode('utf-8'), token['secretHash'].encode('utf-8')):
            return None
        return self._sanitize(token)

    def exchangeInvite(self, inviteId: str, credentials: Optional[Tuple[str, str]] = None) -> Dict[str, Any]:
        """
        Replace an invite with a new session token (with secret), in one change.

        The caller has already checked the invite secret. Raises
        InvalidTokenError if the invite is gone, e.g. redeemed meanwhile.
        """
        invite = self._tokens.get(inviteId)
        if not invite or invite['kind'] != 'invite':
            raise InvalidTokenError("Invalid invite token")

        session = self._insert('session', invite['name'], invite['role'], credentials)
        del self._tokens[inviteId]
        self.log.info(f"[TokenStore] Redeemed invite {inviteId} for {invite['name']}")
        self._commit()
        return session

    def redeemInvite(self, code: str) -> Dict[str, Any]:
        """Check an invite code and exchange it for a session. Raises InvalidTokenError."""
        inviteId, secret = splitInviteCode(code)
        invite = self.validateToken(inviteId, secret)
        if not invite or invite['kind'] != 'invite':
            raise InvalidTokenError("Invalid invite token")
        return self.exchangeInvite(inviteId)

    def getById(self, tokenId: str) -> Optional[Dict[str, Any]]:
        token = self._tokens.get(tokenId)
        return self._sanitize(token) if token else None

    def deleteToken(self, tokenId: str) -> bool:
        token = self._tokens.pop(tokenId, None)
        if not token:
            return False
        self.log.info(f"[TokenStore] Deleted {token['kind']} token: {token['name']}")
        self._commit()
        return True

    def list(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        return [self._sanitize(t) for t in self._tokens.values() if kind is None or t['kind'] == kind]

    def state(self) -> Dict[str, List[Dict[str, Any]]]:
        """Public token state: {'invites': [...], 'sessions': [...]}, no secrets"""
        return {
            'invites': self.list('invite'),
            'sessions': self.list('session')
        }

    def _sanitize(self, token: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in token.items() if k != 'secretHash'}

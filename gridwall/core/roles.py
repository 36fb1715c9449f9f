"""
Capability table: which role may perform which action.

Every inbound mutation is checked against this table before anything is
applied. Lookup is deny-by-default: an unknown role or an action name that
is not listed for the role is refused.
"""

from typing import Dict, FrozenSet

# Capabilities that are not client-sent action types
MUTATE_STATE_DOC = 'mutate-state-doc'
EDIT_TOKENS = 'edit-tokens'

_MONITOR = frozenset({
    'set-view-blurred',
    'set-stream-censored',
})

_OPERATOR = _MONITOR | frozenset({
    'set-listening-view',
    'set-view-background-listening',
    'update-custom-stream',
    'delete-custom-stream',
    'rotate-stream',
    'reload-view',
    'create-invite',
    MUTATE_STATE_DOC,
})

_ADMIN = _OPERATOR | frozenset({
    'browse',
    'dev-tools',
    'set-stream-running',
    'delete-token',
    EDIT_TOKENS,
})

CAPABILITIES: Dict[str, FrozenSet[str]] = {
    'admin': _ADMIN,
    'operator': _OPERATOR,
    'monitor': _MONITOR,
}


def roleCan(role: str, action: str) -> bool:
    """True if role holds the capability named by action"""
    return action in CAPABILITIES.get(role, frozenset())


def capabilitiesOf(role: str) -> FrozenSet[str]:
    return CAPABILITIES.get(role, frozenset())


def isValidRole(role: str) -> bool:
    return role in CAPABILITIES


def canGrant(inviterRole: str, role: str) -> bool:
    """
    Whether an inviter may hand out an invite carrying role.

    An invite can never carry more capabilities than its creator holds.
    """
    if not isValidRole(inviterRole) or not isValidRole(role):
        return False
    return CAPABILITIES[role] <= CAPABILITIES[inviterRole]

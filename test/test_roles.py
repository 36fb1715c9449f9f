"""
Capability Table and Action Parsing Tests

Run: python -m pytest test/test_roles.py -v
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from gridwall.core.roles import roleCan, canGrant, capabilitiesOf, MUTATE_STATE_DOC, EDIT_TOKENS
from gridwall.core.actions import (
    ActionType, ActionError, ACTION_CLASSES, parseAction, CreateInvite, RotateStream,
    SetListeningView, UpdateCustomStream,
)


class TestCapabilities:
    """Role -> action table"""

    def test_monitor(self):
        assert roleCan('monitor', 'set-view-blurred')
        assert roleCan('monitor', 'set-stream-censored')
        assert not roleCan('monitor', 'rotate-stream')
        assert not roleCan('monitor', MUTATE_STATE_DOC)

    def test_operator(self):
        assert roleCan('operator', MUTATE_STATE_DOC)
        assert roleCan('operator', 'create-invite')
        assert not roleCan('operator', EDIT_TOKENS)
        assert not roleCan('operator', 'dev-tools')
        assert not roleCan('operator', 'delete-token')

    def test_admin_holds_every_action(self):
        for actionType in ActionType:
            assert roleCan('admin', actionType.value)
        assert roleCan('admin', EDIT_TOKENS)

    def test_deny_by_default(self):
        assert not roleCan('guest', 'set-view-blurred')
        assert not roleCan('admin', 'format-disk')
        assert capabilitiesOf('guest') == frozenset()

    def test_roles_are_nested(self):
        assert capabilitiesOf('monitor') < capabilitiesOf('operator') < capabilitiesOf('admin')

    def test_can_grant(self):
        assert canGrant('admin', 'admin')
        assert canGrant('operator', 'operator')
        assert canGrant('operator', 'monitor')
        assert not canGrant('operator', 'admin')
        assert not canGrant('monitor', 'operator')
        assert not canGrant('admin', 'superuser')


class TestParseAction:
    """Wire message -> action variant"""

    def test_every_type_has_a_variant(self):
        assert set(ACTION_CLASSES) == set(ActionType)

    def test_capability_is_type(self):
        action = parseAction({'type': 'rotate-stream', 'url': 'https://x', 'rotation': 90, 'id': 7})
        assert isinstance(action, RotateStream)
        assert action.capability == 'rotate-stream'
        assert action.requestId == 7
        assert action.rotation == 90

    def test_create_invite(self):
        action = parseAction({'type': 'create-invite', 'name': 'X', 'role': 'monitor'})
        assert action == CreateInvite(name='X', role='monitor')

    def test_listening_view_allows_none(self):
        assert parseAction({'type': 'set-listening-view', 'viewIdx': None}) == SetListeningView(viewIdx=None)

    def test_custom_stream_data_defaults(self):
        action = parseAction({'type': 'update-custom-stream', 'url': 'https://x'})
        assert action == UpdateCustomStream(url='https://x', data={})

    @pytest.mark.parametrize('message', [
        {'type': 'nope'},
        {},
        {'type': 'rotate-stream', 'url': 'https://x'},
        {'type': 'rotate-stream', 'url': '', 'rotation': 90},
        {'type': 'set-view-blurred', 'viewIdx': -1, 'blurred': True},
        {'type': 'set-view-blurred', 'viewIdx': 0, 'blurred': 'yes'},
        {'type': 'reload-view', 'viewIdx': True},
        {'type': 'update-custom-stream', 'url': 'https://x', 'data': [1]},
        {'type': 'delete-token'},
    ])
    def test_bad_payload(self, message):
        with pytest.raises(ActionError):
            parseAction(message)

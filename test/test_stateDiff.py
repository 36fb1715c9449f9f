"""
State Diff Tests

Run: python -m pytest test/test_stateDiff.py -v
"""

import copy
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gridwall.core.stateDiff import diff, patch, reconstruct


class TestDiff:
    """Delta shapes"""

    def test_equal_is_none(self):
        assert diff({'a': [1, {'b': 2}]}, {'a': [1, {'b': 2}]}) is None
        assert diff(None, None) is None

    def test_first_snapshot_is_replacement(self):
        assert diff(None, {'a': 1}) == [None, {'a': 1}]

    def test_object_add_change_delete(self):
        delta = diff({'a': 1, 'b': 2}, {'a': 5, 'c': 3})
        assert delta == {'a': [1, 5], 'b': [2, 0, 0], 'c': [3]}

    def test_nested_object(self):
        delta = diff({'config': {'gridCount': 3, 'width': 1920}}, {'config': {'gridCount': 4, 'width': 1920}})
        assert delta == {'config': {'gridCount': [3, 4]}}

    def test_array_append_and_remove(self):
        assert diff([1, 2], [1, 2, 3]) == {'_t': 'a', '2': [3]}
        assert diff([1, 2, 3], [1]) == {'_t': 'a', '_1': [2, 0, 0], '_2': [3, 0, 0]}

    def test_array_items_with_same_id_diff_recursively(self):
        old = [{'id': 'abc', 'rotation': 0, 'link': 'x'}]
        new = [{'id': 'abc', 'rotation': 90, 'link': 'x'}]
        assert diff(old, new) == {'_t': 'a', '0': {'rotation': [0, 90]}}

    def test_array_items_with_other_id_replaced(self):
        old = [{'id': 'abc'}]
        new = [{'id': 'def'}]
        assert diff(old, new) == {'_t': 'a', '0': [{'id': 'abc'}, {'id': 'def'}]}


class TestPatch:
    """patch(old, diff(old, new)) == new"""

    CASES = [
        (None, {'views': []}),
        ({'a': 1}, {'a': 1, 'b': {'c': [1, 2]}}),
        ({'a': [1, 2, 3, 4]}, {'a': [1, 3]}),
        ([{'id': 1, 'v': 'x'}, {'id': 2}], [{'id': 1, 'v': 'y'}, {'id': 3}, {'id': 4}]),
        ({'auth': {'invites': [{'id': 'i1'}], 'sessions': []}},
         {'auth': {'invites': [], 'sessions': [{'id': 's1', 'name': 'X'}]}}),
        ({'streamdelay': {'isConnected': True}}, {'streamdelay': None}),
        ('text', 42),
    ]

    def test_reconstruct(self):
        for old, new in self.CASES:
            assert reconstruct(old, diff(old, new)) == new

    def test_reconstruct_keeps_old(self):
        old = {'a': [1, 2]}
        saved = copy.deepcopy(old)
        reconstruct(old, diff(old, {'a': [2]}))
        assert old == saved

    def test_patch_none_delta(self):
        old = {'a': 1}
        assert patch(old, None) is old

"""
Structural diff of JSON-like snapshots.

Delta format (patterned on jsondiffpatch, without array moves):
- added value:      [new]
- replaced value:   [old, new]
- deleted value:    [old, 0, 0]
- changed object:   {key: delta, ...}
- changed array:    {"_t": "a", "<i>": delta, "_<i>": [old, 0, 0], ...}
                    "<i>" indexes the new array, "_<i>" the old one

Array elements are compared positionally. Two dicts at the same position are
diffed recursively only if they carry the same identity ("id" key, when
present); otherwise the element is replaced whole.

diff() returns None when both sides are equal, and
patch(copy_of_old, diff(old, new)) == new for every pair of JSON values.
"""

import copy
from typing import Any, Dict, List, Optional

ARRAY_MARKER = '_t'


def _identity(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get('id')
    return None


def _isContainer(value: Any) -> bool:
    return isinstance(value, (dict, list))


def diff(old: Any, new: Any) -> Optional[Any]:
    """Delta turning old into new, or None if they are equal"""
    if old == new:
        return None
    if isinstance(old, dict) and isinstance(new, dict):
        return _diffObject(old, new)
    if isinstance(old, list) and isinstance(new, list):
        return _diffArray(old, new)
    return [old, new]


def _diffObject(old: Dict[str, Any], new: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    delta: Dict[str, Any] = {}
    for key, newValue in new.items():
        if key not in old:
            delta[key] = [newValue]
            continue
        sub = diff(old[key], newValue)
        if sub is not None:
            delta[key] = sub
    for key, oldValue in old.items():
        if key not in new:
            delta[key] = [oldValue, 0, 0]
    return delta or None


def _diffArray(old: List[Any], new: List[Any]) -> Optional[Dict[str, Any]]:
    delta: Dict[str, Any] = {ARRAY_MARKER: 'a'}
    for i in range(min(len(old), len(new))):
        before, after = old[i], new[i]
        if before == after:
            continue
        if _isContainer(before) and _isContainer(after) and _identity(before) == _identity(after):
            sub = diff(before, after)
        else:
            sub = [before, after]
        if sub is not None:
            delta[str(i)] = sub
    for i in range(len(old), len(new)):
        delta[str(i)] = [new[i]]
    for i in range(len(new), len(old)):
        delta[f'_{i}'] = [old[i], 0, 0]
    return delta if len(delta) > 1 else None


def _isLeafDelta(delta: Any) -> bool:
    return isinstance(delta, list)


def _applyLeaf(delta: List[Any]) -> Any:
    if len(delta) == 1:
        return delta[0]
    if len(delta) == 2:
        return delta[1]
    raise ValueError("Deletion delta has no resulting value")


def patch(old: Any, delta: Optional[Any]) -> Any:
    """
    Apply a delta produced by diff(). Mutates containers in old where it can;
    pass a copy if the original must survive.
    """
    if delta is None:
        return old
    if _isLeafDelta(delta):
        return _applyLeaf(delta)
    if delta.get(ARRAY_MARKER) == 'a':
        return _patchArray(old, delta)
    return _patchObject(old, delta)


def _patchObject(target: Dict[str, Any], delta: Dict[str, Any]) -> Dict[str, Any]:
    for key, sub in delta.items():
        if _isLeafDelta(sub) and len(sub) == 3:
            target.pop(key, None)
        elif _isLeafDelta(sub):
            target[key] = _applyLeaf(sub)
        else:
            target[key] = patch(target.get(key), sub)
    return target


def _patchArray(target: List[Any], delta: Dict[str, Any]) -> List[Any]:
    removed = sorted((int(key[1:]) for key in delta if key.startswith('_') and key != ARRAY_MARKER),
                     reverse=True)
    for i in removed:
        del target[i]

    indexed = sorted(int(key) for key in delta if not key.startswith('_'))
    for i in indexed:
        sub = delta[str(i)]
        if _isLeafDelta(sub) and len(sub) == 1:
            target.insert(i, sub[0])
        elif _isLeafDelta(sub):
            target[i] = _applyLeaf(sub)
        else:
            target[i] = patch(target[i], sub)
    return target


def reconstruct(old: Any, delta: Optional[Any]) -> Any:
    """patch() on a deep copy of old"""
    return patch(copy.deepcopy(old), delta)

"""
Shared layout document: a state-based CRDT map of grid cells.

Every (cellIndex, field) pair is a last-writer-wins register holding
(value, clock, clientId). Two registers merge by keeping the one with the
greater (clock, clientId) pair, so merge is commutative, associative and
idempotent and all replicas that have seen the same updates hold the same
state, whatever order the updates arrived in.

Clocks are Lamport clocks: a local write stamps max(clock seen) + 1, and
applying a remote update first advances the local clock past every clock in
it. A write made after observing another write therefore always beats it;
only truly concurrent writes to the same register fall back to the clientId
tie-break.

Updates travel as opaque bytes (canonical JSON). Observers receive
(update, origin) for every local write and for every remote update that
changed something; origin is whatever the caller passed in, and is how the
server avoids echoing an update back to the connection it came from.
"""

from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import uuid

import canonicaljson
import orjson

from gridwall.core.events import Observable
from gridwall.core.geometry import boxesFromCells, idxInBox

UPDATE_VERSION = 1

CELL_DEFAULTS = {
    'streamId': '',
    'width': 1,
    'height': 1,
}
CELL_FIELDS = tuple(CELL_DEFAULTS)

# Seed entries lose against any real write
SEED_CLOCK = 0
SEED_CLIENT = ''

# Largest integer a JavaScript replica can hold exactly
MAX_CLOCK = 2 ** 53 - 1


class LayoutUpdateError(ValueError):
    """Update blob could not be decoded"""


@dataclass(frozen=True)
class Entry:
    value: Any
    clock: int
    clientId: str

    def beats(self, other: 'Entry') -> bool:
        return (self.clock, self.clientId) > (other.clock, other.clientId)


@dataclass
class GridCell:
    index: int
    streamId: str = ''
    width: int = 1
    height: int = 1

    @property
    def isAssigned(self) -> bool:
        return bool(self.streamId)

    def toDict(self) -> Dict[str, Any]:
        return asdict(self)


Change = Tuple[int, str, Entry]


def _checkValue(field: str, value: Any):
    if field not in CELL_DEFAULTS:
        raise ValueError(f"Unknown cell field: {field}")
    if field == 'streamId':
        if not isinstance(value, str):
            raise ValueError("streamId must be a string")
    elif not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(f"{field} must be a positive integer")


def encodeUpdate(changes: List[Change]) -> bytes:
    rows = sorted(
        ([idx, field, entry.value, entry.clock, entry.clientId] for idx, field, entry in changes),
        key=lambda row: (row[0], row[1])
    )
    return canonicaljson.encode_canonical_json({'v': UPDATE_VERSION, 'entries': rows})


def decodeUpdate(blob: bytes) -> List[Change]:
    """Parse and validate an update blob. Raises LayoutUpdateError."""
    try:
        data = orjson.loads(blob)
    except orjson.JSONDecodeError as e:
        raise LayoutUpdateError(f"Undecodable update: {e}") from e

    if not isinstance(data, dict) or data.get('v') != UPDATE_VERSION:
        raise LayoutUpdateError("Unsupported update version")
    rows = data.get('entries')
    if not isinstance(rows, list):
        raise LayoutUpdateError("Update has no entries")

    changes = []
    for row in rows:
        if not isinstance(row, list) or len(row) != 5:
            raise LayoutUpdateError(f"Malformed entry: {row!r}")
        idx, field, value, clock, clientId = row
        if not isinstance(idx, int) or idx < 0:
            raise LayoutUpdateError(f"Bad cell index: {idx!r}")
        if not isinstance(clock, int) or isinstance(clock, bool) or not 0 <= clock <= MAX_CLOCK:
            raise LayoutUpdateError(f"Bad clock in entry: {row!r}")
        if not isinstance(clientId, str):
            raise LayoutUpdateError(f"Bad client id in entry: {row!r}")
        try:
            if not (clock == SEED_CLOCK and clientId == SEED_CLIENT):
                _checkValue(field, value)
            elif field not in CELL_DEFAULTS:
                raise ValueError(f"Unknown cell field: {field}")
        except ValueError as e:
            raise LayoutUpdateError(str(e)) from e
        changes.append((idx, field, Entry(value, clock, clientId)))
    return changes


class LayoutDoc:
    """
    One replica of the shared grid layout.

    The server holds the authoritative replica; each control panel holds its
    own and exchanges update blobs with the server.

    Once a grid is seeded, updates touching cells outside it are refused.
    maxClockStep, when set, refuses updates whose clocks run further ahead
    of this replica's clock than that; the server sets it so that a single
    client cannot push the shared clock to MAX_CLOCK and stall every editor.
    """

    def __init__(self, clientId: Optional[str] = None, gridCount: int = 0,
                 maxClockStep: Optional[int] = None):
        self.clientId = clientId or uuid.uuid4().hex
        self.clock = 0
        self.maxClockStep = maxClockStep
        self.gridCount = 0
        self._entries: Dict[Tuple[int, str], Entry] = {}
        self._observers = Observable('LayoutDoc')
        self._pending: Optional[List[Change]] = None
        self._pendingOrigin: Any = None
        if gridCount:
            self.ensureGrid(gridCount)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get(self, idx: int, field: str) -> Any:
        entry = self._entries.get((idx, field))
        return entry.value if entry else None

    def hasCell(self, idx: int) -> bool:
        return (idx, 'streamId') in self._entries

    def getCell(self, idx: int) -> Optional[GridCell]:
        if not self.hasCell(idx):
            return None
        values = {field: self.get(idx, field) for field in CELL_FIELDS}
        return GridCell(idx, **{k: (v if v is not None else CELL_DEFAULTS[k]) for k, v in values.items()})

    def cellIndices(self) -> List[int]:
        return sorted({idx for idx, _ in self._entries})

    def cells(self) -> List[GridCell]:
        return [self.getCell(idx) for idx in self.cellIndices() if self.hasCell(idx)]

    def streamAt(self, idx: int) -> Optional[str]:
        return self.get(idx, 'streamId')

    def toJson(self) -> Dict[str, Any]:
        """Plain mirror of the document: {'views': {'0': {'streamId': ..}, ..}}"""
        views: Dict[str, Dict[str, Any]] = {}
        for (idx, field), entry in sorted(self._entries.items()):
            views.setdefault(str(idx), {})[field] = entry.value
        return {'views': views}

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def observe(self, callback: Callable[[bytes, Any], None]) -> Callable[[], None]:
        """callback(update, origin) after every change; returns unsubscribe"""
        return self._observers.subscribe(callback)

    def ensureGrid(self, gridCount: int):
        """
        Seed cells 0..gridCount²-1 that do not exist yet.

        Seeds are identical on every replica and lose to any edit, so they are
        not broadcast.
        """
        self.gridCount = gridCount
        for idx in range(gridCount * gridCount):
            for field, default in CELL_DEFAULTS.items():
                self._entries.setdefault((idx, field), Entry(default, SEED_CLOCK, SEED_CLIENT))

    def inGrid(self, idx: int) -> bool:
        return not self.gridCount or idx < self.gridCount * self.gridCount

    def set(self, idx: int, field: str, value: Any, origin: Any = None):
        if not isinstance(idx, int) or idx < 0 or not self.inGrid(idx):
            raise ValueError(f"Bad cell index: {idx!r}")
        _checkValue(field, value)
        if self.clock >= MAX_CLOCK:
            raise ValueError("Layout clock exhausted")
        self.clock += 1
        entry = Entry(value, self.clock, self.clientId)
        self._entries[(idx, field)] = entry
        self._record([(idx, field, entry)], origin)

    def setCell(self, idx: int, origin: Any = None, **fields):
        with self.transact(origin):
            for field, value in fields.items():
                self.set(idx, field, value)

    @contextmanager
    def transact(self, origin: Any = None) -> Iterator['LayoutDoc']:
        """Group writes into one outbound update. Nested calls join the outer one."""
        if self._pending is not None:
            yield self
            return
        self._pending = []
        self._pendingOrigin = origin
        try:
            yield self
        finally:
            changes, self._pending = self._pending, None
            if changes:
                self._observers.emit(encodeUpdate(changes), self._pendingOrigin)
            self._pendingOrigin = None

    def applyUpdate(self, blob: bytes, origin: Any = None) -> int:
        """
        Merge a remote update. Returns how many registers changed.

        Only the winning entries are re-emitted, so applying an update twice
        emits once. A rejected update (LayoutUpdateError) changes nothing.
        """
        changes = decodeUpdate(blob)
        for idx, field, entry in changes:
            if not self.inGrid(idx):
                raise LayoutUpdateError(f"Cell {idx} outside the {self.gridCount}x{self.gridCount} grid")
            if self.maxClockStep is not None and entry.clock > self.clock + self.maxClockStep:
                raise LayoutUpdateError(f"Clock {entry.clock} too far ahead of {self.clock}")

        won: List[Change] = []
        for idx, field, entry in changes:
            self.clock = max(self.clock, entry.clock)
            current = self._entries.get((idx, field))
            if current is None or entry.beats(current):
                self._entries[(idx, field)] = entry
                won.append((idx, field, entry))
        if won:
            self._record(won, origin)
        return len(won)

    def encodeStateAsUpdate(self) -> bytes:
        """Full state as a single update"""
        return encodeUpdate([(idx, field, entry) for (idx, field), entry in self._entries.items()])

    def _record(self, changes: List[Change], origin: Any):
        if self._pending is not None:
            self._pending.extend(changes)
            return
        self._observers.emit(encodeUpdate(changes), origin)

    # ------------------------------------------------------------------
    # Layout operations
    # ------------------------------------------------------------------

    def setStream(self, idx: int, streamId: Optional[str], origin: Any = None):
        """Assign a stream to a cell; None or '' unassigns it"""
        self.set(idx, 'streamId', streamId or '', origin)

    def viewSpaces(self, idx: int) -> List[int]:
        """Cells of the view (maximal equal-stream rectangle) containing idx"""
        for box in self.boxes():
            if idx in box.spaces:
                return box.spaces
        return [idx]

    def boxes(self):
        def contentAt(i):
            streamId = self.streamAt(i)
            return streamId if streamId else None
        return boxesFromCells(self.gridCount, contentAt)

    def swapViews(self, fromIdx: int, toIdx: int, origin: Any = None):
        """Exchange the streams of the views containing fromIdx and toIdx"""
        fromSpaces = self.viewSpaces(fromIdx)
        toSpaces = self.viewSpaces(toIdx)
        fromStream = self.streamAt(fromIdx) or ''
        toStream = self.streamAt(toIdx) or ''
        with self.transact(origin):
            for idx in fromSpaces:
                self.set(idx, 'streamId', toStream)
            for idx in toSpaces:
                self.set(idx, 'streamId', fromStream)

    def fillBox(self, startIdx: int, endIdx: int, origin: Any = None):
        """Copy the start cell's stream into every cell of the rectangle startIdx..endIdx"""
        streamId = self.streamAt(startIdx) or ''
        with self.transact(origin):
            for idx in range(self.gridCount * self.gridCount):
                if idxInBox(self.gridCount, startIdx, endIdx, idx):
                    self.set(idx, 'streamId', streamId)

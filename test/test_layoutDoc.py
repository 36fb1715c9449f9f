"""
Layout Document Tests

Convergence, idempotence, tie-break and origin tagging of the shared grid
layout CRDT.

Run: python -m pytest test/test_layoutDoc.py -v
"""

import random
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import orjson
import pytest

from gridwall.core.layoutDoc import (
    LayoutDoc, LayoutUpdateError, Entry, decodeUpdate, encodeUpdate, MAX_CLOCK, SEED_CLOCK, SEED_CLIENT
)


def connect(*docs):
    """Collect every update each doc emits, tagged with its source"""
    outbox = []
    for doc in docs:
        doc.observe(lambda update, origin, doc=doc: outbox.append((doc, update, origin)))
    return outbox


class TestCells:
    """Per-cell reads and writes"""

    def test_ensure_grid_seeds_every_cell(self):
        doc = LayoutDoc(gridCount=3)
        assert doc.cellIndices() == list(range(9))
        cell = doc.getCell(4)
        assert cell.streamId == ''
        assert cell.width == 1 and cell.height == 1
        assert not cell.isAssigned

    def test_seeding_is_not_broadcast(self):
        doc = LayoutDoc()
        updates = []
        doc.observe(lambda update, origin: updates.append(update))
        doc.ensureGrid(2)
        assert updates == []

    def test_set_and_get(self):
        doc = LayoutDoc(gridCount=2)
        doc.setStream(0, 'abc')
        doc.set(0, 'width', 2)
        assert doc.streamAt(0) == 'abc'
        assert doc.getCell(0).toDict() == {'index': 0, 'streamId': 'abc', 'width': 2, 'height': 1}

    def test_set_stream_none_unassigns(self):
        doc = LayoutDoc(gridCount=2)
        doc.setStream(1, 'abc')
        doc.setStream(1, None)
        assert doc.streamAt(1) == ''

    def test_rejects_bad_values(self):
        doc = LayoutDoc(gridCount=2)
        with pytest.raises(ValueError):
            doc.set(0, 'streamId', 5)
        with pytest.raises(ValueError):
            doc.set(0, 'width', 0)
        with pytest.raises(ValueError):
            doc.set(0, 'color', 'red')
        with pytest.raises(ValueError):
            doc.set(-1, 'streamId', 'abc')

    def test_to_json(self):
        doc = LayoutDoc(gridCount=1)
        doc.setStream(0, 'xyz')
        assert doc.toJson() == {'views': {'0': {'streamId': 'xyz', 'width': 1, 'height': 1}}}


class TestSync:
    """Update exchange between replicas"""

    def test_local_write_emits_update_with_origin(self):
        doc = LayoutDoc(gridCount=2)
        seen = []
        doc.observe(lambda update, origin: seen.append((update, origin)))
        doc.setStream(0, 'abc', origin='conn-1')
        assert len(seen) == 1
        update, origin = seen[0]
        assert origin == 'conn-1'
        ((idx, field, entry),) = decodeUpdate(update)
        assert (idx, field, entry.value) == (0, 'streamId', 'abc')

    def test_remote_update_applies(self):
        a = LayoutDoc(clientId='a', gridCount=2)
        b = LayoutDoc(clientId='b', gridCount=2)
        updates = []
        a.observe(lambda update, origin: updates.append(update))
        a.setStream(0, 'abc')
        assert b.applyUpdate(updates[0], origin='net') == 1
        assert b.streamAt(0) == 'abc'

    def test_apply_twice_is_noop(self):
        a = LayoutDoc(clientId='a', gridCount=2)
        b = LayoutDoc(clientId='b', gridCount=2)
        updates = []
        a.observe(lambda update, origin: updates.append(update))
        a.setStream(3, 'abc')

        emitted = []
        b.observe(lambda update, origin: emitted.append(update))
        assert b.applyUpdate(updates[0]) == 1
        assert b.applyUpdate(updates[0]) == 0
        assert len(emitted) == 1
        assert b.encodeStateAsUpdate() == a.encodeStateAsUpdate()

    def test_full_state_update_brings_new_replica_up_to_date(self):
        server = LayoutDoc(clientId='server', gridCount=3)
        server.setStream(0, 'abc')
        server.setStream(8, 'def')
        client = LayoutDoc(clientId='client')
        client.applyUpdate(server.encodeStateAsUpdate())
        assert client.streamAt(0) == 'abc'
        assert client.streamAt(8) == 'def'
        assert client.cellIndices() == list(range(9))

    def test_concurrent_same_cell_tie_break(self):
        """Equal clocks: the higher clientId wins on both replicas"""
        a = LayoutDoc(clientId='a', gridCount=1)
        b = LayoutDoc(clientId='b', gridCount=1)
        fromA, fromB = [], []
        a.observe(lambda update, origin: fromA.append(update))
        b.observe(lambda update, origin: fromB.append(update))

        a.setStream(0, 'from-a')
        b.setStream(0, 'from-b')
        a.applyUpdate(fromB[0])
        b.applyUpdate(fromA[0])

        assert a.streamAt(0) == b.streamAt(0) == 'from-b'

    def test_later_write_beats_earlier_regardless_of_client(self):
        """A write made after seeing another write wins even with a lower clientId"""
        a = LayoutDoc(clientId='a', gridCount=1)
        z = LayoutDoc(clientId='z', gridCount=1)
        fromZ = []
        z.observe(lambda update, origin: fromZ.append(update))
        z.setStream(0, 'first')
        a.applyUpdate(fromZ[0])
        a.setStream(0, 'second')
        z.applyUpdate(a.encodeStateAsUpdate())
        assert z.streamAt(0) == 'second'

    def test_convergence_random_order(self):
        """Replicas that receive the same updates in any order end identical"""
        rng = random.Random(7)
        writers = [LayoutDoc(clientId=f'c{i}', gridCount=3) for i in range(4)]
        updates = []
        for doc in writers:
            doc.observe(lambda update, origin: updates.append(update))

        for step in range(40):
            doc = rng.choice(writers)
            doc.setStream(rng.randrange(9), f's{step}')

        replicas = []
        for seed in range(3):
            replica = LayoutDoc(clientId=f'r{seed}', gridCount=3)
            shuffled = list(updates)
            random.Random(seed).shuffle(shuffled)
            for update in shuffled:
                replica.applyUpdate(update)
            replicas.append(replica)

        states = {r.encodeStateAsUpdate() for r in replicas}
        assert len(states) == 1

    def test_distinct_cells_do_not_conflict(self):
        docs = [LayoutDoc(clientId=f'c{i}', gridCount=2) for i in range(4)]
        outbox = connect(*docs)
        for i, doc in enumerate(docs):
            doc.setStream(i, f'stream-{i}')
        for source, update, _ in list(outbox):
            for doc in docs:
                if doc is not source:
                    doc.applyUpdate(update)
        for doc in docs:
            assert [doc.streamAt(i) for i in range(4)] == ['stream-0', 'stream-1', 'stream-2', 'stream-3']

    def test_remote_update_advances_clock(self):
        a = LayoutDoc(clientId='a', gridCount=1)
        for _ in range(5):
            a.setStream(0, 'x')
        b = LayoutDoc(clientId='b', gridCount=1)
        b.applyUpdate(a.encodeStateAsUpdate())
        assert b.clock >= 5


class TestTransact:
    """Grouping writes into one update"""

    def test_transact_emits_once(self):
        doc = LayoutDoc(gridCount=2)
        seen = []
        doc.observe(lambda update, origin: seen.append((update, origin)))
        with doc.transact(origin='tx'):
            doc.setStream(0, 'a')
            doc.setStream(1, 'b')
            doc.set(1, 'height', 2)
        assert len(seen) == 1
        assert seen[0][1] == 'tx'
        assert len(decodeUpdate(seen[0][0])) == 3

    def test_nested_transact_joins_outer(self):
        doc = LayoutDoc(gridCount=2)
        seen = []
        doc.observe(lambda update, origin: seen.append(update))
        with doc.transact():
            doc.setCell(0, streamId='a', width=2)
            doc.setStream(3, 'b')
        assert len(seen) == 1

    def test_empty_transact_emits_nothing(self):
        doc = LayoutDoc(gridCount=2)
        seen = []
        doc.observe(lambda update, origin: seen.append(update))
        with doc.transact():
            pass
        assert seen == []


class TestLayoutOps:
    """Views derived from cells, swap and fill"""

    def test_boxes_group_equal_streams(self):
        doc = LayoutDoc(gridCount=3)
        doc.fillBox(0, 4)
        assert doc.boxes() == []  # start cell empty: nothing assigned

        doc.setStream(0, 'abc')
        doc.fillBox(0, 4)
        boxes = doc.boxes()
        assert len(boxes) == 1
        assert boxes[0].spaces == [0, 1, 3, 4]
        assert (boxes[0].width, boxes[0].height) == (2, 2)

    def test_swap_views(self):
        doc = LayoutDoc(gridCount=3)
        doc.setStream(0, 'abc')
        doc.setStream(1, 'abc')
        doc.setStream(8, 'def')
        doc.swapViews(0, 8)
        assert doc.streamAt(0) == 'def'
        assert doc.streamAt(1) == 'def'
        assert doc.streamAt(8) == 'abc'

    def test_view_spaces(self):
        doc = LayoutDoc(gridCount=3)
        doc.setStream(2, 'abc')
        doc.setStream(5, 'abc')
        assert doc.viewSpaces(5) == [2, 5]
        assert doc.viewSpaces(0) == [0]


class TestBounds:
    """Grid and clock limits"""

    def test_set_outside_grid_raises(self):
        doc = LayoutDoc(gridCount=2)
        with pytest.raises(ValueError):
            doc.setStream(4, 'abc')
        assert doc.cellIndices() == [0, 1, 2, 3]

    def test_unseeded_doc_takes_any_index(self):
        doc = LayoutDoc()
        doc.setStream(40, 'abc')
        remote = LayoutDoc()
        remote.applyUpdate(doc.encodeStateAsUpdate())
        assert remote.streamAt(40) == 'abc'

    def test_largest_clock_accepted(self):
        blob = encodeUpdate([(0, 'streamId', Entry('abc', MAX_CLOCK, 'a'))])
        doc = LayoutDoc(gridCount=1)
        assert doc.applyUpdate(blob) == 1
        assert doc.clock == MAX_CLOCK
        with pytest.raises(ValueError):
            doc.setStream(0, 'xyz')
        assert doc.streamAt(0) == 'abc'

    def test_clock_step_refuses_runaway_update(self):
        server = LayoutDoc(clientId='server', gridCount=2, maxClockStep=100)
        runaway = encodeUpdate([(0, 'streamId', Entry('junk', 1000, 'evil'))])
        with pytest.raises(LayoutUpdateError):
            server.applyUpdate(runaway)
        assert server.streamAt(0) == ''
        assert server.clock == 0

    def test_honest_edit_after_refused_update(self):
        server = LayoutDoc(clientId='server', gridCount=2, maxClockStep=100)
        client = LayoutDoc(clientId='client', gridCount=2)
        outbox = connect(client)
        with pytest.raises(LayoutUpdateError):
            server.applyUpdate(encodeUpdate([(1, 'streamId', Entry('junk', MAX_CLOCK, 'evil'))]))

        client.setStream(1, 'abc')
        client.setStream(1, 'def')
        for _, update, _ in outbox:
            server.applyUpdate(update)
        assert server.streamAt(1) == 'def'
        assert server.clock == 2

    def test_clock_step_allows_catching_up(self):
        server = LayoutDoc(clientId='server', gridCount=2, maxClockStep=100)
        assert server.applyUpdate(encodeUpdate([(0, 'width', Entry(2, 100, 'a'))])) == 1
        assert server.applyUpdate(encodeUpdate([(0, 'width', Entry(3, 200, 'a'))])) == 1
        assert server.getCell(0).width == 3


class TestMalformed:
    """Undecodable blobs are rejected without touching state"""

    @pytest.mark.parametrize('blob', [
        b'not json',
        b'[]',
        b'{"v": 2, "entries": []}',
        b'{"v": 1}',
        b'{"v": 1, "entries": [[0, "streamId", "x", 1]]}',
        b'{"v": 1, "entries": [[-1, "streamId", "x", 1, "a"]]}',
        b'{"v": 1, "entries": [[0, "streamId", 5, 1, "a"]]}',
        b'{"v": 1, "entries": [[0, "color", "red", 1, "a"]]}',
        b'{"v": 1, "entries": [[0, "streamId", "x", true, "a"]]}',
        b'{"v": 1, "entries": [[0, "streamId", "x", -1, "a"]]}',
        b'{"v": 1, "entries": [[0, "streamId", "x", 9007199254740992, "a"]]}',
        b'{"v": 1, "entries": [[0, "streamId", "x", 1, 7]]}',
        b'{"v": 1, "entries": [[1, "streamId", "x", 1, "a"]]}',
        b'{"v": 1, "entries": [[0, "streamId", "x", 1, "a"], [4, "streamId", "y", 1, "a"]]}',
    ])
    def test_bad_blob_raises(self, blob):
        doc = LayoutDoc(gridCount=1)
        before = doc.encodeStateAsUpdate()
        with pytest.raises(LayoutUpdateError):
            doc.applyUpdate(blob)
        assert doc.encodeStateAsUpdate() == before

    def test_encoding_is_canonical(self):
        entry = Entry('abc', 3, 'a')
        blob = encodeUpdate([(1, 'streamId', entry), (0, 'width', Entry(2, 1, 'a'))])
        assert orjson.loads(blob) == {'v': 1, 'entries': [[0, 'width', 2, 1, 'a'], [1, 'streamId', 'abc', 3, 'a']]}
        assert b' ' not in blob

    def test_seed_entries_decode(self):
        blob = encodeUpdate([(0, 'streamId', Entry('', SEED_CLOCK, SEED_CLIENT))])
        ((idx, field, entry),) = decodeUpdate(blob)
        assert entry.clock == SEED_CLOCK

"""
Stream Catalog Tests

Run: python -m pytest test/test_streamCatalog.py -v
"""

import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from gridwall.core.streamCatalog import StreamCatalog, StreamIdGenerator


@pytest.fixture
def catalog():
    catalog = StreamCatalog()
    catalog.setSourceStreams([
        {'link': 'https://a.example/live', 'source': 'Unicorn Riot', 'kind': 'video'},
        {'link': 'https://b.example/live', 'source': 'Unicorn Ride'},
        {'label': 'no link'},
    ])
    return catalog


class TestStreamIds:
    """Short stable ids"""

    def test_prefix_and_collision_suffix(self):
        gen = StreamIdGenerator()
        assert gen.idFor({'link': 'l1', 'source': 'Unicorn Riot'}) == 'uni'
        assert gen.idFor({'link': 'l2', 'source': 'Unicorn Ride'}) == 'uni1'
        assert gen.idFor({'link': 'l1', 'source': 'Changed'}) == 'uni'

    def test_link_fallback_strips_scheme(self):
        gen = StreamIdGenerator()
        assert gen.idFor({'link': 'https://www.twitch.tv/foo'}) == 'twi'

    def test_the_prefix_dropped(self):
        gen = StreamIdGenerator()
        assert gen.idFor({'link': 'x', 'label': 'The Lens'}) == 'len'


class TestCatalog:
    """Merged stream list"""

    def test_streams_skip_entries_without_link(self, catalog):
        streams = catalog.streams()
        assert [s['id'] for s in streams] == ['uni', 'uni1']
        assert streams[1]['kind'] == 'video'
        assert streams[1]['rotation'] == 0

    def test_lookup(self, catalog):
        assert catalog.byId('uni1')['link'] == 'https://b.example/live'
        assert catalog.byLink('https://a.example/live')['id'] == 'uni'
        assert catalog.byId('zzz') is None

    def test_rotation_normalized(self, catalog):
        changes = []
        catalog.changed.subscribe(lambda: changes.append(1))
        catalog.setRotation('https://a.example/live', 450)
        assert catalog.byLink('https://a.example/live')['rotation'] == 90
        catalog.setRotation('https://a.example/live', -90)
        assert catalog.byLink('https://a.example/live')['rotation'] == 270
        assert len(changes) == 2

    def test_custom_stream_upsert_and_delete(self, catalog):
        stream = catalog.updateCustomStream('https://c.example', {'label': 'Custom', 'secret': 'dropped'})
        assert stream == {'label': 'Custom', 'link': 'https://c.example', '_dataSource': 'custom', 'kind': 'video'}
        assert [s['link'] for s in catalog.customStreams()] == ['https://c.example']

        catalog.updateCustomStream('https://c.example', {'label': 'Renamed', 'kind': 'web'})
        assert catalog.byLink('https://c.example')['label'] == 'Renamed'

        assert catalog.deleteCustomStream('https://c.example')
        assert not catalog.deleteCustomStream('https://c.example')
        assert catalog.customStreams() == []

    def test_custom_stream_bad_kind(self, catalog):
        with pytest.raises(ValueError):
            catalog.updateCustomStream('https://c.example', {'kind': 'hologram'})
        assert catalog.customStreams() == []

    def test_custom_streams_persist(self, tmp_path):
        path = tmp_path / 'custom.json'
        first = StreamCatalog(str(path))
        first.updateCustomStream('https://c.example', {'label': 'Kept'})
        assert json.loads(path.read_text())['streams'][0]['label'] == 'Kept'

        second = StreamCatalog(str(path))
        assert second.byLink('https://c.example')['label'] == 'Kept'

"""
Stream catalog: the list of streams operators can place on the wall.

Three sources are merged, keyed by stream link:
- source streams supplied by the external discovery collaborator
- local overrides (currently rotation) set over RPC
- custom streams created, updated and deleted over RPC

Every stream gets a short stable id from StreamIdGenerator.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from gridwall.core.events import Observable
from gridwall.logging import getLogger

STREAM_KINDS = ('video', 'audio', 'web', 'overlay', 'background')
VALID_ROTATIONS = (0, 90, 180, 270)
CUSTOM_SOURCE = 'custom'

# Fields a custom stream may carry
CUSTOM_FIELDS = ('label', 'source', 'city', 'state', 'country', 'kind', 'status', 'notes')


class StreamIdGenerator:
    """
    Assigns short ids derived from a stream's source, label or link.

    'Unicorn Riot' -> 'uni', a second 'Unicorn ...' -> 'uni1'. The id given to
    a link is never reassigned, even after the stream disappears.
    """

    def __init__(self):
        self._idByLink: Dict[str, str] = {}
        self._usedIds = set()

    @staticmethod
    def _normalize(text: str) -> str:
        text = re.sub(r'[^\w]', '', text.lower())
        return re.sub(r'^(the|https?(www)?)', '', text)

    def idFor(self, stream: Dict[str, Any]) -> str:
        link = stream['link']
        if link in self._idByLink:
            return self._idByLink[link]

        textPart = self._normalize(stream.get('source') or stream.get('label') or link)[:3]
        counter = 0
        while True:
            counterPart = '' if counter == 0 and textPart else str(counter)
            newId = f"{textPart}{counterPart}"
            counter += 1
            if newId not in self._usedIds:
                break

        self._idByLink[link] = newId
        self._usedIds.add(newId)
        return newId


class StreamCatalog:
    """Merged stream list with change notifications"""

    def __init__(self, customPath: Optional[str] = None):
        self.log = getLogger()
        self.customPath = Path(customPath) if customPath else None
        self._sourceStreams: List[Dict[str, Any]] = []
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self._customStreams: Dict[str, Dict[str, Any]] = {}
        self._ids = StreamIdGenerator()
        self.changed = Observable('StreamCatalog')
        self._loadCustom()

    def _loadCustom(self):
        if not self.customPath or not self.customPath.exists():
            return
        try:
            with open(self.customPath, 'r') as f:
                data = json.load(f)
            self._customStreams = {s['link']: s for s in data.get('streams', []) if s.get('link')}
            self.log.info(f"[StreamCatalog] Loaded {len(self._customStreams)} custom streams")
        except (OSError, ValueError) as e:
            self.log.error(f"[StreamCatalog] Failed to load custom streams: {e}")

    def _saveCustom(self):
        if not self.customPath:
            return
        self.customPath.parent.mkdir(parents=True, exist_ok=True)
        with open(self.customPath, 'w') as f:
            json.dump({'streams': list(self._customStreams.values())}, f, indent=2)

    # ------------------------------------------------------------------

    def setSourceStreams(self, streams: List[Dict[str, Any]]):
        """Replace the externally supplied stream list"""
        self._sourceStreams = [dict(s) for s in streams if s.get('link')]
        self.log.info(f"[StreamCatalog] Source streams updated: {len(self._sourceStreams)}")
        self.changed.emit()

    def streams(self) -> List[Dict[str, Any]]:
        """All streams, source first then custom, each with id and overrides applied"""
        merged = []
        for stream in self._sourceStreams + list(self._customStreams.values()):
            item = dict(stream)
            item.update(self._overrides.get(item['link'], {}))
            item.setdefault('kind', 'video')
            item.setdefault('rotation', 0)
            item['id'] = self._ids.idFor(item)
            merged.append(item)
        return merged

    def customStreams(self) -> List[Dict[str, Any]]:
        return [s for s in self.streams() if s.get('_dataSource') == CUSTOM_SOURCE]

    def byId(self, streamId: str) -> Optional[Dict[str, Any]]:
        for stream in self.streams():
            if stream['id'] == streamId:
                return stream
        return None

    def byLink(self, link: str) -> Optional[Dict[str, Any]]:
        for stream in self.streams():
            if stream['link'] == link:
                return stream
        return None

    def setRotation(self, link: str, rotation: int):
        """Store a rotation override; rotation is normalized to a multiple of 90"""
        rotation = (int(rotation) // 90 * 90) % 360
        self._overrides.setdefault(link, {})['rotation'] = rotation
        self.log.info(f"[StreamCatalog] Rotation set: {link} -> {rotation}")
        self.changed.emit()

    def updateCustomStream(self, link: str, data: Dict[str, Any]) -> Dict[str, Any]:
        stream = {k: v for k, v in data.items() if k in CUSTOM_FIELDS}
        stream['link'] = link
        stream['_dataSource'] = CUSTOM_SOURCE
        kind = stream.get('kind') or 'video'
        if kind not in STREAM_KINDS:
            raise ValueError(f"Unknown stream kind: {kind}")
        stream['kind'] = kind
        self._customStreams[link] = stream
        self._saveCustom()
        self.log.info(f"[StreamCatalog] Custom stream saved: {link}")
        self.changed.emit()
        return stream

    def deleteCustomStream(self, link: str) -> bool:
        if link not in self._customStreams:
            return False
        del self._customStreams[link]
        self._saveCustom()
        self.log.info(f"[StreamCatalog] Custom stream deleted: {link}")
        self.changed.emit()
        return True

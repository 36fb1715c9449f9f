"""
Application state aggregator.

Combines the stream catalog, the layout document, the token store and the
stream-delay status into one snapshot, and notifies subscribers with the new
snapshot whenever any of them changes. The snapshot is a read model: its
`views` array is derived from the layout document on every build and never
written back.
"""

import copy
from typing import Any, Callable, Dict, Optional

from gridwall.core.events import Observable
from gridwall.core.layoutDoc import LayoutDoc
from gridwall.core.roles import EDIT_TOKENS, roleCan
from gridwall.core.streamCatalog import StreamCatalog
from gridwall.logging import getLogger

# Fields every role may see; auth is added for roles holding edit-tokens
PUBLIC_KEYS = ('config', 'streams', 'customStreams', 'views', 'streamdelay')


def project(snapshot: Dict[str, Any], role: str) -> Dict[str, Any]:
    """Role-scoped copy of a snapshot"""
    view = {key: copy.deepcopy(snapshot.get(key)) for key in PUBLIC_KEYS}
    if roleCan(role, EDIT_TOKENS):
        view['auth'] = copy.deepcopy(snapshot.get('auth'))
    return view


class AppState:
    """
    Aggregates everything the control panels display.

    tokenStore is anything with a `changed` Observable and a `state()` method
    returning {'invites': [...], 'sessions': [...]}.
    """

    def __init__(self, gridConfig: Dict[str, Any], catalog: StreamCatalog,
                 layoutDoc: LayoutDoc, tokenStore: Any):
        self.log = getLogger()
        self.gridConfig = {
            'gridCount': gridConfig.get('count', 3),
            'width': gridConfig.get('width', 1920),
            'height': gridConfig.get('height', 1080),
        }
        self.catalog = catalog
        self.layoutDoc = layoutDoc
        self.tokenStore = tokenStore
        self.changed = Observable('AppState')

        self._streamDelay: Optional[Dict[str, Any]] = None
        self._viewStates: Dict[int, Any] = {}
        self._unsubscribers = [
            catalog.changed.subscribe(self._onSourceChanged),
            layoutDoc.observe(self._onLayoutChanged),
            tokenStore.changed.subscribe(self._onSourceChanged),
        ]

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """callback(snapshot) after every change"""
        return self.changed.subscribe(callback)

    # ------------------------------------------------------------------
    # External collaborator inputs
    # ------------------------------------------------------------------

    def setStreamDelayState(self, state: Optional[Dict[str, Any]]):
        """Latest status reported by the stream-delay collaborator (None: not connected)"""
        self._streamDelay = dict(state) if state is not None else None
        self._emit()

    def reportViewStates(self, states: Dict[int, Any]):
        """Display states keyed by each view's first cell index, as reported by the display layer"""
        self._viewStates = {int(idx): state for idx, state in states.items()}
        self._emit()

    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        streams = self.catalog.streams()
        return {
            'config': dict(self.gridConfig),
            'streams': streams,
            'customStreams': [s for s in streams if s.get('_dataSource') == 'custom'],
            'views': self._buildViews(streams),
            'streamdelay': copy.deepcopy(self._streamDelay),
            'auth': self.tokenStore.state(),
        }

    def view(self, role: str) -> Dict[str, Any]:
        return project(self.snapshot(), role)

    def _buildViews(self, streams):
        streamsById = {s['id']: s for s in streams}
        views = []
        for box in self.layoutDoc.boxes():
            stream = streamsById.get(box.content)
            content = {'url': stream['link'], 'kind': stream['kind']} if stream else None
            viewId = box.spaces[0]
            state = self._viewStates.get(viewId, 'loading' if content else 'empty')
            views.append({
                'state': state,
                'context': {
                    'id': viewId,
                    'streamId': box.content,
                    'content': content,
                    'pos': box.toDict(),
                    'cells': [self._cellSpan(idx) for idx in box.spaces],
                },
            })
        return views

    def _cellSpan(self, idx: int) -> Dict[str, int]:
        """Per-cell span hint written by the basic-layout editor, in grid units"""
        cell = self.layoutDoc.getCell(idx)
        if cell is None:
            return {'index': idx, 'width': 1, 'height': 1}
        return {'index': idx, 'width': cell.width, 'height': cell.height}

    def _onSourceChanged(self, *args):
        self._emit()

    def _onLayoutChanged(self, update: bytes, origin: Any):
        self._emit()

    def _emit(self):
        self.changed.emit(self.snapshot())

"""
Gridwall core: shared state, independent of the network edge.

- roles: capability table (role, action) -> allowed
- layoutDoc: CRDT grid layout replicated to every control panel
- stateDiff: structural deltas between snapshots
- streamCatalog / appState: the snapshot the control panels render
- actions: closed set of client actions
"""

__version__ = "1.0.0"

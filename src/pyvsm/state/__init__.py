"""State/store layer.

Device state records are nested JSON-like mappings.  This package owns the
single merge policy applied to them and the store interface the service
reads from and writes to.
"""

from pyvsm.state.merge import merge_state
from pyvsm.state.store import MemoryStateStore, StateStore

__all__ = ["MemoryStateStore", "StateStore", "merge_state"]

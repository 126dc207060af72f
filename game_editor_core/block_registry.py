"""
Block Registry: process-wide catalog of block kinds.

The registry is populated once at start-up (see ``p5_blocks``) and then read by
every session. Registration for an id that already exists overwrites the old
definition; lookups for an id that was never registered raise ``UnknownKind``.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from .block_schema import BlockKind, BlockShape
from .exceptions import UnknownKind

logger = logging.getLogger(__name__)


class BlockRegistry:
    """Kind id → BlockKind map with category and shape indexes."""

    def __init__(self):
        self._lock = threading.RLock()
        self._kinds: Dict[str, BlockKind] = {}
        # Index: category → ordered kind ids
        self._categories: Dict[str, List[str]] = {}

    def register_kind(self, kind: BlockKind) -> BlockKind:
        """Add ``kind``, replacing any earlier definition with the same id."""
        with self._lock:
            previous = self._kinds.get(kind.kind_id)
            if previous is not None:
                logger.debug("Overwriting block kind %s", kind.kind_id)
                ids = self._categories.get(previous.category, [])
                if kind.kind_id in ids:
                    ids.remove(kind.kind_id)
            self._kinds[kind.kind_id] = kind
            self._categories.setdefault(kind.category, []).append(kind.kind_id)
            return kind

    def register_many(self, kinds) -> None:
        for kind in kinds:
            self.register_kind(kind)

    def get_kind(self, kind_id: str) -> BlockKind:
        with self._lock:
            try:
                return self._kinds[kind_id]
            except KeyError:
                raise UnknownKind(kind_id) from None

    def find_kind(self, kind_id: str) -> Optional[BlockKind]:
        """Like ``get_kind`` but returns None on a miss."""
        with self._lock:
            return self._kinds.get(kind_id)

    def has_kind(self, kind_id: str) -> bool:
        with self._lock:
            return kind_id in self._kinds

    def kind_ids(self) -> List[str]:
        with self._lock:
            return list(self._kinds)

    def categories(self) -> List[str]:
        with self._lock:
            return [name for name, ids in self._categories.items() if ids]

    def kinds_in_category(self, category: str) -> List[BlockKind]:
        with self._lock:
            return [self._kinds[k] for k in self._categories.get(category, [])]

    def entry_point_kinds(self) -> List[BlockKind]:
        with self._lock:
            return [k for k in self._kinds.values() if k.shape is BlockShape.ENTRY]

    def __contains__(self, kind_id: str) -> bool:
        return self.has_kind(kind_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._kinds)

    def toolbox(self) -> Dict[str, Any]:
        """Catalog grouped by category, as served to the rendering surface."""
        with self._lock:
            return {
                'categories': [
                    {
                        'name': category,
                        'kinds': [self._kinds[k].to_dict() for k in ids],
                    }
                    for category, ids in self._categories.items() if ids
                ],
                'total': len(self._kinds),
            }


_default_registry: Optional[BlockRegistry] = None
_default_lock = threading.Lock()


def get_default_registry() -> BlockRegistry:
    """Return the shared registry, populating it with the built-in catalog on first use."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            from .p5_blocks import register_builtin_kinds
            registry = BlockRegistry()
            register_builtin_kinds(registry)
            logger.info("Block registry initialised with %d kinds", len(registry))
            _default_registry = registry
        return _default_registry

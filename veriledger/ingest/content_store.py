"""
Local content store.

Keeps recently uploaded content keyed by content id so the pipeline can read it
before the content has propagated to public gateways.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100


class ContentStore:
    """Bounded FIFO store of content records."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._storage: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def store(self, content_id: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Store content for a content id, evicting the oldest entry when full."""
        record = {
            "content_id": content_id,
            "content": content,
            "metadata": {
                **(metadata or {}),
                "stored_at": datetime.now(timezone.utc).isoformat(),
                "size": len(content),
            },
        }

        with self._lock:
            self._storage[content_id] = record
            self._storage.move_to_end(content_id)
            while len(self._storage) > self.max_entries:
                evicted, _ = self._storage.popitem(last=False)
                logger.debug(f"Content store full, evicted {evicted}")

        logger.info(f"Stored {len(content)} chars for {content_id}")
        return record

    def get(self, content_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._storage.get(content_id)

    def has(self, content_id: str) -> bool:
        with self._lock:
            return content_id in self._storage

    def content_ids(self) -> List[str]:
        with self._lock:
            return list(self._storage.keys())

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            records = list(self._storage.values())
        return {
            "total_entries": len(records),
            "total_size": sum(len(r["content"]) for r in records),
            "oldest_entry": records[0]["metadata"]["stored_at"] if records else None,
            "newest_entry": records[-1]["metadata"]["stored_at"] if records else None,
        }

    def clear(self) -> None:
        with self._lock:
            self._storage.clear()

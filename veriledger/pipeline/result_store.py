"""Result store for processed claims, keyed by content id."""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import ProcessedClaim


class ResultStore(ABC):
    """Narrow storage interface used by the orchestrator."""

    @abstractmethod
    def get(self, content_id: str) -> Optional[ProcessedClaim]:
        ...

    @abstractmethod
    def put(self, result: ProcessedClaim) -> None:
        ...

    @abstractmethod
    def list(self) -> List[ProcessedClaim]:
        ...

    def __contains__(self, content_id: str) -> bool:
        return self.get(content_id) is not None

    def __len__(self) -> int:
        return len(self.list())


class InMemoryResultStore(ResultStore):
    """Lock-guarded dict store; results live for the life of the process."""

    def __init__(self):
        self._results: Dict[str, ProcessedClaim] = {}
        self._lock = threading.Lock()

    def get(self, content_id: str) -> Optional[ProcessedClaim]:
        with self._lock:
            return self._results.get(content_id)

    def put(self, result: ProcessedClaim) -> None:
        with self._lock:
            self._results[result.content_id] = result

    def list(self) -> List[ProcessedClaim]:
        with self._lock:
            return list(self._results.values())

    def __contains__(self, content_id: str) -> bool:
        with self._lock:
            return content_id in self._results

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

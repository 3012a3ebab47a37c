"""Bounded best-first retention of screened candidates"""

import heapq
import threading
from typing import Iterator, List, Optional, Tuple

from .candidates import SearchCandidate


class ScreenQueue:
    """
    Keeps the candidates with the highest scores, at most capacity of them.
    Among equal scores the entry with the smaller order survives. Inserts are
    serialized so the queue can be filled from several threads.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("Screening capacity must be >= 1")
        self.capacity = capacity
        self._heap: List[Tuple[float, int, SearchCandidate]] = []
        self._counter = 0
        self._lock = threading.Lock()

    def add(self, candidate: SearchCandidate, score: Optional[float] = None,
            order: Optional[int] = None):
        """Insert a candidate, evicting the minimum if over capacity"""
        score = candidate.score if score is None else score
        with self._lock:
            if order is None:
                order = self._counter
            self._counter += 1
            # Min-heap: the lowest score and then the latest order is evicted first
            heapq.heappush(self._heap, (score, -order, candidate))
            if len(self._heap) > self.capacity:
                heapq.heappop(self._heap)

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[SearchCandidate]:
        """Candidates from best to worst"""
        with self._lock:
            entries = sorted(self._heap, key=lambda e: (-e[0], -e[1]))
        return iter([candidate for _, _, candidate in entries])

    def scores(self) -> List[float]:
        """Retained scores from best to worst"""
        with self._lock:
            return sorted((entry[0] for entry in self._heap), reverse=True)

    @property
    def minimum(self) -> Optional[float]:
        return self._heap[0][0] if self._heap else None

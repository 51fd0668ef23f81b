"""Bounded result cache keyed by fragment fingerprint.

Entries are retained by recency of their fragment's ``extracted_at``: after
every write only the ``capacity`` most recent survive, and under storage
pressure the cache shrinks further to ``reduced_capacity``.

Writers serialize on a lock and publish a fresh mapping (copy-on-write).
Readers take whatever mapping is current without locking, so a lookup never
sees an eviction half-applied.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping

from .models import AnalysisResult, Fingerprint

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_REDUCED_CAPACITY = 50
DEFAULT_PRESSURE_THRESHOLD = 0.8
DEFAULT_QUOTA_BYTES = 10 * 1024 * 1024

UsageProbe = Callable[[], float]


def _retain_most_recent(
    entries: Mapping[Fingerprint, AnalysisResult], limit: int
) -> dict[Fingerprint, AnalysisResult]:
    ordered = sorted(
        entries.items(),
        key=lambda item: item[1].fragment.extracted_at,
        reverse=True,
    )
    return dict(ordered[:limit])


class FingerprintCache:
    """Maps fingerprints to their most recent ``AnalysisResult``.

    Args:
        capacity: Maximum entries kept after any write.
        reduced_capacity: Entries kept when storage pressure is detected.
        pressure_threshold: Usage ratio above which eviction shrinks the cache.
        usage_probe: Returns current storage usage as a ratio of the quota.
            Defaults to the serialized size of the entries over ``quota_bytes``.
        quota_bytes: Quota used by the default probe.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        reduced_capacity: int = DEFAULT_REDUCED_CAPACITY,
        pressure_threshold: float = DEFAULT_PRESSURE_THRESHOLD,
        usage_probe: UsageProbe | None = None,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if not 0 <= reduced_capacity <= capacity:
            raise ValueError("reduced_capacity must be between 0 and capacity")
        if quota_bytes <= 0:
            raise ValueError("quota_bytes must be positive")

        self.capacity = capacity
        self.reduced_capacity = reduced_capacity
        self.pressure_threshold = pressure_threshold
        self.quota_bytes = quota_bytes
        self._usage_probe = usage_probe or self._serialized_usage
        self._entries: dict[Fingerprint, AnalysisResult] = {}
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads (lock-free)
    # ------------------------------------------------------------------

    def get(self, fingerprint: Fingerprint) -> AnalysisResult | None:
        return self._entries.get(fingerprint)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def fingerprints(self) -> list[Fingerprint]:
        return list(self._entries)

    def recent(self, limit: int = 10) -> list[AnalysisResult]:
        """Cached results, newest fragment first."""
        return list(_retain_most_recent(self._entries, limit).values())

    def usage_ratio(self) -> float:
        return self._usage_probe()

    def to_dict(self) -> dict[str, dict]:
        """The persisted layout: fingerprint key to serialized result."""
        return {fp.key(): result.to_dict() for fp, result in self._entries.items()}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, fingerprint: Fingerprint, result: AnalysisResult) -> None:
        """Insert or replace the entry stored under ``fingerprint``.

        Raises ``ValueError`` when ``fingerprint`` is not the identity of
        ``result``'s fragment.
        """
        if fingerprint != result.fingerprint:
            raise ValueError(f"fingerprint does not match result for {result.fragment.id}")
        with self._write_lock:
            entries = dict(self._entries)
            entries[fingerprint] = result
            if len(entries) > self.capacity:
                entries = _retain_most_recent(entries, self.capacity)
            self._entries = entries

    def remove(self, fingerprint: Fingerprint) -> bool:
        with self._write_lock:
            if fingerprint not in self._entries:
                return False
            entries = dict(self._entries)
            del entries[fingerprint]
            self._entries = entries
            return True

    def clear(self) -> None:
        with self._write_lock:
            self._entries = {}

    def evict_if_over_capacity(self) -> int:
        """Shrink to ``reduced_capacity`` when storage usage is too high.

        Returns:
            Number of entries evicted (0 when under the threshold).
        """
        ratio = self.usage_ratio()
        if ratio <= self.pressure_threshold:
            return 0

        with self._write_lock:
            before = len(self._entries)
            self._entries = _retain_most_recent(self._entries, self.reduced_capacity)
            evicted = before - len(self._entries)

        if evicted:
            logger.info(
                "Storage usage %.0f%% over threshold; evicted %d cached result(s)",
                ratio * 100,
                evicted,
            )
        return evicted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _serialized_usage(self) -> float:
        payload = json.dumps(self.to_dict(), ensure_ascii=False)
        return len(payload.encode("utf-8")) / self.quota_bytes

"""Group one process snapshot into per-owner totals."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

import structlog

from proc_mem_exporter.collector import ProcessRecord
from proc_mem_exporter.identity import UNKNOWN_OWNER

log = structlog.get_logger()

# procfs reports kibibytes; gauges are published in bytes
KIB = 1024


@dataclass
class OwnerAggregate:
    """Totals for one owner within a single cycle. Memory values are bytes."""

    count: int = 0
    resident_memory: int = 0
    swap: int = 0

    def add(self, record: ProcessRecord) -> None:
        """Count record and add its memory, treating absent fields as zero."""
        self.count += 1
        self.resident_memory += (record.rss_kb or 0) * KIB
        self.swap += (record.swap_kb or 0) * KIB


def _owner_name(resolve: Callable[[int], str], uid: int) -> str:
    try:
        name = resolve(uid)
    except Exception as e:
        log.debug("owner_resolve_failed", uid=uid, error=str(e))
        return UNKNOWN_OWNER
    return name or UNKNOWN_OWNER


def aggregate(
    snapshot: Iterable[ProcessRecord],
    resolve: Callable[[int], str],
) -> dict[str, OwnerAggregate]:
    """Return owner name -> OwnerAggregate for every record in snapshot.

    Every record lands in exactly one entry. Owners that cannot be resolved
    share a single UNKNOWN_OWNER entry. Iteration order of the result is not
    meaningful.
    """
    owners: dict[str, OwnerAggregate] = {}
    for record in snapshot:
        name = _owner_name(resolve, record.uid)
        entry = owners.get(name)
        if entry is None:
            entry = owners[name] = OwnerAggregate()
        entry.add(record)
    return owners

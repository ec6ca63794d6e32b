"""Publish per-owner aggregates and evict owners that disappeared."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from proc_mem_exporter.aggregator import OwnerAggregate
from proc_mem_exporter.metrics import LabelPrefix, OwnerGauges


@dataclass
class ReconcileResult:
    """What one reconcile pass changed."""

    updated: set[str] = field(default_factory=set)
    added: set[str] = field(default_factory=set)
    evicted: set[str] = field(default_factory=set)


def reconcile(
    current: Mapping[str, OwnerAggregate],
    gauges: OwnerGauges,
    prefix: LabelPrefix,
) -> ReconcileResult:
    """Make the published owner set under prefix equal current's keys.

    All gauge writes for present owners happen before any eviction, so an
    owner present in this cycle never briefly disappears from a scrape.
    Running this twice with the same input leaves the same registry state.
    """
    previous = gauges.published_owners(prefix)
    stale = set(previous)
    result = ReconcileResult()

    for owner, entry in current.items():
        gauges.set_owner(prefix, owner, entry.count, entry.resident_memory, entry.swap)
        stale.discard(owner)
        result.updated.add(owner)
        if owner not in previous:
            result.added.add(owner)

    for owner in stale:
        gauges.remove_owner(prefix, owner)
    result.evicted = stale

    return result

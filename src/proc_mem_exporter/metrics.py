"""Per-user gauge families backed by a dedicated prometheus_client registry.

The registry is constructed explicitly and owned by OwnerGauges. The daemon
hands the same instance to the reconciler (writes) and the exporter (reads).
prometheus_client serializes access within each metric family.
"""

from __future__ import annotations

from typing import NamedTuple

import structlog
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

log = structlog.get_logger()

JOB_NAME = "proc-mem-to-prom"
LABEL_NAMES = ("job", "hostgroup", "instance", "username")

PROCESSES_METRIC = "node_user_processes"
RSS_METRIC = "node_user_processes_rss"
SWAP_METRIC = "node_user_processes_swap"


class LabelPrefix(NamedTuple):
    """Labels shared by every series this process publishes."""

    job: str
    hostgroup: str
    instance: str


class OwnerGauges:
    """The three per-owner gauges: process count, resident memory, swap."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.processes = Gauge(
            PROCESSES_METRIC,
            "The number of processes per user.",
            LABEL_NAMES,
            registry=self.registry,
        )
        self.rss = Gauge(
            RSS_METRIC,
            "The resident memory on a node per user, in bytes.",
            LABEL_NAMES,
            registry=self.registry,
        )
        self.swap = Gauge(
            SWAP_METRIC,
            "The swap on a node per user, in bytes.",
            LABEL_NAMES,
            registry=self.registry,
        )

    @property
    def families(self) -> tuple[Gauge, Gauge, Gauge]:
        return (self.processes, self.rss, self.swap)

    def set_owner(
        self, prefix: LabelPrefix, owner: str, count: int, rss: int, swap: int
    ) -> None:
        """Create or overwrite the gauge triple for one owner."""
        labels = (*prefix, owner)
        self.processes.labels(*labels).set(count)
        self.rss.labels(*labels).set(rss)
        self.swap.labels(*labels).set(swap)

    def remove_owner(self, prefix: LabelPrefix, owner: str) -> None:
        """Delete the gauge triple for one owner.

        Each family is handled on its own; a label set that is already gone
        is ignored.
        """
        labels = (*prefix, owner)
        for gauge in self.families:
            try:
                gauge.remove(*labels)
            except KeyError:
                pass

    def published_owners(self, prefix: LabelPrefix) -> set[str]:
        """Return owner names currently published under prefix.

        Read from the process-count family, which is always written and removed
        together with the other two. Introspection errors yield an empty set.
        """
        owners: set[str] = set()
        try:
            for metric in self.processes.collect():
                for sample in metric.samples:
                    labels = sample.labels
                    if (labels["job"], labels["hostgroup"], labels["instance"]) == prefix:
                        owners.add(labels["username"])
        except Exception as e:
            log.warning("published_owners_failed", error=str(e))
            return set()
        return owners

    def exposition(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

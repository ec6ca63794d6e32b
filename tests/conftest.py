"""Shared test fixtures for proc-mem-exporter."""

from collections.abc import Callable

import pytest

from proc_mem_exporter.collector import ProcessRecord, SnapshotError
from proc_mem_exporter.identity import UNKNOWN_OWNER
from proc_mem_exporter.metrics import JOB_NAME, LabelPrefix, OwnerGauges

USERS = {0: "root", 1000: "alice", 1001: "bob", 1002: "carol", 1003: "dave"}


class FakeSource:
    """Snapshot source returning queued snapshots, or raising SnapshotError for None.

    The last queued snapshot is repeated once the queue is drained.
    """

    def __init__(self, *snapshots: list[ProcessRecord] | None) -> None:
        self.snapshots = list(snapshots)
        self.calls = 0

    def snapshot(self) -> list[ProcessRecord]:
        self.calls += 1
        snap = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if snap is None:
            raise SnapshotError("permission denied")
        return snap


@pytest.fixture
def prefix() -> LabelPrefix:
    """Label prefix used by the daemon under test."""
    return LabelPrefix(job=JOB_NAME, hostgroup="web", instance="host-1")


@pytest.fixture
def make_record() -> Callable[..., ProcessRecord]:
    """Factory for ProcessRecords with test defaults."""

    def _make(
        uid: int = 1000,
        rss_kb: int | None = 0,
        swap_kb: int | None = 0,
        pid: int = 100,
    ) -> ProcessRecord:
        return ProcessRecord(pid=pid, uid=uid, rss_kb=rss_kb, swap_kb=swap_kb)

    return _make


@pytest.fixture
def resolve_user() -> Callable[[int], str]:
    """Resolver over the fixed USERS table."""
    return lambda uid: USERS.get(uid, UNKNOWN_OWNER)


@pytest.fixture
def fake_source() -> type[FakeSource]:
    """Factory for snapshot sources replaying canned snapshots."""
    return FakeSource


@pytest.fixture
def gauges() -> OwnerGauges:
    """A fresh, isolated gauge registry."""
    return OwnerGauges()


@pytest.fixture
def sample_value(prefix: LabelPrefix):
    """Read one published value, or None when the series is absent."""

    def _read(gauges: OwnerGauges, metric: str, owner: str, prefix: LabelPrefix = prefix):
        labels = dict(zip(("job", "hostgroup", "instance"), prefix))
        labels["username"] = owner
        return gauges.registry.get_sample_value(metric, labels)

    return _read


@pytest.fixture
def published():
    """Owner names with a series in the given family."""

    def _owners(gauges: OwnerGauges, metric: str) -> set[str]:
        return {
            sample.labels["username"]
            for family in gauges.registry.collect()
            if family.name == metric
            for sample in family.samples
        }

    return _owners

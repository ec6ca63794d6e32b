"""Tests for publishing aggregates and evicting stale owners."""

from unittest.mock import patch

from proc_mem_exporter.aggregator import KIB, OwnerAggregate, aggregate
from proc_mem_exporter.metrics import (
    JOB_NAME,
    PROCESSES_METRIC,
    RSS_METRIC,
    SWAP_METRIC,
    LabelPrefix,
)
from proc_mem_exporter.reconciler import reconcile

ALL_METRICS = (PROCESSES_METRIC, RSS_METRIC, SWAP_METRIC)


def _agg(count: int, rss: int = 0, swap: int = 0) -> OwnerAggregate:
    return OwnerAggregate(count=count, resident_memory=rss, swap=swap)


def test_publishes_all_three_gauges(gauges, prefix, sample_value):
    """Each owner gets count, rss and swap series."""
    reconcile({"alice": _agg(3, 100, 5)}, gauges, prefix)

    assert sample_value(gauges, PROCESSES_METRIC, "alice") == 3
    assert sample_value(gauges, RSS_METRIC, "alice") == 100
    assert sample_value(gauges, SWAP_METRIC, "alice") == 5


def test_stale_owners_are_evicted(gauges, prefix, sample_value, published):
    """Published {A, B, C} then current {A, D} leaves exactly {A, D}."""
    reconcile({"A": _agg(1), "B": _agg(1), "C": _agg(1)}, gauges, prefix)

    result = reconcile({"A": _agg(2), "D": _agg(4)}, gauges, prefix)

    for metric in ALL_METRICS:
        assert published(gauges, metric) == {"A", "D"}
    assert sample_value(gauges, PROCESSES_METRIC, "A") == 2
    assert sample_value(gauges, PROCESSES_METRIC, "D") == 4
    assert result.evicted == {"B", "C"}
    assert result.added == {"D"}
    assert result.updated == {"A", "D"}


def test_reconcile_is_idempotent(gauges, prefix):
    """Running twice with the same input equals running once."""
    current = {"alice": _agg(3, 10, 1), "bob": _agg(1, 20, 2)}

    reconcile(current, gauges, prefix)
    once = gauges.exposition()
    result = reconcile(current, gauges, prefix)

    assert gauges.exposition() == once
    assert result.added == set()
    assert result.evicted == set()


def test_empty_current_evicts_everything(gauges, prefix, published):
    """No owners this cycle removes every series."""
    reconcile({"alice": _agg(1)}, gauges, prefix)

    reconcile({}, gauges, prefix)

    for metric in ALL_METRICS:
        assert published(gauges, metric) == set()


def test_does_not_mutate_input(gauges, prefix):
    """The aggregate mapping is left as given."""
    current = {"alice": _agg(1, 2, 3)}
    reconcile({"bob": _agg(1)}, gauges, prefix)

    reconcile(current, gauges, prefix)

    assert current == {"alice": _agg(1, 2, 3)}


def test_other_prefixes_are_left_alone(gauges, prefix, sample_value):
    """Only series under our own (job, hostgroup, instance) are reconciled."""
    other = LabelPrefix(job=JOB_NAME, hostgroup="db", instance="host-2")
    reconcile({"mallory": _agg(1)}, gauges, other)

    reconcile({"alice": _agg(1)}, gauges, prefix)

    assert sample_value(gauges, PROCESSES_METRIC, "mallory", prefix=other) == 1


def test_introspection_failure_means_no_previous_owners(gauges, prefix, sample_value):
    """If published owners cannot be read, current owners are still published."""
    reconcile({"old": _agg(1)}, gauges, prefix)

    with patch.object(gauges.processes, "collect", side_effect=RuntimeError("boom")):
        result = reconcile({"alice": _agg(1)}, gauges, prefix)

    assert result.evicted == set()
    assert sample_value(gauges, PROCESSES_METRIC, "alice") == 1
    # nothing could be evicted without knowing who was there
    assert sample_value(gauges, PROCESSES_METRIC, "old") == 1


def test_updates_happen_before_evictions(gauges, prefix):
    """All gauge writes for the cycle precede any removal."""
    reconcile({"gone": _agg(1)}, gauges, prefix)
    calls = []

    with (
        patch.object(gauges, "set_owner", side_effect=lambda *a: calls.append("set")),
        patch.object(gauges, "remove_owner", side_effect=lambda *a: calls.append("remove")),
    ):
        reconcile({"a": _agg(1), "b": _agg(1)}, gauges, prefix)

    assert calls == ["set", "set", "remove"]


def test_two_cycle_scenario(gauges, prefix, make_record, resolve_user, sample_value, published):
    """alice leaves between cycles; bob is updated in place."""
    mb = 1024  # kB per MiB
    cycle1 = [
        *[make_record(uid=1000, rss_kb=100 * mb // 3) for _ in range(3)],
        make_record(uid=1001, rss_kb=50 * mb, swap_kb=10 * mb),
    ]
    cycle2 = [make_record(uid=1001, rss_kb=30 * mb) for _ in range(2)]

    reconcile(aggregate(cycle1, resolve_user), gauges, prefix)

    assert published(gauges, PROCESSES_METRIC) == {"alice", "bob"}
    assert sample_value(gauges, PROCESSES_METRIC, "alice") == 3
    assert sample_value(gauges, RSS_METRIC, "alice") == 3 * (100 * mb // 3) * KIB
    assert sample_value(gauges, SWAP_METRIC, "alice") == 0
    assert sample_value(gauges, PROCESSES_METRIC, "bob") == 1
    assert sample_value(gauges, RSS_METRIC, "bob") == 50 * mb * KIB
    assert sample_value(gauges, SWAP_METRIC, "bob") == 10 * mb * KIB

    reconcile(aggregate(cycle2, resolve_user), gauges, prefix)

    for metric in ALL_METRICS:
        assert sample_value(gauges, metric, "alice") is None
    assert sample_value(gauges, PROCESSES_METRIC, "bob") == 2
    assert sample_value(gauges, RSS_METRIC, "bob") == 60 * mb * KIB
    assert sample_value(gauges, SWAP_METRIC, "bob") == 0
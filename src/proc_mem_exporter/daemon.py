"""Background daemon and oneshot runner for proc-mem-exporter."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import psutil
import structlog

from proc_mem_exporter import logging as console
from proc_mem_exporter.aggregator import aggregate
from proc_mem_exporter.collector import ProcfsSource, ProcessRecord, SnapshotError
from proc_mem_exporter.config import Config
from proc_mem_exporter.exporter import MetricsServer
from proc_mem_exporter.identity import UserResolver
from proc_mem_exporter.metrics import LabelPrefix, OwnerGauges
from proc_mem_exporter.reconciler import ReconcileResult, reconcile

log = structlog.get_logger()


class SnapshotSource(Protocol):
    """Anything that can produce a process snapshot (ProcfsSource in production)."""

    def snapshot(self) -> list[ProcessRecord]: ...


@dataclass
class CycleReport:
    """Outcome of one successful sampling cycle."""

    processes: int
    owners: int
    result: ReconcileResult


def sample_once(
    source: SnapshotSource,
    resolve: Callable[[int], str],
    gauges: OwnerGauges,
    prefix: LabelPrefix,
) -> CycleReport:
    """Run one snapshot -> aggregate -> reconcile cycle.

    Raises:
        SnapshotError: The process table could not be read. Nothing in gauges
            has been touched in that case.
    """
    records = source.snapshot()
    owners = aggregate(records, resolve)
    result = reconcile(owners, gauges, prefix)
    return CycleReport(processes=len(records), owners=len(owners), result=result)


def next_delay(interval: float, elapsed: float) -> float:
    """Seconds to sleep so cycles start every interval seconds.

    An overrunning cycle gets no sleep; the next one starts right away with no
    attempt to catch up on missed ticks.
    """
    return max(0.0, interval - elapsed)


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    cycle_count: int = 0
    failed_cycles: int = 0
    last_cycle_time: datetime | None = None
    last_owner_count: int = 0
    last_process_count: int = 0

    def record_cycle(self, owners: int, processes: int) -> None:
        """Update state after a successful cycle."""
        self.cycle_count += 1
        self.last_owner_count = owners
        self.last_process_count = processes
        self.last_cycle_time = datetime.now()

    def record_failure(self) -> None:
        """Update state after a cycle that could not sample."""
        self.cycle_count += 1
        self.failed_cycles += 1


class Daemon:
    """Main daemon class: sampling loop plus metrics endpoint."""

    def __init__(
        self,
        config: Config,
        source: SnapshotSource | None = None,
        resolver: Callable[[int], str] | None = None,
        gauges: OwnerGauges | None = None,
    ):
        self.config = config
        self.state = DaemonState()
        self.prefix = config.label_prefix

        self.source = source if source is not None else ProcfsSource()
        self.resolver = resolver if resolver is not None else UserResolver()
        self.gauges = gauges if gauges is not None else OwnerGauges()

        self._shutdown_event = asyncio.Event()
        self._server: MetricsServer | None = None

    async def run_cycle(self) -> CycleReport | None:
        """Sample, aggregate and publish once.

        The procfs read and registry update run in a worker thread so scrapes
        keep being served. Returns None when the snapshot failed, in which case
        the previously published gauges are left as they were.
        """
        try:
            report = await asyncio.to_thread(
                sample_once, self.source, self.resolver, self.gauges, self.prefix
            )
        except SnapshotError as e:
            self.state.record_failure()
            log.error("snapshot_failed", error=str(e))
            console.sample_failed(str(e))
            return None

        first_cycle = self.state.last_cycle_time is None
        self.state.record_cycle(owners=report.owners, processes=report.processes)

        result = report.result
        log.info(
            "cycle_completed",
            processes=report.processes,
            owners=report.owners,
            added=sorted(result.added),
            evicted=sorted(result.evicted),
        )
        if not first_cycle and (result.added or result.evicted):
            console.owners_changed(sorted(result.added), sorted(result.evicted))
        return report

    async def start(self) -> None:
        """Start the daemon and run until shutdown."""
        from importlib.metadata import version

        pkg_version = version("proc-mem-exporter")
        log.info("daemon_starting", version=pkg_version)
        console.version_info("proc-mem-exporter", pkg_version)

        exporter = self.config.exporter
        log.info(
            "daemon_config",
            hostgroup=exporter.hostgroup,
            instance=exporter.instance,
            port=exporter.port,
            interval=self.config.sampling.interval,
        )
        console.config_summary(exporter.hostgroup, exporter.instance, self.config.sampling.interval)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        await self._start_exporter()

        self.state.running = True
        log.info("daemon_started")
        console.daemon_started()

        await self._main_loop()

    async def stop(self) -> None:
        """Stop the daemon."""
        log.info("daemon_stopping")
        console.daemon_stopping()
        self.state.running = False

        if self._server:
            await self._server.stop()
            self._server = None

        log.info("daemon_stopped")
        console.daemon_stopped()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    async def _start_exporter(self) -> None:
        """Start the metrics endpoint.

        A bind failure is reported but does not stop the sampling loop.
        """
        exporter = self.config.exporter
        server = MetricsServer(self.gauges, host=exporter.bind_address, port=exporter.port)
        try:
            await server.start()
        except OSError as e:
            address = f"{exporter.bind_address}:{exporter.port}"
            log.error("exporter_bind_failed", address=address, error=str(e))
            console.exporter_bind_failed(address, str(e))
            return

        self._server = server
        console.exporter_listening(server.url or "")

    def _heartbeat(self) -> None:
        """Log periodic stats and drop cached uid lookups."""
        rss_mb = psutil.Process().memory_info().rss / 1024 / 1024
        log.info(
            "daemon_heartbeat",
            cycles=self.state.cycle_count,
            failed=self.state.failed_cycles,
            owners=self.state.last_owner_count,
            processes=self.state.last_process_count,
            rss_mb=round(rss_mb, 1),
        )
        console.heartbeat(
            cycles=self.state.cycle_count,
            failures=self.state.failed_cycles,
            owners=self.state.last_owner_count,
            processes=self.state.last_process_count,
            rss_mb=rss_mb,
        )
        if isinstance(self.resolver, UserResolver):
            self.resolver.clear()

    async def _main_loop(self) -> None:
        """Run cycles every sampling.interval seconds until shutdown.

        Each iteration:
        1. Snapshot, aggregate and reconcile (run_cycle)
        2. Heartbeat every sampling.heartbeat_cycles cycles
        3. Sleep for the remainder of the interval, or not at all on overrun

        Cycles never overlap.
        """
        interval = self.config.sampling.interval
        heartbeat_every = self.config.sampling.heartbeat_cycles
        loop = asyncio.get_running_loop()

        while not self._shutdown_event.is_set():
            cycle_start = loop.time()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                log.info("main_loop_cancelled")
                break
            except Exception as e:
                self.state.record_failure()
                log.exception("cycle_failed", error=str(e))
                console.sample_failed(str(e))

            if self.state.cycle_count % heartbeat_every == 0:
                self._heartbeat()

            sleep_time = next_delay(interval, loop.time() - cycle_start)
            if sleep_time > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=sleep_time)
                    break  # Shutdown requested during sleep
                except TimeoutError:
                    pass


def run_oneshot(
    config: Config,
    source: SnapshotSource | None = None,
    resolver: Callable[[int], str] | None = None,
) -> bytes:
    """Run a single cycle and return the exposition text.

    A failed snapshot is reported and yields an exposition with no samples.
    """
    gauges = OwnerGauges()
    try:
        report = sample_once(
            source if source is not None else ProcfsSource(),
            resolver if resolver is not None else UserResolver(),
            gauges,
            config.label_prefix,
        )
    except SnapshotError as e:
        log.error("snapshot_failed", error=str(e))
        console.sample_failed(str(e))
    else:
        log.info("oneshot_completed", processes=report.processes, owners=report.owners)
    return gauges.exposition()


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()

    console.configure(config)

    daemon = Daemon(config)

    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()

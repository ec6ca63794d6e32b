"""Process table snapshots read from Linux procfs.

Process ids come from psutil; each process's /proc/<pid>/status is then
parsed for the effective uid and the VmRSS/VmSwap counters (reported in kB).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import psutil
import structlog

log = structlog.get_logger()

PROC_ROOT = Path("/proc")


class SnapshotError(Exception):
    """The process table could not be enumerated at all."""


@dataclass(frozen=True)
class ProcessRecord:
    """Status of one process at snapshot time.

    Memory fields are in kB as reported by the kernel. They are None when the
    status file omits them (kernel threads have no VmRSS/VmSwap lines).
    """

    pid: int
    uid: int
    rss_kb: int | None = None
    swap_kb: int | None = None


def _parse_kb(value: str) -> int:
    """Parse a status value like '  1234 kB' into 1234."""
    return int(value.split()[0])


def parse_status(pid: int, text: str) -> ProcessRecord:
    """Build a ProcessRecord from the contents of /proc/<pid>/status.

    Raises:
        ValueError: If the Uid line is missing or a field is malformed.
    """
    uid: int | None = None
    rss_kb: int | None = None
    swap_kb: int | None = None

    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        if key == "Uid":
            # real, effective, saved, filesystem
            uid = int(value.split()[1])
        elif key == "VmRSS":
            rss_kb = _parse_kb(value)
        elif key == "VmSwap":
            swap_kb = _parse_kb(value)

    if uid is None:
        raise ValueError(f"no Uid line in status for pid {pid}")
    return ProcessRecord(pid=pid, uid=uid, rss_kb=rss_kb, swap_kb=swap_kb)


class ProcfsSource:
    """Snapshot source for all processes visible to this user."""

    def __init__(self, proc_root: Path = PROC_ROOT) -> None:
        self.proc_root = proc_root

    def read_status(self, pid: int) -> ProcessRecord:
        """Read one process's status file.

        Raises:
            OSError: Process exited or is not readable.
            ValueError: Status file is malformed.
        """
        text = (self.proc_root / str(pid) / "status").read_text()
        return parse_status(pid, text)

    def snapshot(self) -> list[ProcessRecord]:
        """Return a record for every readable process.

        Processes that vanish or cannot be read between listing and reading
        are dropped.

        Raises:
            SnapshotError: If the process list itself cannot be obtained.
        """
        try:
            pids = psutil.pids()
        except (OSError, psutil.Error) as e:
            raise SnapshotError(f"cannot enumerate processes: {e}") from e

        records = []
        skipped = 0
        for pid in pids:
            try:
                records.append(self.read_status(pid))
            except (OSError, ValueError):
                skipped += 1
                continue

        log.debug("snapshot_taken", processes=len(records), skipped=skipped)
        return records

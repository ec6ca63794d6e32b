"""Configuration system for proc-mem-exporter."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path

import tomlkit

from proc_mem_exporter.metrics import JOB_NAME, LabelPrefix


@dataclass
class ExporterConfig:
    """Metrics endpoint and label configuration."""

    port: int = 0  # 0 lets the OS pick a free port
    bind_address: str = "0.0.0.0"
    hostgroup: str = "test"
    instance: str = "test"


@dataclass
class SamplingConfig:
    """Sampling loop configuration."""

    interval: float = 15.0  # Target seconds between cycle starts
    heartbeat_cycles: int = 20  # Log heartbeat every N cycles (~5min at 15s)


@dataclass
class SystemConfig:
    """Daemon logging configuration."""

    log_to_file: bool = True
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    exporter: ExporterConfig = field(default_factory=ExporterConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "proc-mem-exporter"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "proc-mem-exporter"

    @property
    def log_path(self) -> Path:
        """Daemon log path (JSON Lines)."""
        return self.state_dir / "daemon.log"

    @property
    def label_prefix(self) -> LabelPrefix:
        """Fixed (job, hostgroup, instance) labels for every published gauge."""
        return LabelPrefix(
            job=JOB_NAME,
            hostgroup=self.exporter.hostgroup,
            instance=self.exporter.instance,
        )

    def with_overrides(
        self,
        *,
        port: int | None = None,
        hostgroup: str | None = None,
        instance: str | None = None,
    ) -> "Config":
        """Return a copy with command-line values applied.

        None means "not given" and keeps the loaded value, so flags and
        environment variables win over the config file, which wins over defaults.
        """
        overrides = {
            "port": port,
            "hostgroup": hostgroup,
            "instance": instance,
        }
        exporter = replace(
            self.exporter, **{k: v for k, v in overrides.items() if v is not None}
        )
        return replace(self, exporter=exporter)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("exporter", "sampling", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        for name in ("exporter", "sampling", "system"):
            if not isinstance(data.get(name, {}), Mapping):
                raise ValueError(f"[{name}] in {path} must be a table")

        return cls(
            exporter=_load_exporter_config(data.get("exporter", {})),
            sampling=_load_sampling_config(data.get("sampling", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _typed(data: dict, key: str, default: object, types: tuple[type, ...]) -> object:
    """Fetch key from a TOML table, raising ValueError if it has the wrong type."""
    value = data.get(key, default)
    # bool is an int subclass; only accept it where it is asked for
    if (isinstance(value, bool) and bool not in types) or not isinstance(value, types):
        expected = " or ".join(t.__name__ for t in types)
        raise ValueError(f"{key} must be {expected}, got {value!r}")
    return value


def _load_exporter_config(data: dict) -> ExporterConfig:
    """Load exporter config from TOML data."""
    d = ExporterConfig()
    port = int(_typed(data, "port", d.port, (int,)))
    if not 0 <= port <= 65535:
        raise ValueError(f"port must be between 0 and 65535, got {port}")

    return ExporterConfig(
        port=port,
        bind_address=str(_typed(data, "bind_address", d.bind_address, (str,))),
        hostgroup=str(_typed(data, "hostgroup", d.hostgroup, (str,))),
        instance=str(_typed(data, "instance", d.instance, (str,))),
    )


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data, using dataclass defaults for missing fields."""
    d = SamplingConfig()
    interval = float(_typed(data, "interval", d.interval, (int, float)))
    heartbeat_cycles = int(_typed(data, "heartbeat_cycles", d.heartbeat_cycles, (int,)))

    if interval <= 0:
        raise ValueError(f"interval must be > 0, got {interval}")
    if heartbeat_cycles < 1:
        raise ValueError(f"heartbeat_cycles must be >= 1, got {heartbeat_cycles}")

    return SamplingConfig(interval=interval, heartbeat_cycles=heartbeat_cycles)


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_to_file=bool(_typed(data, "log_to_file", d.log_to_file, (bool,))),
        log_max_bytes=int(_typed(data, "log_max_bytes", d.log_max_bytes, (int,))),
        log_backup_count=int(_typed(data, "log_backup_count", d.log_backup_count, (int,))),
    )

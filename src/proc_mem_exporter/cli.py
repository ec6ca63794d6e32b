"""CLI commands for proc-mem-exporter."""

from pathlib import Path

import click

UNIT_NAME = "proc-mem-exporter.service"


def _load_config(config_path: Path | None):
    from proc_mem_exporter.config import Config

    try:
        return Config.load(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@click.group(invoke_without_command=True)
@click.version_option(package_name="proc-mem-exporter")
@click.option(
    "--oneshot",
    is_flag=True,
    default=False,
    envvar="ONESHOT",
    help="Sample once, print the metrics to stdout and exit",
)
@click.option(
    "--port",
    "-p",
    type=click.IntRange(0, 65535),
    default=None,
    envvar="PORT",
    help="Port for the metrics endpoint (0 = pick a free port)",
)
@click.option(
    "--group",
    "hostgroup",
    default=None,
    envvar="GROUP",
    help="Value of the hostgroup label",
)
@click.option(
    "--instance",
    default=None,
    envvar="INSTANCE",
    help="Value of the instance label",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    envvar="PROC_MEM_EXPORTER_CONFIG",
    help="Config file (default ~/.config/proc-mem-exporter/config.toml)",
)
@click.pass_context
def main(
    ctx,
    oneshot: bool,
    port: int | None,
    hostgroup: str | None,
    instance: str | None,
    config_path: Path | None,
) -> None:
    """Export per-user process count, RSS and swap to Prometheus."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    # If a subcommand was invoked, let it handle things
    if ctx.invoked_subcommand is not None:
        return

    from proc_mem_exporter import logging as console

    config = _load_config(config_path).with_overrides(
        port=port, hostgroup=hostgroup, instance=instance
    )

    if oneshot:
        from proc_mem_exporter.daemon import run_oneshot

        console.configure(config, to_file=False)
        click.echo(run_oneshot(config).decode(), nl=False)
        return

    import asyncio

    from proc_mem_exporter.daemon import run_daemon

    asyncio.run(run_daemon(config))


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx) -> None:
    """Display current configuration."""
    config_path = ctx.obj.get("config_path")
    cfg = _load_config(config_path)
    path = config_path or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[exporter]")
    click.echo(f"  port = {cfg.exporter.port}")
    click.echo(f"  bind_address = {cfg.exporter.bind_address}")
    click.echo(f"  hostgroup = {cfg.exporter.hostgroup}")
    click.echo(f"  instance = {cfg.exporter.instance}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  interval = {cfg.sampling.interval}")
    click.echo(f"  heartbeat_cycles = {cfg.sampling.heartbeat_cycles}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  log_to_file = {cfg.system.log_to_file}")
    click.echo(f"  log_path = {cfg.log_path}")


@config.command("path")
@click.pass_context
def config_path_cmd(ctx) -> None:
    """Print the config file location."""
    from proc_mem_exporter.config import Config

    click.echo(ctx.obj.get("config_path") or Config().config_path)


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx, force: bool) -> None:
    """Write a config file with default values."""
    from proc_mem_exporter.config import Config

    cfg = Config()
    path = ctx.obj.get("config_path") or cfg.config_path
    if path.exists() and not force:
        click.echo(f"Config already exists at {path} (use --force to overwrite)", err=True)
        raise SystemExit(1)

    cfg.save(path)
    click.echo(f"Created default config at {path}")


def _render_unit(exec_path: str, port: int, hostgroup: str, instance: str) -> str:
    """Render the systemd unit for the daemon."""
    return f"""[Unit]
Description=Per-user process memory exporter for Prometheus
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
Environment=PORT={port}
Environment=GROUP={hostgroup}
Environment=INSTANCE={instance}
ExecStart={exec_path}
Restart=on-failure
RestartSec=5

[Install]
WantedBy=multi-user.target
"""


@main.command()
@click.option("--port", "-p", type=click.IntRange(1, 65535), required=True, help="Listen port")
@click.option("--group", "hostgroup", default="test", help="Value of the hostgroup label")
@click.option("--instance", default="test", help="Value of the instance label")
@click.option(
    "--unit-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("/etc/systemd/system"),
    help="Directory to write the unit file to",
)
@click.option("--force", is_flag=True, help="Overwrite an existing unit without prompting")
def install(port: int, hostgroup: str, instance: str, unit_dir: Path, force: bool) -> None:
    """Write a systemd unit that runs the exporter."""
    import shutil
    import sys

    unit_path = unit_dir / UNIT_NAME
    if unit_path.exists() and not force:
        if not click.confirm(f"{unit_path} exists. Overwrite?"):
            click.echo("Aborted.")
            return

    exec_path = shutil.which("proc-mem-exporter") or f"{sys.executable} -m proc_mem_exporter"

    try:
        unit_dir.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(_render_unit(exec_path, port, hostgroup, instance))
    except PermissionError:
        click.echo(f"Error: cannot write {unit_path} (try sudo)", err=True)
        raise SystemExit(1)

    click.echo(f"Wrote {unit_path}")
    click.echo("Enable it with:")
    click.echo("  systemctl daemon-reload")
    click.echo(f"  systemctl enable --now {UNIT_NAME}")


@main.command()
@click.option(
    "--unit-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("/etc/systemd/system"),
    help="Directory the unit file was written to",
)
def uninstall(unit_dir: Path) -> None:
    """Remove the systemd unit written by install."""
    unit_path = unit_dir / UNIT_NAME
    if not unit_path.exists():
        click.echo(f"No unit at {unit_path}")
        return

    try:
        unit_path.unlink()
    except PermissionError:
        click.echo(f"Error: cannot remove {unit_path} (try sudo)", err=True)
        raise SystemExit(1)

    click.echo(f"Removed {unit_path}")
    click.echo(f"Stop it with: systemctl disable --now {UNIT_NAME}")

import sys
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from shopsnap import config as config_module
from shopsnap.config import (
    DEFAULT_CONFIG,
    RESTORE_POLICIES,
    coerce_value,
    load_config,
    load_global_config,
    save_global_config,
    validate_config,
)
from shopsnap.env import load_env_file
from shopsnap.lifecycle import Lifecycle, OperationError, PreconditionError
from shopsnap.log import read_logs
from shopsnap.naming import parse_snapshot_name

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_OPERATION = 2

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


class ShopsnapGroup(click.Group):
    """click exits with 2 on usage errors; here 2 means a failed subvolume operation, so remap to 1."""

    def main(self, args=None, prog_name=None, complete_var=None, standalone_mode=True, **extra):
        if not standalone_mode:
            return super().main(args, prog_name, complete_var, standalone_mode=False, **extra)
        try:
            rv = super().main(args, prog_name, complete_var, standalone_mode=False, **extra)
        except click.UsageError as e:
            e.show()
            sys.exit(EXIT_USAGE)
        except click.ClickException as e:
            e.show()
            sys.exit(e.exit_code)
        except click.Abort:
            click.echo("Aborted!", err=True)
            sys.exit(EXIT_USAGE)
        sys.exit(rv if isinstance(rv, int) else EXIT_OK)


def _err_console():
    return Console(stderr=True, soft_wrap=True)


def _lifecycle(ctx):
    """Build a Lifecycle from ctx.obj. Tests inject backends, confirm and now through obj."""
    obj = ctx.obj
    return Lifecycle(
        obj["config"],
        volumes=obj.get("volumes"),
        containers=obj.get("containers"),
        console=Console(soft_wrap=True),
        confirm=obj.get("confirm"),
        now=obj.get("now"),
    )


def _run(operation):
    """Run a lifecycle call, mapping its errors onto exit codes."""
    try:
        return operation()
    except PreconditionError as e:
        _err_console().print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(EXIT_USAGE)
    except OperationError as e:
        _err_console().print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(EXIT_OPERATION)


@click.group(cls=ShopsnapGroup, context_settings=CONTEXT_SETTINGS)
@click.option("--snapshots-root", type=click.Path(file_okay=False, resolve_path=True), default=None,
              help="Directory holding snapshots (default: /srv/snapshots).")
@click.option("--trash-root", type=click.Path(file_okay=False, resolve_path=True), default=None,
              help="Directory holding retired subvolumes (default: /srv/trash).")
@click.option("--sudo/--no-sudo", "use_sudo", default=None, help="Run btrfs commands through sudo.")
@click.version_option(version="0.1.0")
@click.pass_context
def main(ctx, snapshots_root, trash_root, use_sudo):
    """shopsnap: BTRFS snapshot lifecycle for Docker-Compose shops."""
    load_env_file()
    obj = ctx.ensure_object(dict)
    try:
        obj["config"] = load_config({
            "snapshots_root": snapshots_root,
            "trash_root": trash_root,
            "use_sudo": use_sudo,
        })
    except ValueError as e:
        _err_console().print(f"[red]Configuration error: {escape(str(e))}[/red]")
        raise SystemExit(EXIT_USAGE)


@main.command(context_settings=CONTEXT_SETTINGS)
@click.argument("shop_dir", type=click.Path())
@click.argument("label", required=False)
@click.pass_context
def create(ctx, shop_dir, label):
    """Create a read-only snapshot of SHOP_DIR.

    Containers are stopped while the snapshot is taken if the shop has a
    compose file. The snapshot is named SHOP__YYYY-MM-DD-HHMMSS, with
    __LABEL appended (slugified) when LABEL is given.

    Example: shopsnap create /srv/sites/os24-sw64 "before backup to sw65"
    """
    lifecycle = _lifecycle(ctx)
    _run(lambda: lifecycle.create(shop_dir, label))


@main.command(context_settings=CONTEXT_SETTINGS)
@click.option("-d", "--delete-snapshot", is_flag=True, help="Delete the source snapshot after a successful restore.")
@click.option("--policy", type=click.Choice(RESTORE_POLICIES), default=None,
              help="trash: move the live subvolume to the trash root (default). "
                   "delete: delete it in place, with no way back if the restore fails.")
@click.argument("snapshot_path", type=click.Path())
@click.argument("shop_dir", type=click.Path())
@click.pass_context
def restore(ctx, delete_snapshot, policy, snapshot_path, shop_dir):
    """Restore SNAPSHOT_PATH into SHOP_DIR as a writable subvolume.

    Example: shopsnap restore -d /srv/snapshots/os24-sw64__2024-10-23-121033 /srv/sites/os24-sw64
    """
    lifecycle = _lifecycle(ctx)
    _run(lambda: lifecycle.restore(snapshot_path, shop_dir, delete_source=delete_snapshot, policy=policy))


@main.command("trash-clean", context_settings=CONTEXT_SETTINGS)
@click.option("--flat", is_flag=True, help="Only consider immediate child directories of the trash root.")
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without deleting anything.")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def trash_clean(ctx, flat, dry_run, assume_yes):
    """Permanently delete all subvolumes in the trash root."""
    lifecycle = _lifecycle(ctx)
    _run(lambda: lifecycle.clean_trash(flat=flat, dry_run=dry_run, assume_yes=assume_yes))


@main.command(context_settings=CONTEXT_SETTINGS)
@click.option("-n", "--count", type=click.IntRange(min=1), default=None,
              help="Number of oldest snapshots to delete (default: prune_count, 5).")
@click.option("--dry-run", is_flag=True, help="Only print the commands that would run.")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def prune(ctx, count, dry_run, assume_yes):
    """Delete the oldest snapshots, ordered by BTRFS subvolume id."""
    lifecycle = _lifecycle(ctx)
    _run(lambda: lifecycle.prune(count=count, dry_run=dry_run, assume_yes=assume_yes))


def _snapshots_sorted(snapshots_root, shop=None):
    """Return snapshot entries under snapshots_root oldest-first."""
    root = Path(snapshots_root)
    if not root.is_dir():
        return []
    result = []
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        parsed = parse_snapshot_name(entry.name) or {"shop": "", "created": None, "label": ""}
        if shop and parsed["shop"] != shop:
            continue
        result.append({"name": entry.name, **parsed})
    return sorted(result, key=lambda s: (s["created"] or datetime.min, s["name"]))


@main.command("list", context_settings=CONTEXT_SETTINGS)
@click.argument("shop", required=False)
@click.pass_context
def list_cmd(ctx, shop):
    """List snapshots, optionally only those of SHOP (a shop directory name or path)."""
    console = Console()
    shop_name = Path(shop).name if shop else None
    snapshot_list = _snapshots_sorted(ctx.obj["config"]["snapshots_root"], shop_name)

    if not snapshot_list:
        console.print("[dim]No snapshots found.[/dim]")
        return

    table = Table(title="Snapshots")
    table.add_column("Name", style="bold cyan")
    table.add_column("Shop")
    table.add_column("Created", style="dim")
    table.add_column("Label")

    for s in snapshot_list:
        created = s["created"].strftime("%Y-%m-%d %H:%M:%S") if s["created"] else ""
        table.add_row(s["name"], s["shop"], created, s["label"])

    console.print(table)


@main.command(context_settings=CONTEXT_SETTINGS)
@click.option("-n", "--limit", default=20, help="Number of log entries to show.")
@click.option("--event", type=click.Choice(["create", "restore", "trash-clean", "prune"]), default=None,
              help="Only show one kind of operation.")
def logs(limit, event):
    """Show the operation audit log."""
    console = Console()
    entries = read_logs(event)
    if not entries:
        console.print("[dim]No logs found.[/dim]")
        return

    table = Table(title="Operation Log")
    table.add_column("Time", style="dim")
    table.add_column("Event", style="bold")
    table.add_column("Target", style="cyan")
    table.add_column("Result", style="bold")

    for entry in entries[-limit:]:
        ts = entry.get("timestamp", "")
        if ts:
            try:
                ts = datetime.fromisoformat(ts).strftime("%m-%d %H:%M")
            except ValueError:
                pass
        result = entry.get("result", "")
        result_style = {
            "ok": "[green]ok[/green]",
            "failed": "[red]failed[/red]",
            "partial": "[yellow]partial[/yellow]",
        }.get(result, result)
        target = entry.get("snapshot") or entry.get("trash_root") or entry.get("snapshots_root", "")
        table.add_row(ts, entry.get("event", ""), target, result_style)

    console.print(table)


@main.group("config", invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.pass_context
def config_cmd(ctx):
    """Show the effective configuration."""
    if ctx.invoked_subcommand is not None:
        return
    console = Console()
    config = ctx.obj["config"]
    table = Table(title=f"Configuration ({config_module.GLOBAL_CONFIG_FILE})")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key in sorted(config):
        value = config[key]
        if isinstance(value, list):
            value = ", ".join(value)
        table.add_row(key, str(value))
    console.print(table)


@config_cmd.command("set", context_settings=CONTEXT_SETTINGS)
@click.argument("key", type=click.Choice(sorted(DEFAULT_CONFIG)))
@click.argument("value")
def config_set(key, value):
    """Save KEY=VALUE in the global config file.

    Examples:
        shopsnap config set prune_count 10
        shopsnap config set compose_files docker-compose.yaml,compose.yaml
    """
    try:
        update = {key: coerce_value(key, value)}
        validate_config({**DEFAULT_CONFIG, **load_global_config(), **update})
        save_global_config(update)
    except ValueError as e:
        _err_console().print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(EXIT_USAGE)
    click.echo(f"Saved {key} to {config_module.GLOBAL_CONFIG_FILE}")

"""Snapshot lifecycle operations for Docker-Compose shops on BTRFS.

Every operation is a linear sequence of volume and container commands:

    create       stop containers → read-only snapshot → start containers
    restore      stop containers → retire live subvolume → writable snapshot
                 → (delete source) → start containers
    clean_trash  list trash → confirm → delete each
    prune        list snapshots → oldest N by id → confirm → delete each

Failures follow three tiers. Missing inputs raise PreconditionError before
anything is touched. A failed snapshot/delete of the primary target raises
OperationError and stops right there, containers included. Container
commands, source-snapshot deletion and single batch items only warn.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from shopsnap.config import RESTORE_POLICIES
from shopsnap.containers import ContainerError, create_container_manager
from shopsnap.log import write_log
from shopsnap.naming import snapshot_name, trash_name
from shopsnap.volume import VolumeError, create_volume_manager

CONFIRM_TOKEN = "yes"


class PreconditionError(Exception):
    """A required path is missing or unusable. Nothing was changed."""


class OperationError(RuntimeError):
    """A subvolume operation on the primary target failed."""


@dataclass
class ItemResult:
    path: Path
    ok: bool
    error: Optional[str] = None

    def to_dict(self):
        return {"path": str(self.path), "ok": self.ok, "error": self.error}


@dataclass
class BatchSummary:
    candidates: list = field(default_factory=list)
    results: list = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    @property
    def succeeded(self):
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self):
        return sum(1 for r in self.results if not r.ok)

    @property
    def outcome(self):
        if not self.candidates:
            return "nothing-to-do"
        if self.cancelled:
            return "cancelled"
        if self.dry_run:
            return "dry-run"
        return "ok" if not self.failed else "partial"


def prompt_confirm(prompt):
    """Ask for the exact token 'yes'. End of input counts as no."""
    try:
        answer = click.prompt(f"{prompt} Type '{CONFIRM_TOKEN}' to confirm", default="", show_default=False)
    except click.Abort:
        return False
    return answer.strip() == CONFIRM_TOKEN


def _p(path):
    return escape(str(path))


class Lifecycle:
    """Runs lifecycle operations against injected volume and container backends.

    Backends default to the ones named in config; tests pass doubles.
    confirm(prompt) -> bool gates the irreversible batch operations and
    now() -> datetime supplies timestamps for snapshot and trash names.
    """

    def __init__(self, config, volumes=None, containers=None, console=None, confirm=None, now=None):
        self.config = config
        self.volumes = volumes or create_volume_manager(config)
        self.containers = containers or create_container_manager(config)
        self.console = console or Console(soft_wrap=True)
        self.confirm = confirm or prompt_confirm
        self.now = now or datetime.now

    @property
    def snapshots_root(self):
        return Path(self.config["snapshots_root"]).resolve()

    @property
    def trash_root(self):
        return Path(self.config["trash_root"]).resolve()

    # ── Container guard ──────────────────────────────────────────────────────

    def stop_containers(self, shop_dir):
        """Stop the shop's services if it has a compose file.

        Returns the manifest path (None when there is nothing to manage).
        Failing to stop only warns.
        """
        manifest = self.containers.find_manifest(shop_dir)
        if manifest is None:
            self.console.print(
                f"[dim]No compose file found in {_p(shop_dir)}, skipping container management[/dim]"
            )
            return None

        self.console.print(f"Found {_p(Path(manifest).name)}, will manage containers")
        self.console.print("[bold]Stopping containers...[/bold]")
        try:
            self.containers.stop(shop_dir)
        except ContainerError as e:
            self.console.print(f"[yellow]Warning: {_p(e)}, continuing anyway...[/yellow]")
        return manifest

    def start_containers(self, shop_dir, manifest):
        """Start the shop's services again. Returns False if starting failed."""
        if manifest is None:
            return True
        self.console.print("[bold]Starting containers...[/bold]")
        try:
            self.containers.start(shop_dir)
        except ContainerError as e:
            self.console.print(f"[yellow]Warning: {_p(e)}[/yellow]")
            return False
        return True

    # ── create ───────────────────────────────────────────────────────────────

    def create(self, shop_dir, label=None):
        """Take a read-only snapshot of shop_dir. Returns the snapshot path."""
        shop_dir = Path(shop_dir).resolve()
        if not shop_dir.is_dir():
            raise PreconditionError(f"Shop directory does not exist: {shop_dir}")

        name = snapshot_name(shop_dir, label, self.now())
        snapshot_path = self.snapshots_root / name
        try:
            self.snapshots_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PreconditionError(f"Could not create snapshots directory {self.snapshots_root}: {e}")
        if snapshot_path.exists():
            raise PreconditionError(f"Snapshot already exists: {snapshot_path}")

        manifest = self.stop_containers(shop_dir)

        self.console.print(f"[bold]Creating snapshot {_p(name)}...[/bold]")
        try:
            self.volumes.snapshot(shop_dir, snapshot_path, readonly=True)
        except VolumeError as e:
            write_log({"event": "create", "result": "failed", "shop": str(shop_dir),
                       "snapshot": str(snapshot_path), "error": str(e)})
            raise OperationError(f"Error creating snapshot: {e}") from e
        self.console.print(f"[green]Snapshot created successfully at {_p(snapshot_path)}[/green]")

        started = self.start_containers(shop_dir, manifest)

        write_log({"event": "create", "result": "ok", "shop": str(shop_dir),
                   "snapshot": str(snapshot_path), "containers_started": started})
        self.console.print(f"[bold green]Backup complete: {_p(name)}[/bold green]")
        return snapshot_path

    # ── restore ──────────────────────────────────────────────────────────────

    def restore(self, snapshot_path, shop_dir, delete_source=False, policy=None):
        """Replace shop_dir with a writable copy of snapshot_path.

        policy "trash" moves the live subvolume under the trash root first,
        so a failed restore loses nothing. policy "delete" deletes it in
        place; if the snapshot step then fails, shop_dir stays absent.

        Returns {"shop", "snapshot", "policy", "trash", "source_deleted", "containers_started"}.
        """
        policy = policy or self.config.get("restore_policy", "trash")
        if policy not in RESTORE_POLICIES:
            raise PreconditionError(f"Unknown restore policy: {policy!r}")

        snapshot_path = Path(snapshot_path).resolve()
        shop_dir = Path(shop_dir).resolve()
        if not snapshot_path.is_dir():
            raise PreconditionError(f"Snapshot path does not exist: {snapshot_path}")
        if not shop_dir.is_dir():
            raise PreconditionError(f"Shop directory does not exist: {shop_dir}")
        if snapshot_path == shop_dir:
            raise PreconditionError("Snapshot path and shop directory must be different")

        entry = {"event": "restore", "policy": policy, "shop": str(shop_dir), "snapshot": str(snapshot_path)}
        manifest = self.stop_containers(shop_dir)

        trash_path = None
        if policy == "trash":
            trash_path = self._move_to_trash(shop_dir)
            entry["trash"] = str(trash_path)
        else:
            self.console.print(f"[bold]Deleting existing subvolume {_p(shop_dir)}...[/bold]")
            try:
                self.volumes.delete(shop_dir)
            except VolumeError as e:
                write_log({**entry, "result": "failed", "error": str(e)})
                raise OperationError(f"Error deleting existing subvolume: {e}") from e

        self.console.print(f"[bold]Restoring snapshot from {_p(snapshot_path)} to {_p(shop_dir)}[/bold]")
        try:
            self.volumes.snapshot(snapshot_path, shop_dir, readonly=False)
        except VolumeError as e:
            write_log({**entry, "result": "failed", "error": str(e)})
            if trash_path is not None:
                raise OperationError(
                    f"Error creating writable snapshot: {e}. "
                    f"Previous contents are kept in {trash_path}"
                ) from e
            raise OperationError(
                f"Error creating writable snapshot: {e}. {shop_dir} no longer exists"
            ) from e
        self.console.print("[green]Snapshot restored successfully[/green]")

        source_deleted = False
        if delete_source:
            self.console.print("Deleting source snapshot...")
            try:
                self.volumes.delete(snapshot_path)
                source_deleted = True
            except VolumeError as e:
                self.console.print(
                    f"[yellow]Warning: Failed to delete source snapshot {_p(snapshot_path)}: {_p(e)}[/yellow]"
                )

        started = self.start_containers(shop_dir, manifest)

        write_log({**entry, "result": "ok", "source_deleted": source_deleted, "containers_started": started})
        self.console.print("[bold green]Restore complete[/bold green]")
        return {
            "shop": shop_dir,
            "snapshot": snapshot_path,
            "policy": policy,
            "trash": trash_path,
            "source_deleted": source_deleted,
            "containers_started": started,
        }

    def _move_to_trash(self, shop_dir):
        trash_path = self.trash_root / trash_name(shop_dir, self.now())
        self.console.print("[bold]Moving existing directory to trash...[/bold]")
        try:
            self.trash_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PreconditionError(f"Could not create trash directory {self.trash_root}: {e}")
        if trash_path.exists():
            raise PreconditionError(f"Trash entry already exists: {trash_path}")
        try:
            shop_dir.rename(trash_path)
        except OSError as e:
            raise PreconditionError(f"Could not move existing directory to trash: {e}")
        self.console.print(f"Moved existing directory to: {_p(trash_path)}")
        return trash_path

    # ── trash clean ──────────────────────────────────────────────────────────

    def trash_candidates(self, flat=False):
        if flat:
            return sorted(p for p in self.trash_root.iterdir() if p.is_dir())
        try:
            subvolumes = self.volumes.list(self.trash_root)
        except VolumeError as e:
            raise PreconditionError(f"Could not list subvolumes in {self.trash_root}: {e}")
        # Nested subvolumes go first; btrfs refuses to delete a subvolume that still contains one
        return sorted((s.path for s in subvolumes), key=lambda p: (-len(p.parts), str(p)))

    def clean_trash(self, flat=False, dry_run=False, assume_yes=False):
        """Delete every subvolume under the trash root. Returns a BatchSummary."""
        if not self.trash_root.is_dir():
            raise PreconditionError(f"Trash directory does not exist: {self.trash_root}")

        self.console.print(f"[bold]Scanning for subvolumes in {_p(self.trash_root)}...[/bold]")
        summary = BatchSummary(candidates=self.trash_candidates(flat), dry_run=dry_run)
        if not summary.candidates:
            self.console.print(f"[dim]No subvolumes found in {_p(self.trash_root)}. Nothing to do.[/dim]")
            write_log({"event": "trash-clean", "result": summary.outcome, "trash_root": str(self.trash_root)})
            return summary

        self.console.print(f"[bold]About to delete {len(summary.candidates)} subvolume(s):[/bold]")
        for path in summary.candidates:
            self.console.print(f"  [red]{_p(path)}[/red]")

        if dry_run:
            self.console.print("[yellow]DRY RUN MODE: No changes will be made.[/yellow]")
            for path in summary.candidates:
                self.console.print(f"  Would delete with: btrfs subvolume delete {_p(path)}")
        elif not self._confirmed(assume_yes, "Delete these subvolumes?"):
            summary.cancelled = True
            self.console.print("[dim]Operation cancelled.[/dim]")
        else:
            self.console.print("[bold]Deleting subvolumes...[/bold]")
            for path in summary.candidates:
                self.console.print(f"Deleting: {_p(path)}")
                summary.results.append(self._delete_item(path))
            self._print_summary(summary)
            self.console.print("[bold]Trash cleanup complete[/bold]")

        write_log({"event": "trash-clean", "result": summary.outcome, "trash_root": str(self.trash_root),
                   "items": [r.to_dict() for r in summary.results]})
        return summary

    # ── prune ────────────────────────────────────────────────────────────────

    def oldest_snapshots(self, count):
        """All snapshots under the snapshots root sorted by id, and the first `count` of them."""
        try:
            snapshots = sorted(self.volumes.list(self.snapshots_root), key=lambda s: s.id)
        except VolumeError as e:
            raise PreconditionError(f"Could not list snapshots in {self.snapshots_root}: {e}")
        return snapshots, snapshots[:count]

    def prune(self, count=None, dry_run=False, assume_yes=False):
        """Delete the `count` oldest snapshots (lowest subvolume id first). Returns a BatchSummary."""
        count = self.config.get("prune_count", 5) if count is None else count
        if count < 1:
            raise PreconditionError(f"Number of snapshots to delete must be at least 1, got {count}")
        if not self.snapshots_root.is_dir():
            raise PreconditionError(f"Snapshots directory does not exist: {self.snapshots_root}")

        self.console.print("[bold]Listing all snapshots, sorted by ID (oldest first)...[/bold]")
        snapshots, selected = self.oldest_snapshots(count)
        self.console.print(f"Total snapshots found: {len(snapshots)}")
        summary = BatchSummary(candidates=[s.path for s in selected], dry_run=dry_run)
        if not selected:
            self.console.print("[dim]No snapshots found. Nothing to do.[/dim]")
            write_log({"event": "prune", "result": summary.outcome, "snapshots_root": str(self.snapshots_root)})
            return summary

        self.console.print(f"[bold]The {len(selected)} oldest snapshot(s) will be made writeable and deleted:[/bold]")
        for snap in selected:
            self.console.print(f"  [cyan]{snap.id}[/cyan]  [red]{_p(snap.path)}[/red]")

        if dry_run:
            self.console.print("[yellow]DRY RUN MODE: No changes will be made.[/yellow]")
            for snap in selected:
                self.console.print(f"Processing snapshot ID {snap.id}: {_p(snap.path)}")
                self.console.print(f"  Would make the snapshot writeable with: btrfs property set {_p(snap.path)} ro false")
                self.console.print(f"  Would delete the snapshot with: btrfs subvolume delete {_p(snap.path)}")
        elif not self._confirmed(assume_yes, "[red]WARNING: This operation cannot be undone![/red]"):
            summary.cancelled = True
            self.console.print("[dim]Operation cancelled.[/dim]")
        else:
            for snap in selected:
                self.console.print(f"[bold]Processing snapshot ID {snap.id}: {_p(snap.path)}[/bold]")
                summary.results.append(self._prune_item(snap.path))
            self._print_summary(summary)

        write_log({"event": "prune", "result": summary.outcome, "snapshots_root": str(self.snapshots_root),
                   "count": count, "items": [r.to_dict() for r in summary.results]})
        return summary

    def _prune_item(self, path):
        # Read-only snapshots can be deleted directly; a failed flip is reported and deletion still attempted
        errors = []
        self.console.print("  Making snapshot writeable...")
        try:
            self.volumes.set_readonly(path, False)
            self.console.print("  [green]Successfully made snapshot writeable[/green]")
        except VolumeError as e:
            errors.append(str(e))
            self.console.print(f"  [yellow]Warning: Failed to make snapshot writeable: {_p(e)}[/yellow]")

        self.console.print("  Deleting snapshot...")
        try:
            self.volumes.delete(path)
        except VolumeError as e:
            errors.append(str(e))
            self.console.print(f"  [red]Failed to delete snapshot: {_p(e)}[/red]")
            return ItemResult(path, ok=False, error="; ".join(errors))
        self.console.print("  [green]Successfully deleted snapshot[/green]")
        return ItemResult(path, ok=True, error="; ".join(errors) or None)

    # ── helpers ──────────────────────────────────────────────────────────────

    def _delete_item(self, path):
        try:
            self.volumes.delete(path)
        except VolumeError as e:
            self.console.print(f"[yellow]Warning: Failed to delete subvolume {_p(path)}: {_p(e)}[/yellow]")
            return ItemResult(path, ok=False, error=str(e))
        return ItemResult(path, ok=True)

    def _confirmed(self, assume_yes, warning):
        if assume_yes:
            return True
        self.console.print(f"\n{warning}")
        return bool(self.confirm("Are you sure?"))

    def _print_summary(self, summary):
        style = "green" if not summary.failed else "yellow"
        self.console.print(f"[{style}]{summary.succeeded} succeeded, {summary.failed} failed[/{style}]")
        for result in summary.results:
            if not result.ok:
                self.console.print(f"  [red]failed[/red] {_p(result.path)}: {_p(result.error)}")

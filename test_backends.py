import subprocess
from pathlib import Path

import pytest

from shopsnap.containers import ComposeContainerManager, ContainerError, create_container_manager
from shopsnap.volume import BtrfsVolumeManager, Subvolume, VolumeError, create_volume_manager
from shopsnap.volume.btrfs import parse_subvolume_list

LISTING = """\
ID 256 gen 1201 top level 5 path sites/os24-sw64
ID 261 gen 1180 top level 5 path snapshots/os24-sw64__2024-10-23-121033
ID 258 gen 1002 top level 5 path snapshots/os24-sw64__2024-10-20-080000__before update
ID 270 gen 1190 top level 5 path trash/os24-sw65__2024-10-22-090000
ID 271 gen 1191 top level 270 path trash/os24-sw65__2024-10-22-090000/volumes/db
ID 272 gen 1192 top level 5 path snapshots-old/foo
"""


class Recorder:
    """Stands in for subprocess.run; records commands and replays canned results."""

    def __init__(self, returncode=0, stdout="", stderr=""):
        self.commands = []
        self.kwargs = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        self.kwargs.append(kwargs)
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def run(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(subprocess, "run", recorder)
    return recorder


# ── btrfs ─────────────────────────────────────────────────────────────────────

def test_parse_subvolume_list():
    subvolumes = parse_subvolume_list(LISTING, "/srv")

    assert subvolumes[0] == Subvolume(id=256, path=Path("/srv/sites/os24-sw64"), gen=1201, top_level=5)
    assert subvolumes[2].path == Path("/srv/snapshots/os24-sw64__2024-10-20-080000__before update")
    assert [s.id for s in subvolumes] == [256, 261, 258, 270, 271, 272]


def test_parse_subvolume_list_skips_noise():
    assert parse_subvolume_list("WARNING: something\n\nID x gen y\n", "/srv") == []


def test_snapshot_commands(run):
    volumes = BtrfsVolumeManager("/srv")
    volumes.snapshot("/srv/sites/a", "/srv/snapshots/a__x", readonly=True)
    volumes.snapshot("/srv/snapshots/a__x", "/srv/sites/a")

    assert run.commands == [
        ["btrfs", "subvolume", "snapshot", "-r", "/srv/sites/a", "/srv/snapshots/a__x"],
        ["btrfs", "subvolume", "snapshot", "/srv/snapshots/a__x", "/srv/sites/a"],
    ]


def test_delete_and_property_commands_with_sudo(run):
    volumes = BtrfsVolumeManager("/srv", use_sudo=True)
    volumes.set_readonly("/srv/snapshots/a__x", False)
    volumes.delete("/srv/snapshots/a__x")

    assert run.commands == [
        ["sudo", "btrfs", "property", "set", "/srv/snapshots/a__x", "ro", "false"],
        ["sudo", "btrfs", "subvolume", "delete", "/srv/snapshots/a__x"],
    ]


def test_list_keeps_only_entries_below_root(run):
    run.stdout = LISTING
    volumes = BtrfsVolumeManager("/srv")

    snapshots = volumes.list("/srv/snapshots")
    trash = volumes.list(Path("/srv/trash"))

    assert run.commands[0] == ["btrfs", "subvolume", "list", "/srv/snapshots"]
    assert [s.id for s in snapshots] == [261, 258]
    assert [s.id for s in trash] == [270, 271]


def test_list_resolves_relative_root(run, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    run.stdout = "ID 300 gen 1 top level 5 path snapshots/a__2024-10-01-000000\n"

    snapshots = BtrfsVolumeManager(".").list("snapshots")

    assert run.commands[0] == ["btrfs", "subvolume", "list", str(tmp_path / "snapshots")]
    assert [(s.id, s.path) for s in snapshots] == [(300, tmp_path / "snapshots" / "a__2024-10-01-000000")]


def test_list_follows_symlinked_root(run, tmp_path):
    (tmp_path / "trash").mkdir()
    (tmp_path / "trash-link").symlink_to(tmp_path / "trash")
    run.stdout = "ID 301 gen 1 top level 5 path trash/os24-sw64__2024-10-01-000000\n"

    trash = BtrfsVolumeManager(tmp_path).list(tmp_path / "trash-link")

    assert [s.id for s in trash] == [301]


def test_failed_command_raises_volume_error(run):
    run.returncode = 1
    run.stderr = "ERROR: Could not destroy subvolume/snapshot: Directory not empty\n"

    with pytest.raises(VolumeError) as excinfo:
        BtrfsVolumeManager().delete("/srv/trash/a")

    assert "Directory not empty" in str(excinfo.value)
    assert excinfo.value.command == ["btrfs", "subvolume", "delete", "/srv/trash/a"]


def test_missing_btrfs_binary(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])
    monkeypatch.setattr(subprocess, "run", missing)

    with pytest.raises(VolumeError, match="not found"):
        BtrfsVolumeManager().list("/srv/snapshots")


def test_create_volume_manager():
    volumes = create_volume_manager({"filesystem_root": "/data", "use_sudo": True})
    assert isinstance(volumes, BtrfsVolumeManager)
    assert volumes.filesystem_root == Path("/data")
    assert volumes.use_sudo
    with pytest.raises(ValueError):
        create_volume_manager({"volume_backend": "zfs"})


# ── docker compose ────────────────────────────────────────────────────────────

def test_find_manifest_prefers_configured_order(tmp_path):
    (tmp_path / "compose.yaml").write_text("")
    (tmp_path / "docker-compose.yaml").write_text("")
    manager = ComposeContainerManager()

    assert manager.find_manifest(tmp_path) == tmp_path / "docker-compose.yaml"
    assert ComposeContainerManager(["compose.yaml"]).find_manifest(tmp_path) == tmp_path / "compose.yaml"
    assert manager.find_manifest(tmp_path / "missing") is None


def test_compose_stop_and_start(run, tmp_path):
    (tmp_path / "docker-compose.yaml").write_text("")
    manager = ComposeContainerManager()

    manager.stop(tmp_path)
    manager.start(tmp_path)

    assert run.commands == [
        ["docker", "compose", "-f", "docker-compose.yaml", "down"],
        ["docker", "compose", "-f", "docker-compose.yaml", "up", "-d"],
    ]
    assert all(kw["cwd"] == str(tmp_path) for kw in run.kwargs)


def test_compose_failure_raises_container_error(run, tmp_path):
    (tmp_path / "compose.yml").write_text("")
    run.returncode = 1
    run.stderr = "Cannot connect to the Docker daemon"

    with pytest.raises(ContainerError, match="Cannot connect"):
        ComposeContainerManager().stop(tmp_path)


def test_compose_without_manifest(run, tmp_path):
    with pytest.raises(ContainerError, match="no compose file"):
        ComposeContainerManager().start(tmp_path)
    assert run.commands == []


def test_create_container_manager():
    manager = create_container_manager({"compose_files": ["compose.yaml"]})
    assert manager.compose_files == ("compose.yaml",)
    with pytest.raises(ValueError):
        create_container_manager({"container_backend": "podman"})

"""Shared test doubles.

FakeVolumeManager treats plain directories under tmp_path as subvolumes:
snapshots are directory copies, ids are handed out in creation order, and
any operation can be made to fail for a given path.
"""

import shutil
from datetime import datetime
from pathlib import Path

import pytest
from rich.console import Console

from shopsnap import config as config_module
from shopsnap import env as env_module
from shopsnap import log as log_module
from shopsnap.containers import ContainerError, ContainerManager
from shopsnap.lifecycle import Lifecycle
from shopsnap.volume import Subvolume, VolumeError, VolumeManager

FIXED_NOW = datetime(2024, 10, 23, 12, 10, 33)


class FakeVolumeManager(VolumeManager):

    def __init__(self):
        self.subvolumes = {}  # path -> {"id", "readonly"}
        self.calls = []
        self.failures = set()  # (operation, path)
        self._next_id = 256

    def register(self, path, readonly=False):
        """Mark an existing directory as a subvolume."""
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        self.subvolumes[path] = {"id": self._next_id, "readonly": readonly}
        self._next_id += 1
        return path

    def fail(self, operation, path):
        self.failures.add((operation, Path(path)))

    def _check(self, operation, path):
        self.calls.append((operation, Path(path)))
        if (operation, Path(path)) in self.failures:
            raise VolumeError(f"{operation} of {path} failed", stderr="ERROR: simulated failure")

    def snapshot(self, source, dest, readonly=False):
        self._check("snapshot", dest)
        source, dest = Path(source), Path(dest)
        if dest.exists():
            raise VolumeError(f"target {dest} exists")
        shutil.copytree(source, dest, symlinks=True)
        self.register(dest, readonly=readonly)

    def delete(self, path):
        self._check("delete", path)
        path = Path(path)
        if not path.exists():
            raise VolumeError(f"cannot delete {path}: no such subvolume")
        shutil.rmtree(path)
        self.subvolumes.pop(path, None)

    def set_readonly(self, path, readonly):
        self._check("set_readonly", path)
        self.subvolumes[Path(path)]["readonly"] = readonly

    def list(self, root):
        self._check("list", root)
        root = Path(root)
        return [
            Subvolume(id=info["id"], path=path)
            for path, info in self.subvolumes.items()
            if root in path.parents and path.exists()
        ]

    def is_readonly(self, path):
        return self.subvolumes[Path(path)]["readonly"]

    def mutations(self):
        return [c for c in self.calls if c[0] != "list"]


class FakeContainerManager(ContainerManager):

    def __init__(self, fail_stop=False, fail_start=False):
        self.calls = []
        self.fail_stop = fail_stop
        self.fail_start = fail_start

    def find_manifest(self, shop_dir):
        manifest = Path(shop_dir) / "docker-compose.yaml"
        return manifest if manifest.is_file() else None

    def stop(self, shop_dir):
        self.calls.append(("stop", Path(shop_dir)))
        if self.fail_stop:
            raise ContainerError("Stopping containers failed", stderr="daemon not running")

    def start(self, shop_dir):
        self.calls.append(("start", Path(shop_dir)))
        if self.fail_start:
            raise ContainerError("Starting containers failed", stderr="daemon not running")


class Answers:
    """Canned confirm() responses; records every prompt."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else False


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "shopsnap-home"
    monkeypatch.setattr(config_module, "GLOBAL_CONFIG_FILE", home / "config.json")
    monkeypatch.setattr(env_module, "ENV_FILE", home / "env")
    monkeypatch.setattr(log_module, "LOGS_FILE", home / "logs.jsonl")
    # setenv first so teardown also removes anything a test exported through the env file
    for var in list(config_module.ENV_OVERRIDES):
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    return home


@pytest.fixture
def srv(tmp_path):
    root = tmp_path / "srv"
    (root / "sites").mkdir(parents=True)
    return root


@pytest.fixture
def config(srv):
    return {
        **config_module.DEFAULT_CONFIG,
        "snapshots_root": str(srv / "snapshots"),
        "trash_root": str(srv / "trash"),
        "filesystem_root": str(srv),
    }


@pytest.fixture
def volumes():
    return FakeVolumeManager()


@pytest.fixture
def containers():
    return FakeContainerManager()


@pytest.fixture
def shop(srv, volumes):
    """A shop subvolume with a compose file and some data."""
    shop_dir = volumes.register(srv / "sites" / "os24-sw64")
    (shop_dir / "docker-compose.yaml").write_text("services: {}\n")
    (shop_dir / "data.txt").write_text("live data\n")
    return shop_dir


@pytest.fixture
def make_lifecycle(config, volumes, containers):
    def _make(confirm=None, now=FIXED_NOW):
        return Lifecycle(
            config,
            volumes=volumes,
            containers=containers,
            console=Console(soft_wrap=True, width=200),
            confirm=confirm or Answers(),
            now=lambda: now,
        )
    return _make

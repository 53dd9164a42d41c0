import re
import subprocess
from pathlib import Path
from shopsnap.volume.base import Subvolume, VolumeError, VolumeManager

# One line of `btrfs subvolume list`, e.g.
#   ID 259 gen 1042 top level 5 path snapshots/os24-sw64__2024-10-23-121033
_LIST_LINE = re.compile(r"^ID (\d+) gen (\d+) top level (\d+) path (.+)$")


def parse_subvolume_list(output, filesystem_root="/"):
    """Parse `btrfs subvolume list` output into Subvolume entries.

    Paths in the listing are relative to the filesystem top level, so they
    are joined onto filesystem_root (the top level's mount point).
    Lines that don't look like subvolume entries are skipped.
    """
    base = Path(filesystem_root)
    subvolumes = []
    for line in output.splitlines():
        match = _LIST_LINE.match(line.strip())
        if not match:
            continue
        subvol_id, gen, top_level, rel_path = match.groups()
        subvolumes.append(Subvolume(
            id=int(subvol_id),
            path=base / rel_path.strip(),
            gen=int(gen),
            top_level=int(top_level),
        ))
    return subvolumes


def _is_below(path, root):
    return path != root and root in path.parents


class BtrfsVolumeManager(VolumeManager):
    """Volume backend that shells out to btrfs-progs."""

    def __init__(self, filesystem_root="/", use_sudo=False):
        self.filesystem_root = Path(filesystem_root).resolve()
        self.use_sudo = use_sudo

    def _run(self, args, action):
        cmd = ["btrfs", *args]
        if self.use_sudo:
            cmd = ["sudo", *cmd]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            raise VolumeError(f"{action} failed: {cmd[0]} not found", command=cmd)
        if result.returncode != 0:
            raise VolumeError(f"{action} failed", command=cmd, stderr=result.stderr or result.stdout)
        return result.stdout

    def snapshot(self, source, dest, readonly=False):
        args = ["subvolume", "snapshot"]
        if readonly:
            args.append("-r")
        self._run(args + [str(source), str(dest)], f"Snapshot of {source}")

    def delete(self, path):
        self._run(["subvolume", "delete", str(path)], f"Delete of {path}")

    def set_readonly(self, path, readonly):
        value = "true" if readonly else "false"
        self._run(["property", "set", str(path), "ro", value], f"Setting ro={value} on {path}")

    def list(self, root):
        root = Path(root).resolve()
        output = self._run(["subvolume", "list", str(root)], f"Listing subvolumes under {root}")
        return [s for s in parse_subvolume_list(output, self.filesystem_root) if _is_below(s.path, root)]

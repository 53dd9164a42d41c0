import json
import os
from pathlib import Path

SHOPSNAP_HOME = Path(os.environ.get("SHOPSNAP_HOME") or Path.home() / ".shopsnap")
GLOBAL_CONFIG_FILE = SHOPSNAP_HOME / "config.json"

RESTORE_POLICIES = ("trash", "delete")
VOLUME_BACKENDS = ("btrfs",)
CONTAINER_BACKENDS = ("compose",)

DEFAULT_CONFIG = {
    "snapshots_root": "/srv/snapshots",
    "trash_root": "/srv/trash",
    # Mount point of the BTRFS top level; `btrfs subvolume list` paths are relative to it
    "filesystem_root": "/srv",
    "prune_count": 5,
    "restore_policy": "trash",
    "compose_files": ["docker-compose.yaml", "docker-compose.yml", "compose.yaml", "compose.yml"],
    "use_sudo": False,
    "volume_backend": "btrfs",
    "container_backend": "compose",
}

# Environment variable -> (config key, parser)
ENV_OVERRIDES = {
    "SHOPSNAP_SNAPSHOTS_ROOT": ("snapshots_root", str),
    "SHOPSNAP_TRASH_ROOT": ("trash_root", str),
    "SHOPSNAP_FILESYSTEM_ROOT": ("filesystem_root", str),
    "SHOPSNAP_PRUNE_COUNT": ("prune_count", int),
    "SHOPSNAP_RESTORE_POLICY": ("restore_policy", str),
    "SHOPSNAP_SUDO": ("use_sudo", lambda v: parse_bool(v)),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def parse_bool(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def load_global_config():
    """Load $SHOPSNAP_HOME/config.json. Missing file means no overrides."""
    if not GLOBAL_CONFIG_FILE.exists():
        return {}
    try:
        data = json.loads(GLOBAL_CONFIG_FILE.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {GLOBAL_CONFIG_FILE}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"{GLOBAL_CONFIG_FILE} must contain a JSON object, got {type(data).__name__}")
    return data


def save_global_config(updates):
    """Merge updates into $SHOPSNAP_HOME/config.json."""
    existing = load_global_config()
    existing.update(updates)
    GLOBAL_CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    GLOBAL_CONFIG_FILE.write_text(json.dumps(existing, indent=2) + "\n")


def _env_overrides(environ):
    overrides = {}
    for var, (key, parse) in ENV_OVERRIDES.items():
        if var not in environ:
            continue
        try:
            overrides[key] = parse(environ[var])
        except ValueError as e:
            raise ValueError(f"Invalid value for {var}: {e}")
    return overrides


def validate_config(config):
    count = config.get("prune_count")
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValueError(f"prune_count must be a positive integer, got {count!r}")
    if config.get("restore_policy") not in RESTORE_POLICIES:
        raise ValueError(
            f"restore_policy must be one of {', '.join(RESTORE_POLICIES)}, "
            f"got {config.get('restore_policy')!r}"
        )
    compose_files = config.get("compose_files")
    if not isinstance(compose_files, list) or not compose_files:
        raise ValueError("compose_files must be a non-empty list of file names")
    if config.get("volume_backend") not in VOLUME_BACKENDS:
        raise ValueError(f"Unknown volume backend: {config.get('volume_backend')!r}. Use {', '.join(VOLUME_BACKENDS)}.")
    if config.get("container_backend") not in CONTAINER_BACKENDS:
        raise ValueError(
            f"Unknown container backend: {config.get('container_backend')!r}. Use {', '.join(CONTAINER_BACKENDS)}."
        )
    return config


def load_config(overrides=None, environ=None):
    # Merge order: defaults → global config → environment → CLI overrides
    environ = os.environ if environ is None else environ
    config = {**DEFAULT_CONFIG, **load_global_config()}
    config.update(_env_overrides(environ))
    config.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return validate_config(config)


def coerce_value(key, raw):
    """Convert a string from `shopsnap config set` to the type of the default."""
    if key not in DEFAULT_CONFIG:
        raise ValueError(f"Unknown config key: {key!r}. Known keys: {', '.join(sorted(DEFAULT_CONFIG))}")
    default = DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        return parse_bool(raw)
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {raw!r}")
    if isinstance(default, list):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw

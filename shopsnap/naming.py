"""Snapshot naming: <shop>__<YYYY-MM-DD-HHMMSS>[__<slug>]."""

import re
import unicodedata
from datetime import datetime
from pathlib import Path

SEPARATOR = "__"
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")
_NAME = re.compile(r"^(?P<shop>.+?)__(?P<ts>\d{4}-\d{2}-\d{2}-\d{6})(?:__(?P<slug>.+))?$")


def slugify(text):
    """Reduce free text to lowercase alphanumerics joined by single hyphens.

    Accented letters are transliterated to their ASCII base letter; any
    other non-ASCII character is dropped.

        >>> slugify("Before Backup to SW65!")
        'before-backup-to-sw65'
    """
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("-", ascii_text).strip("-").lower()


def timestamp(now=None):
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def snapshot_name(shop_dir, label=None, now=None):
    """Name for a new snapshot of shop_dir taken at `now`.

    The label suffix is only added when the label slugifies to something.
    """
    name = f"{Path(shop_dir).name}{SEPARATOR}{timestamp(now)}"
    slug = slugify(label) if label else ""
    if slug:
        name = f"{name}{SEPARATOR}{slug}"
    return name


def trash_name(shop_dir, now=None):
    return f"{Path(shop_dir).name}{SEPARATOR}{timestamp(now)}"


def parse_snapshot_name(name):
    """Split a snapshot name into {"shop", "created", "label"}.

    Returns None when the name doesn't follow the naming scheme.
    """
    match = _NAME.match(name)
    if not match:
        return None
    try:
        created = datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return {"shop": match.group("shop"), "created": created, "label": match.group("slug") or ""}

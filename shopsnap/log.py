"""Operation audit logging.

Appends structured JSON entries to $SHOPSNAP_HOME/logs.jsonl.
Each entry records one lifecycle operation (create, restore, trash-clean,
prune) with timestamp, result, and the paths involved.
"""

import json
from datetime import datetime

from shopsnap.config import SHOPSNAP_HOME

LOGS_FILE = SHOPSNAP_HOME / "logs.jsonl"


def write_log(entry):
    """Append an audit log entry. Failing to write never fails the operation."""
    entry["timestamp"] = datetime.now().isoformat()
    try:
        LOGS_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(LOGS_FILE, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError:
        return False
    return True


def read_logs(event=None):
    """Return logged entries oldest-first, skipping corrupt lines."""
    if not LOGS_FILE.exists():
        return []

    entries = []
    for line in LOGS_FILE.read_text().splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if event and entry.get("event") != event:
            continue
        entries.append(entry)
    return entries

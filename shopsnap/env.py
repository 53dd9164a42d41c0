import os
from dotenv import dotenv_values

from shopsnap.config import SHOPSNAP_HOME

ENV_FILE = SHOPSNAP_HOME / "env"


def load_env_file(path=None):
    """Export settings from $SHOPSNAP_HOME/env into os.environ.

    The file uses dotenv syntax (KEY=VALUE, # comments), typically holding
    SHOPSNAP_* overrides for a host so cron jobs don't have to export them.
    Variables already present in the environment win.
    """
    env_file = path or ENV_FILE
    if not env_file.exists():
        return {}

    values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
    for key, value in values.items():
        if key not in os.environ:
            os.environ[key] = value
    return values

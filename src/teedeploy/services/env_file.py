"""Environment file parsing for releases."""

from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import dotenv_values

from teedeploy.constants import DROPPED_ENV_KEYS, MACHINE_TYPE_ENV_KEY, PUBLIC_ENV_SUFFIX
from teedeploy.errors import ConfigError


def load_env_file(path: Optional[str]) -> Dict[str, str]:
    if not path:
        return {}

    env_path = Path(path)
    if not env_path.is_file():
        raise ConfigError(f"Env file not found: {path}")

    values = dotenv_values(env_path)
    return {key: value for key, value in values.items() if value is not None and key not in DROPPED_ENV_KEYS}


def split_env(env: Dict[str, str], instance_type: Optional[str] = None) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Splits variables into (public, private) maps; ``*_PUBLIC`` keys are public."""
    public_env: Dict[str, str] = {}
    private_env: Dict[str, str] = {}
    for key, value in env.items():
        if key.endswith(PUBLIC_ENV_SUFFIX):
            public_env[key] = value
        else:
            private_env[key] = value

    if instance_type:
        public_env[MACHINE_TYPE_ENV_KEY] = instance_type

    return public_env, private_env

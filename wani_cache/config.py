"""Where the cache lives and which token to use.

The config file is line oriented, one ``key: value`` per line::

    auth: 01234567-89ab-cdef-0123-456789abcdef
    timeout: 20

Unknown keys and malformed lines are ignored.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from .client import API_BASE, DEFAULT_TIMEOUT
from .db import DEFAULT_DATA_DIR, default_db_path
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = os.path.join(os.path.expanduser("~"), ".config", "wani", ".wani.conf")
TOKEN_ENV = "WANIKANI_API_TOKEN"


@dataclass
class WaniConfig:
    auth: Optional[str]
    data_dir: str
    config_file: str
    db_path: str
    api_base: str = API_BASE
    timeout: float = DEFAULT_TIMEOUT

    def require_auth(self) -> str:
        if not self.auth:
            raise ConfigError(
                f"Need to specify a WaniKani access token (--auth, ${TOKEN_ENV}, or 'auth:' in {self.config_file}). "
                "See: https://www.wanikani.com/settings/personal_access_tokens"
            )
        return self.auth


def read_config_file(path: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                key, sep, value = line.strip().partition(":")
                if not sep or not key.strip() or not value.strip():
                    continue
                values[key.strip()] = value.strip().split()[0]
    except FileNotFoundError:
        logger.debug("No config file at %s", path)
    except OSError as e:
        logger.warning("Error reading config at %s: %s", path, e)
    return values


def load_config(auth: Optional[str] = None, data_dir: Optional[str] = None,
                config_file: Optional[str] = None) -> WaniConfig:
    """Resolve settings: explicit arguments, then environment, then the config file."""
    config_file = config_file or DEFAULT_CONFIG_FILE
    values = read_config_file(config_file)
    data_dir = data_dir or os.environ.get("WANI_DATA_DIR") or DEFAULT_DATA_DIR

    timeout = DEFAULT_TIMEOUT
    if "timeout" in values:
        try:
            timeout = float(values["timeout"])
        except ValueError:
            logger.warning("Ignoring non-numeric timeout %r in %s", values["timeout"], config_file)

    return WaniConfig(
        auth=auth or os.environ.get(TOKEN_ENV) or values.get("auth"),
        data_dir=data_dir,
        config_file=config_file,
        db_path=default_db_path(data_dir),
        api_base=values.get("api_base", API_BASE),
        timeout=timeout,
    )

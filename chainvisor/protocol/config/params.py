# MIT License
# Copyright (c) 2025 Hashborn

import os
import re
import logging
from typing import Mapping, Optional
from ..types.plan import UpgradePlan

logger = logging.getLogger(__name__)

# Environment variables
ENV_HOME = "DAEMON_HOME"
ENV_NAME = "DAEMON_NAME"
ENV_DATA_DIR = "DAEMON_DATA_DIR"
ENV_POLL_INTERVAL = "DAEMON_POLL_INTERVAL"
ENV_HEIGHT_PROBE_TIMEOUT = "DAEMON_HEIGHT_PROBE_TIMEOUT"
ENV_DISABLE_RECASE = "COSMOVISOR_DISABLE_RECASE"
ENV_CALLBACK_API = "CALLBACK_API"
ENV_NODE_ID = "NODE_ID"
ENV_DEPLOYMENT_ID = "DEPLOYMENT_ID"
ENV_CALLBACK_TIMEOUT = "CALLBACK_TIMEOUT"

# Layout under DAEMON_HOME
ROOT_DIR = "cosmovisor"
GENESIS_DIR = "genesis"
UPGRADES_DIR = "upgrades"
CURRENT_LINK = "current"
UPGRADE_INFO_FILENAME = "upgrade-info.json"

DEFAULT_POLL_INTERVAL_SEC = 0.3
DEFAULT_CALLBACK_TIMEOUT_SEC = 10.0

DOCS_URL = "https://docs.cosmos.network/main/tooling/cosmovisor"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_TRUE_VALUES = {"1", "t", "true", "yes", "y", "on"}
_FALSE_VALUES = {"", "0", "f", "false", "no", "n", "off"}


def parse_duration(value: str) -> float:
    """
    Parse a poll interval into seconds.

    Accepts a bare integer (milliseconds) or a duration string made of
    number+unit parts, e.g. "300ms", "1.5s", "1m30s".
    """
    value = value.strip()
    if value.isdigit():
        return int(value) / 1000.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(value):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


class WatcherConfig:
    def __init__(self,
                 home: str,
                 name: str,
                 data_dir: Optional[str] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
                 disable_recase: bool = False,
                 height_probe_timeout: Optional[float] = None,
                 callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT_SEC):
        self.home = home
        self.name = name
        self.data_dir = data_dir or os.path.join(home, "data")
        self.poll_interval = poll_interval
        self.disable_recase = disable_recase
        self.height_probe_timeout = height_probe_timeout
        self.callback_timeout = callback_timeout

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WatcherConfig":
        """
        Build the configuration from environment variables.

        Raises:
            ValueError: If a variable is missing or malformed
        """
        env = os.environ if environ is None else environ

        home = env.get(ENV_HOME, "")
        if not home:
            raise ValueError(f"{ENV_HOME} is not set")
        if not os.path.isabs(home):
            raise ValueError(f"{ENV_HOME} must be an absolute path, got {home}")

        name = env.get(ENV_NAME, "")
        if not name:
            raise ValueError(f"{ENV_NAME} is not set")

        poll_interval = DEFAULT_POLL_INTERVAL_SEC
        if env.get(ENV_POLL_INTERVAL):
            try:
                poll_interval = parse_duration(env[ENV_POLL_INTERVAL])
            except ValueError as e:
                raise ValueError(f"{ENV_POLL_INTERVAL}: {e}") from e
            if poll_interval <= 0:
                raise ValueError(f"{ENV_POLL_INTERVAL} must be greater than 0")

        try:
            disable_recase = parse_bool(env.get(ENV_DISABLE_RECASE, ""))
        except ValueError as e:
            raise ValueError(f"{ENV_DISABLE_RECASE}: {e}") from e

        height_probe_timeout = _optional_seconds(env, ENV_HEIGHT_PROBE_TIMEOUT)
        callback_timeout = _optional_seconds(env, ENV_CALLBACK_TIMEOUT)

        return cls(
            home=home,
            name=name,
            data_dir=env.get(ENV_DATA_DIR) or None,
            poll_interval=poll_interval,
            disable_recase=disable_recase,
            height_probe_timeout=height_probe_timeout,
            callback_timeout=callback_timeout if callback_timeout is not None else DEFAULT_CALLBACK_TIMEOUT_SEC,
        )

    def root(self) -> str:
        return os.path.join(self.home, ROOT_DIR)

    def genesis_bin(self) -> str:
        return os.path.join(self.root(), GENESIS_DIR, "bin", self.name)

    def upgrade_dir(self, upgrade_name: str) -> str:
        return os.path.join(self.root(), UPGRADES_DIR, upgrade_name)

    def upgrade_info_file_path(self) -> str:
        """Path of the file the chain writes when an upgrade height is reached."""
        return os.path.join(self.data_dir, UPGRADE_INFO_FILENAME)

    def current_link(self) -> str:
        return os.path.join(self.root(), CURRENT_LINK)

    def current_bin(self) -> str:
        """
        Path of the binary currently in use.

        Creates the `current` link pointing at genesis when it does not exist yet.

        Raises:
            ValueError: If the link cannot be created or resolved
        """
        link = self.current_link()
        if not os.path.lexists(link):
            genesis = os.path.join(self.root(), GENESIS_DIR)
            if not os.path.isdir(genesis):
                raise ValueError(f"genesis directory {genesis} does not exist")
            try:
                os.symlink(genesis, link, target_is_directory=True)
            except OSError as e:
                raise ValueError(f"error creating symlink to genesis: {e}") from e
            logger.info(f"Linked {link} -> {genesis}")

        target = os.path.realpath(link)
        if not os.path.isdir(target):
            raise ValueError(f"current link {link} does not point to a directory")
        return os.path.join(target, "bin", self.name)

    def current_upgrade(self) -> UpgradePlan:
        """
        Upgrade the running binary belongs to.

        Returns the empty plan (genesis) when no upgrade-info.json sits next
        to the current binary or it cannot be decoded.
        """
        path = os.path.join(self.current_link(), UPGRADE_INFO_FILENAME)
        if not os.path.exists(path):
            return UpgradePlan()
        try:
            with open(path, "r") as f:
                return UpgradePlan.model_validate_json(f.read())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read current upgrade info from {path}: {e}")
            return UpgradePlan()


def _optional_seconds(env: Mapping[str, str], key: str) -> Optional[float]:
    raw = env.get(key)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{key}: invalid number of seconds {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{key} must be greater than 0")
    return value

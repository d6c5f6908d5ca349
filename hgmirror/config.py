"""Configuration for the master storage root, the hg binary and sync policy"""

import configparser
import logging
import os
import platform
from typing import Optional, Any

from pathlib import Path

import humanfriendly

from hgmirror.constants import DEFAULT_HG_EXECUTABLE, DEFAULT_POLL_TIMEOUT

APP_NAME = "hgmirror"

logger = logging.getLogger(__name__)

_home = os.path.expanduser("~")

xdg_config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(_home, ".config")
xdg_data_home = os.environ.get("XDG_DATA_HOME") or os.path.join(
    _home, ".local", "share"
)


default_cfg = {
    "dirs": {"root": os.path.join(xdg_data_home, APP_NAME)},
    "hg": {"executable": DEFAULT_HG_EXECUTABLE},
    "sync": {"poll_timeout": DEFAULT_POLL_TIMEOUT},
    "locks": {"interprocess": "yes"},
}

if platform.system() == "Darwin":
    # macOS
    config_dir = Path("~/Library/Application Support/hgmirror").expanduser()
else:
    # Linux or others
    config_dir = Path(os.path.join(xdg_config_home, APP_NAME))


def get_config_file():
    return config_dir / f"{APP_NAME}.cfg"


def init_dirs():
    """Initialize the configuration directory.

    Fails gracefully if it cannot be created (e.g., read-only filesystem).
    """
    try:
        os.makedirs(config_dir, exist_ok=True)
    except OSError as e:
        logger.warning(
            f"Could not create config directory {config_dir}: {e}. "
            "Using in-memory configuration only."
        )


class ConfigAccessor:
    """
    A dict-like accessor for configuration files.

    Missing sections or keys are handled gracefully.

    Usage:
        config = ConfigAccessor()
        value = config.get('section', 'key', default='default')
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: Path to the configuration file. If None, uses the default path.
        """
        if config_path is None:
            self.config_path = get_config_file()
            init_dirs()
        else:
            self.config_path = config_path

        self.config = configparser.ConfigParser()
        if self.config_path.exists():
            self.config.read(self.config_path)

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get a configuration value from the specified section and key.

        Returns:
            The configuration value if it exists, otherwise the default value
        """
        try:
            return self.config[section][key]
        except (KeyError, configparser.NoSectionError, configparser.NoOptionError):
            return default

    def getboolean(self, section: str, key: str, default: bool = False) -> bool:
        try:
            return self.config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return default

    def set(self, section: str, key: str, value: str) -> None:
        if not self.config.has_section(section):
            self.config.add_section(section)

        self.config[section][key] = value

    def save(self) -> None:
        """
        Save the current configuration to the config file.

        Fails gracefully if the file cannot be written (e.g., read-only filesystem).
        """
        try:
            with open(self.config_path, "w") as configfile:
                self.config.write(configfile)
        except (OSError, IOError) as e:
            logger.warning(
                f"Could not save configuration to {self.config_path}: {e}. "
                "Configuration changes will not persist."
            )

    def sections(self) -> list:
        return self.config.sections()

    def options(self, section: str) -> list:
        try:
            return self.config.options(section)
        except configparser.NoSectionError:
            return []


# Global config accessor instance
config = ConfigAccessor()


def get_master_root() -> Path:
    """
    Storage root of the coordinating master; mirrors live in its hgcache/ child.
    """
    root = config.get("dirs", "root", default_cfg["dirs"]["root"])
    return Path(root).expanduser()


def get_hg_executable() -> str:
    return config.get("hg", "executable", default_cfg["hg"]["executable"])


def parse_timeout(value: str) -> float:
    """
    Parse a human friendly timespan such as ``90s``, ``10m`` or ``1h``.

    Raises:
        ValueError: If the value is not a valid timespan
    """
    try:
        return humanfriendly.parse_timespan(value)
    except humanfriendly.InvalidTimespan as e:
        raise ValueError(f"Invalid timeout value: {value}") from e


def get_poll_timeout() -> float:
    """
    Time limit in seconds applied to hg operations started by a polling check.
    """
    value = config.get("sync", "poll_timeout", default_cfg["sync"]["poll_timeout"])
    return parse_timeout(value)


def get_interprocess_locking() -> bool:
    """
    Raises:
        ValueError: If the configured value is not a boolean
    """
    try:
        return config.getboolean("locks", "interprocess", default=True)
    except ValueError as e:
        value = config.get("locks", "interprocess")
        raise ValueError(f"Invalid value for locks.interprocess: {value}") from e

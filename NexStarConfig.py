# -*- coding: utf-8 -*-
# -----------------------------------------------------------------------------
# NexStarConfig.py - NexStar driver persistent configuration.  Adapted from
# Alpyca's config.py
#
# Python Compatibility: Requires Python 3.7 or later
# GitHub: https://github.com/ASCOMInitiative/AlpycaDevice
#
# -----------------------------------------------------------------------------
# MIT License
#
# Copyright (c) 2022-2024 Bob Denny
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
# -----------------------------------------------------------------------------

import logging
import threading
from pathlib import Path
from typing import Any, Optional, Union

import toml


class NexStarConfigError(Exception):
    """Custom exception for NexStar configuration errors"""
    pass


class NexStarConfig:
    """Driver configuration with thread-safe TOML persistence.

    Looks for /nexstar/nexstar.toml as an override file, with any settings
    there overriding ./nexstar.toml (or the file passed in).

    Attributes:
        dev_port: Serial port of the hand controller
        baudrate: Serial baud rate
        read_timeout: Per-read serial timeout in seconds
        command_timeout: Seconds allowed for a complete response
        goto_poll_interval: Seconds between slew status polls
        goto_tolerance: Accepted goto arrival error in degrees
        goto_timeout: Goto deadline in seconds, 0 for none
        log_level: Logging level (integer)
        log_to_stdout: Enable logging to stdout
        max_size_mb: Maximum log file size in MB
        num_keep_logs: Number of log files to keep
    """

    # Class constants
    DEFAULT_CONFIG_FILE = 'nexstar.toml'
    OVERRIDE_CONFIG_PATH = '/nexstar/nexstar.toml'

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        """Initialize configuration by loading TOML files.

        Args:
            config_file: Primary config path, defaults to ./nexstar.toml
        """
        self._lock = threading.RLock()
        self._dict = {}
        self._dict2 = {}

        if config_file is None:
            self._config_file = Path.cwd() / self.DEFAULT_CONFIG_FILE
        else:
            self._config_file = Path(config_file)
        self._override_file = Path(self.OVERRIDE_CONFIG_PATH)

        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from TOML files.

        Raises:
            NexStarConfigError: If primary config file cannot be loaded.
        """
        with self._lock:
            # Load primary config file
            try:
                self._dict = toml.load(self._config_file)
            except (FileNotFoundError, toml.TomlDecodeError) as e:
                raise NexStarConfigError(
                    f"Failed to load primary config file {self._config_file}: {e}"
                ) from e

            # Load optional override file
            try:
                if self._override_file.exists():
                    self._dict2 = toml.load(self._override_file)
            except toml.TomlDecodeError as e:
                raise NexStarConfigError(
                    f"Failed to load override config file {self._override_file}: {e}"
                ) from e

    def _get_toml(self, sect: str, item: str) -> Any:
        """Get configuration value, checking override file first.

        Args:
            sect: Configuration section name
            item: Configuration item name

        Returns:
            Configuration value or None if not found
        """
        with self._lock:
            try:
                # Check override file first
                return self._dict2[sect][item]
            except KeyError:
                try:
                    # Fall back to primary config
                    return self._dict[sect][item]
                except KeyError:
                    return None

    def _get_with_default(self, sect: str, item: str, default: Any) -> Any:
        """Get configuration value, using default only when the key is absent."""
        value = self._get_toml(sect, item)
        return default if value is None else value

    def _put_toml(self, sect: str, item: str, setting: Any) -> None:
        """Set configuration value in the appropriate dictionary.

        Args:
            sect: Configuration section name
            item: Configuration item name
            setting: Value to set
        """
        with self._lock:
            # If override file exists or has been used, update it
            # Otherwise update primary config
            if self._dict2 or self._override_file.exists():
                if sect not in self._dict2:
                    self._dict2[sect] = {}
                self._dict2[sect][item] = setting
            else:
                if sect not in self._dict:
                    self._dict[sect] = {}
                self._dict[sect][item] = setting

    def save(self) -> None:
        """Save configuration to file, overwriting existing.

        Raises:
            NexStarConfigError: If configuration cannot be saved.
        """
        with self._lock:
            try:
                # Save to override file if it exists or has been used
                if self._dict2 or self._override_file.exists():
                    # Ensure directory exists
                    self._override_file.parent.mkdir(parents=True, exist_ok=True)
                    with self._override_file.open('w', encoding='utf-8') as f:
                        toml.dump(self._dict2, f)
                else:
                    # Save to primary config file
                    with self._config_file.open('w', encoding='utf-8') as f:
                        toml.dump(self._dict, f)
            except OSError as e:
                raise NexStarConfigError(f"Failed to save configuration: {e}") from e

    def reload(self) -> None:
        """Reload configuration from files.

        Raises:
            NexStarConfigError: If configuration files cannot be reloaded.
        """
        with self._lock:
            self._dict = {}
            self._dict2 = {}
            self._load_config()

    # Configuration section constants
    DEVICE_SECTION = 'device'
    GOTO_SECTION = 'goto'
    LOGGING_SECTION = 'logging'

    # --------------
    # Device Section
    # --------------

    @property
    def dev_port(self) -> str:
        """Serial port of the hand controller."""
        return self._get_toml(self.DEVICE_SECTION, 'dev_port') or '/dev/ttyUSB0'

    @dev_port.setter
    def dev_port(self, value: str) -> None:
        self._put_toml(self.DEVICE_SECTION, 'dev_port', value)

    @property
    def baudrate(self) -> int:
        """Serial baud rate."""
        return int(self._get_with_default(self.DEVICE_SECTION, 'baudrate', 9600))

    @baudrate.setter
    def baudrate(self, value: int) -> None:
        self._put_toml(self.DEVICE_SECTION, 'baudrate', value)

    @property
    def read_timeout(self) -> float:
        """Per-read serial timeout in seconds."""
        return float(self._get_with_default(self.DEVICE_SECTION, 'read_timeout', 0.5))

    @read_timeout.setter
    def read_timeout(self, value: float) -> None:
        self._put_toml(self.DEVICE_SECTION, 'read_timeout', value)

    @property
    def command_timeout(self) -> float:
        """Seconds allowed for a complete command response."""
        return float(self._get_with_default(self.DEVICE_SECTION, 'command_timeout', 5.0))

    @command_timeout.setter
    def command_timeout(self, value: float) -> None:
        self._put_toml(self.DEVICE_SECTION, 'command_timeout', value)

    # ------------
    # Goto Section
    # ------------

    @property
    def goto_poll_interval(self) -> float:
        """Seconds between slew status polls."""
        return float(self._get_with_default(self.GOTO_SECTION, 'poll_interval', 0.001))

    @goto_poll_interval.setter
    def goto_poll_interval(self, value: float) -> None:
        self._put_toml(self.GOTO_SECTION, 'poll_interval', value)

    @property
    def goto_tolerance(self) -> float:
        """Accepted goto arrival error in degrees. 0 demands an exact match."""
        return float(self._get_with_default(self.GOTO_SECTION, 'tolerance', 0.01))

    @goto_tolerance.setter
    def goto_tolerance(self, value: float) -> None:
        self._put_toml(self.GOTO_SECTION, 'tolerance', value)

    @property
    def goto_timeout(self) -> float:
        """Goto deadline in seconds. 0 waits until the mount stops."""
        return float(self._get_with_default(self.GOTO_SECTION, 'timeout', 0.0))

    @goto_timeout.setter
    def goto_timeout(self, value: float) -> None:
        self._put_toml(self.GOTO_SECTION, 'timeout', value)

    # ---------------
    # Logging Section
    # ---------------

    @property
    def log_level(self) -> int:
        """Logging level as integer."""
        level = logging.getLevelName(self._get_toml(self.LOGGING_SECTION, 'log_level') or 'INFO')
        return level if isinstance(level, int) else logging.INFO

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set log level using string value."""
        self._put_toml(self.LOGGING_SECTION, 'log_level', value)

    @property
    def log_to_stdout(self) -> bool:
        """Enable logging to stdout."""
        return bool(self._get_toml(self.LOGGING_SECTION, 'log_to_stdout'))

    @log_to_stdout.setter
    def log_to_stdout(self, value: bool) -> None:
        self._put_toml(self.LOGGING_SECTION, 'log_to_stdout', value)

    @property
    def max_size_mb(self) -> int:
        """Maximum log file size in MB."""
        return int(self._get_with_default(self.LOGGING_SECTION, 'max_size_mb', 5))

    @max_size_mb.setter
    def max_size_mb(self, value: int) -> None:
        self._put_toml(self.LOGGING_SECTION, 'max_size_mb', value)

    @property
    def num_keep_logs(self) -> int:
        """Number of log files to keep."""
        return int(self._get_with_default(self.LOGGING_SECTION, 'num_keep_logs', 10))

    @num_keep_logs.setter
    def num_keep_logs(self, value: int) -> None:
        self._put_toml(self.LOGGING_SECTION, 'num_keep_logs', value)

    def __repr__(self) -> str:
        """Return string representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"config_file='{self._config_file}', "
            f"override_file='{self._override_file}')"
        )

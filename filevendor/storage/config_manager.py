"""
Reads, writes and upgrades the INI configuration file.

The file is split into sections::

    [cache]
    cache_dir = ~/.cache/filevendor
    namespace = collections
    checksum_algorithm = md5
    sweep = false

    [fetch]
    max_workers = 8
    ...

    [logging]
    json_log = false

Files written by older versions kept every key in ``[DEFAULT]``; those keys
are moved into their sections on load.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from filevendor.exceptions import ConfigurationError
from filevendor.models.config import VendorConfig

log = logging.getLogger(__name__)

INI_SECTIONS: dict[str, tuple[str, ...]] = {
    "cache": ("cache_dir", "namespace", "checksum_algorithm", "sweep"),
    "fetch": (
        "max_workers",
        "fetch_attempts",
        "base_delay",
        "connect_timeout",
        "read_timeout",
    ),
    "logging": ("json_log",),
}


def _to_ini(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConfigManager:
    """Loads the config file into a validated `VendorConfig` and keeps it current."""

    def __init__(self, config_file_path: Path, default_cache_dir: Path | None = None):
        self.config_file_path = Path(config_file_path)
        self.default_cache_dir = default_cache_dir or (
            self.config_file_path.parent / "cache"
        )

    @property
    def config_dir(self) -> Path:
        return self.config_file_path.parent

    def _defaults(self) -> VendorConfig:
        return VendorConfig.model_construct(
            cache_dir=str(self.default_cache_dir), config_path=str(self.config_dir)
        )

    def _new_parser(self) -> configparser.ConfigParser:
        return configparser.ConfigParser(interpolation=None)

    def _read_parser(self) -> configparser.ConfigParser:
        parser = self._new_parser()
        try:
            parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e
        return parser

    def load_config(self, cli_options: dict[str, Any] | None = None) -> VendorConfig:
        """
        Builds the effective configuration: defaults, then the config file,
        then `cli_options`.

        A missing config file is not an error; the defaults are used.

        Raises:
            ConfigurationError: If the file cannot be parsed or a value is invalid.
        """
        settings: dict[str, Any] = {}
        if self.config_file_path.is_file():
            parser = self._read_parser()
            if self._upgrade(parser):
                log.info(
                    "[yellow]Configuration file was updated to the current layout."
                    "[/yellow]"
                )
            settings = self._read_settings(parser)
        else:
            log.debug(f"No configuration file at '{self.config_file_path}'.")

        if cli_options:
            settings.update(cli_options)
        settings.setdefault("cache_dir", str(self.default_cache_dir))

        try:
            return VendorConfig(**settings, config_path=str(self.config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """Writes a complete config file from `settings` and the defaults."""
        defaults = self._defaults()
        parser = self._new_parser()
        for section, keys in INI_SECTIONS.items():
            parser[section] = {
                key: _to_ini(settings.get(key, getattr(defaults, key)))
                for key in keys
            }
        self._write(parser)

    def _write(self, parser: configparser.ConfigParser) -> None:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as f:
                parser.write(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _read_settings(self, parser: configparser.ConfigParser) -> dict[str, Any]:
        settings: dict[str, Any] = {}
        fields = VendorConfig.model_fields
        for section, keys in INI_SECTIONS.items():
            for key in keys:
                if not parser.has_option(section, key):
                    continue
                kind = fields[key].annotation
                try:
                    if kind is bool:
                        settings[key] = parser.getboolean(section, key)
                    elif kind is int:
                        settings[key] = parser.getint(section, key)
                    elif kind is float:
                        settings[key] = parser.getfloat(section, key)
                    else:
                        settings[key] = parser.get(section, key)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid value for '{key}' in [{section}]: {e}"
                    ) from e
        return settings

    def get_config_as_dict(self) -> dict[str, Any]:
        """Returns the settings stored in the config file, or {} without one."""
        if not self.config_file_path.is_file():
            return {}
        return self._read_settings(self._read_parser())

    def _upgrade(self, parser: configparser.ConfigParser) -> bool:
        """
        Moves legacy `[DEFAULT]` keys into their sections and adds missing
        keys with default values. Returns True if the file was rewritten.
        """
        defaults = self._defaults()
        legacy = dict(parser.defaults())
        changed = bool(legacy)
        for key in legacy:
            parser.remove_option(configparser.DEFAULTSECT, key)

        for section, keys in INI_SECTIONS.items():
            if not parser.has_section(section):
                parser.add_section(section)
            for key in keys:
                if parser.has_option(section, key):
                    continue
                value = legacy.get(key, _to_ini(getattr(defaults, key)))
                parser.set(section, key, value)
                changed = True
                log.debug(f"Config upgrade: set [{section}] {key} = {value}")

        if changed:
            try:
                self._write(parser)
            except ConfigurationError as e:
                log.error(f"Could not save upgraded configuration file: {e}")
                return False
        return changed

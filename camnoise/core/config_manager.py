"""Reader/writer for ``key = value`` configuration files."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable

import aiofiles

from camnoise.core.logging_utils import get_module_logger

logger = get_module_logger("ConfigManager")


class ConfigManager:
    """Loads flat dotted-key settings such as ``exposure.cooldown_s = 3``."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Internal helpers

    @staticmethod
    def _stringify_value(value: Any) -> str:
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return f"{value[0]}x{value[1]}"
        return str(value)

    @staticmethod
    def _parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if '#' in value:
                value = value.split('#')[0].strip()

            if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]

            config[key] = value

        return config

    def _merge_lines(self, lines: list[str], updates: Dict[str, Any]) -> list[str]:
        updated_keys = set()

        for i, line in enumerate(lines):
            stripped = line.strip()
            if not stripped or stripped.startswith('#') or '=' not in stripped:
                continue
            key = stripped.split('=')[0].strip()
            if key in updates:
                indent = len(line) - len(line.lstrip())
                lines[i] = ' ' * indent + f"{key} = {self._stringify_value(updates[key])}\n"
                updated_keys.add(key)

        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"

        for key, value in updates.items():
            if key not in updated_keys:
                value_str = self._stringify_value(value)
                lines.append(f"{key} = {value_str}\n")
                logger.debug("Added new config key: %s = %s", key, value_str)

        return lines

    # ------------------------------------------------------------------
    # Public API

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Read ``config_path``; a missing file yields an empty mapping."""
        config_path = Path(config_path)
        if not config_path.exists():
            logger.debug("Config file %s not found, using defaults", config_path)
            return {}
        try:
            with open(config_path, 'r', encoding='utf-8') as fh:
                return self._parse_config_lines(fh)
        except OSError as exc:
            logger.error("Failed to read config %s: %s", config_path, exc)
            return {}

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        config_path = Path(config_path)
        if not await asyncio.to_thread(config_path.exists):
            logger.debug("Config file %s not found, using defaults", config_path)
            return {}
        try:
            lines: list[str] = []
            async with aiofiles.open(config_path, 'r', encoding='utf-8') as fh:
                async for line in fh:
                    lines.append(line)
        except OSError as exc:
            logger.error("Failed to read config %s: %s", config_path, exc)
            return {}
        return self._parse_config_lines(lines)

    def write_config(self, config_path: Path, updates: Dict[str, Any]) -> bool:
        """Update keys in place, appending unknown keys. Creates the file if needed."""
        config_path = Path(config_path)
        try:
            lines: list[str] = []
            if config_path.exists():
                with open(config_path, 'r', encoding='utf-8') as fh:
                    lines = fh.readlines()
            lines = self._merge_lines(lines, updates)
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, 'w', encoding='utf-8') as fh:
                fh.writelines(lines)
            return True
        except OSError as exc:
            logger.error("Failed to write config %s: %s", config_path, exc, exc_info=True)
            return False

    async def write_config_async(self, config_path: Path, updates: Dict[str, Any]) -> bool:
        config_path = Path(config_path)
        async with self.lock:
            try:
                lines: list[str] = []
                if await asyncio.to_thread(config_path.exists):
                    async with aiofiles.open(config_path, 'r', encoding='utf-8') as fh:
                        lines = await fh.readlines()
                lines = self._merge_lines(lines, updates)
                await asyncio.to_thread(config_path.parent.mkdir, parents=True, exist_ok=True)
                async with aiofiles.open(config_path, 'w', encoding='utf-8') as fh:
                    await fh.writelines(lines)
                return True
            except OSError as exc:
                logger.error("Failed to write config %s: %s", config_path, exc, exc_info=True)
                return False

    # ------------------------------------------------------------------
    # Typed getters

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        if key not in config:
            return default
        return config[key].strip().lower() in ('true', '1', 'yes', 'on')

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        if key not in config:
            return default
        try:
            return int(config[key])
        except ValueError:
            logger.warning("Invalid int value for %s: %s, using default %d", key, config[key], default)
            return default

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        if key not in config:
            return default
        try:
            return float(config[key])
        except ValueError:
            logger.warning("Invalid float value for %s: %s, using default %f", key, config[key], default)
            return default

    def get_str(self, config: Dict[str, str], key: str, default: str = "") -> str:
        return config.get(key, default)


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager


__all__ = ["ConfigManager", "get_config_manager"]

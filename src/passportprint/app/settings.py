from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from passportprint.core.models import BACKGROUND_ENGINES

logger = logging.getLogger(__name__)

KEY_BG_ENGINE = "bg_engine"
KEY_REMOVEBG = "removebg_key"
API_KEY_ENV = "REMOVEBG_API_KEY"


@dataclass
class SettingsStore:
    """
    Persisted user settings: background engine + remove.bg API key.

    Read at startup, written on every change. The pipeline never needs it;
    an unreadable file just means defaults.
    """
    path: Path

    @staticmethod
    def default(app_name: str = "passportprint") -> "SettingsStore":
        base = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / app_name
        return SettingsStore(path=base / "settings.json")

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not save settings to %s: %s", self.path, e)

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    @property
    def bg_engine(self) -> str:
        engine = self.get(KEY_BG_ENGINE, "on_device")
        return engine if engine in BACKGROUND_ENGINES else "on_device"

    @bg_engine.setter
    def bg_engine(self, engine: str) -> None:
        if engine not in BACKGROUND_ENGINES:
            raise ValueError(f"Unknown background engine: {engine!r}")
        self.set(KEY_BG_ENGINE, engine)

    @property
    def removebg_key(self) -> Optional[str]:
        """Environment override first, then the stored key."""
        key = (os.environ.get(API_KEY_ENV) or self.get(KEY_REMOVEBG) or "").strip()
        return key or None

    @removebg_key.setter
    def removebg_key(self, key: Optional[str]) -> None:
        self.set(KEY_REMOVEBG, (key or "").strip())

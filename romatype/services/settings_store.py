from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from romatype.domain.enums import BeatSyncConfig, Difficulty, FlashConfig, PracticeConfig

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "http://localhost:3001"
API_BASE_ENV = "ROMATYPE_API_BASE"

# Calibration beyond +/- 10s is a user error, not a sync problem.
MAX_CALIBRATION_MS = 10_000


class SettingsStore:
    """YAML-backed settings store.

    Responsibilities:
      - Load/save settings.yaml atomically
      - Provide typed helpers for difficulty, calibration and session lengths

    Notes:
      - Calibration offset is stored in MILLISECONDS.
      - Session lengths are stored in SECONDS.
    """

    def __init__(self, settings_path: str | None = None) -> None:
        if settings_path is None:
            # Default to project root next to main.py.
            project_root = Path(__file__).resolve().parents[2]
            self._path = project_root / "settings.yaml"
        else:
            self._path = Path(settings_path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        try:
            p = self._path
            if not p.exists():
                return {}
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
                return data if isinstance(data, dict) else {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read settings %s: %s", self._path, e)
            return {}

    def save(self, data: dict[str, Any]) -> None:
        try:
            p = self._path
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp = p.with_suffix(p.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                yaml.safe_dump(data or {}, f, allow_unicode=True, sort_keys=True)
            os.replace(str(tmp), str(p))
        except (OSError, yaml.YAMLError) as e:
            # Best-effort persistence; callers should not crash on save failures.
            logger.warning("Failed to write settings %s: %s", self._path, e)

    def _set(self, key: str, value: Any) -> None:
        s = self.load()
        s[key] = value
        self.save(s)

    def _int(self, key: str, default: int) -> int:
        v = self.load().get(key, default)
        if isinstance(v, bool):
            return int(default)
        if isinstance(v, (int, float)):
            return int(v)
        return int(default)

    # ----------------------------
    # Difficulty
    # ----------------------------

    def get_difficulty(self) -> Difficulty:
        return Difficulty.parse(self.load().get("difficulty"), Difficulty.NORMAL)

    def set_difficulty(self, difficulty: Difficulty) -> None:
        self._set("difficulty", Difficulty.parse(difficulty).value)

    # ----------------------------
    # Beat-sync calibration
    # ----------------------------

    def get_calibration_offset_ms(self) -> int:
        v = self._int("calibration_offset_ms", 0)
        return max(-MAX_CALIBRATION_MS, min(MAX_CALIBRATION_MS, v))

    def set_calibration_offset_ms(self, value: int) -> None:
        v = max(-MAX_CALIBRATION_MS, min(MAX_CALIBRATION_MS, int(value)))
        self._set("calibration_offset_ms", v)

    # ----------------------------
    # API base
    # ----------------------------

    def get_api_base_url(self) -> str:
        env = (os.environ.get(API_BASE_ENV) or "").strip()
        if env:
            return env.rstrip("/")
        v = self.load().get("api_base_url")
        if isinstance(v, str) and v.strip():
            return v.strip().rstrip("/")
        return DEFAULT_API_BASE

    def set_api_base_url(self, url: str) -> None:
        self._set("api_base_url", str(url or "").strip())

    # ----------------------------
    # Session lengths
    # ----------------------------

    def get_practice_session_seconds(self) -> int:
        return max(1, self._int("practice_session_seconds", PracticeConfig.session_seconds))

    def set_practice_session_seconds(self, value: int) -> None:
        self._set("practice_session_seconds", max(1, int(value)))

    def get_flash_session_seconds(self) -> int:
        return max(1, self._int("flash_session_seconds", FlashConfig.session_seconds))

    def set_flash_session_seconds(self, value: int) -> None:
        self._set("flash_session_seconds", max(1, int(value)))

    def practice_config(self) -> PracticeConfig:
        return PracticeConfig(
            session_seconds=self.get_practice_session_seconds(),
            difficulty=self.get_difficulty(),
        ).normalised()

    def flash_config(self) -> FlashConfig:
        return FlashConfig(session_seconds=self.get_flash_session_seconds()).normalised()

    def beat_sync_config(self) -> BeatSyncConfig:
        return BeatSyncConfig(difficulty=self.get_difficulty()).normalised()

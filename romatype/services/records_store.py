from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml

from romatype.domain.models import SessionRecord

logger = logging.getLogger(__name__)

PRACTICE_KEY = "sessions"
FLASH_KEY = "flash_sessions"
BEAT_SYNC_KEY = "beat_sync_sessions"
DEFAULT_CAP = 200


@dataclass(frozen=True)
class DailyBest:
    date_key: str
    record: SessionRecord


class RecordsStore:
    """Append-only, capped history of finished sessions under one YAML key.

    The whole list is read, extended and rewritten on every append; other keys
    in the same file are left untouched.
    """

    def __init__(self, path: str | Path | None = None, *, key: str = PRACTICE_KEY, cap: int = DEFAULT_CAP) -> None:
        if path is None:
            path = Path(__file__).resolve().parents[2] / "records.yaml"
        self._path = Path(path)
        self._key = str(key)
        self._cap = max(1, int(cap))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def key(self) -> str:
        return self._key

    def _read_all(self) -> dict[str, Any]:
        try:
            if not self._path.exists():
                return {}
            data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
            return data if isinstance(data, dict) else {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read records %s: %s", self._path, e)
            return {}

    def load(self) -> list[SessionRecord]:
        raw = self._read_all().get(self._key) or []
        if not isinstance(raw, list):
            return []
        out: list[SessionRecord] = []
        for item in raw:
            record = SessionRecord.from_dict(item)
            if record is None:
                logger.debug("Skipping malformed session record: %r", item)
                continue
            out.append(record)
        return out

    def append(self, record: SessionRecord) -> list[SessionRecord]:
        records = self.load()
        records.append(record)
        records = records[-self._cap:]

        data = self._read_all()
        data[self._key] = [r.to_dict() for r in records]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, allow_unicode=True, sort_keys=True)
            os.replace(str(tmp), str(self._path))
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to persist session record to %s: %s", self._path, e)
        return records

    def daily_bests(self) -> list[DailyBest]:
        """Best record per local calendar day, newest day first.

        Best means most points, then fewest mistakes, then the earlier finish.
        """
        best: dict[str, SessionRecord] = {}
        for record in self.load():
            key = date_key(record.started_at)
            current = best.get(key)
            if current is None or _better(record, current):
                best[key] = record
        return [DailyBest(date_key=k, record=best[k]) for k in sorted(best, reverse=True)]


def date_key(epoch_ms: int) -> str:
    return datetime.fromtimestamp(int(epoch_ms) / 1000.0).strftime("%Y-%m-%d")


def _better(a: SessionRecord, b: SessionRecord) -> bool:
    if a.points != b.points:
        return a.points > b.points
    if a.total_mistakes != b.total_mistakes:
        return a.total_mistakes < b.total_mistakes
    return a.ended_at < b.ended_at


def best_of(records: list[SessionRecord]) -> Optional[SessionRecord]:
    top: Optional[SessionRecord] = None
    for record in records:
        if top is None or _better(record, top):
            top = record
    return top

from __future__ import annotations

"""Builds the machines and data sources from the stored settings.

Settings are read when an object is built, so a changed difficulty or session
length applies to the next machine, not to one already running. The beat-sync
calibration offset goes the other way too: changes made on the engine are
written back to the settings file.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import requests

from romatype.domain.models import Prompt
from romatype.services.clock import VideoClockSource, VideoPlayer
from romatype.services.prompt_source import LyricLineSource, PromptSource
from romatype.services.records_store import BEAT_SYNC_KEY, FLASH_KEY, PRACTICE_KEY, RecordsStore
from romatype.services.settings_store import SettingsStore
from romatype.services.timers import Scheduler
from romatype.controllers.beat_sync import BeatSyncEngine
from romatype.controllers.flash_round import FlashRoundMachine
from romatype.controllers.practice_session import PracticeSessionMachine

logger = logging.getLogger(__name__)


@dataclass
class GameFactory:
    settings: SettingsStore
    records_path: Optional[str | Path] = None
    scheduler: Optional[Scheduler] = None
    http: Optional[requests.Session] = None

    def records(self, key: str) -> RecordsStore:
        return RecordsStore(self.records_path, key=key)

    # ----------------------------
    # Data sources
    # ----------------------------

    def prompt_source(self) -> PromptSource:
        return PromptSource(self.settings.get_api_base_url(), session=self.http)

    def lyric_source(self) -> LyricLineSource:
        return LyricLineSource(self.settings.get_api_base_url(), session=self.http)

    # ----------------------------
    # Machines
    # ----------------------------

    def practice(self, prompts: Sequence[Prompt] = ()) -> PracticeSessionMachine:
        return PracticeSessionMachine(
            prompts,
            config=self.settings.practice_config(),
            scheduler=self.scheduler,
            records=self.records(PRACTICE_KEY),
        )

    def flash(self, prompts: Sequence[Prompt] = ()) -> FlashRoundMachine:
        return FlashRoundMachine(
            prompts,
            config=self.settings.flash_config(),
            scheduler=self.scheduler,
            records=self.records(FLASH_KEY),
        )

    def beat_sync(self, player: VideoPlayer, clock: Optional[VideoClockSource] = None) -> BeatSyncEngine:
        if clock is None:
            clock = VideoClockSource(player)
        clock.set_calibration_offset(self.settings.get_calibration_offset_ms())
        engine = BeatSyncEngine(
            clock,
            config=self.settings.beat_sync_config(),
            scheduler=self.scheduler,
            records=self.records(BEAT_SYNC_KEY),
        )
        engine.calibration_changed.connect(self._save_calibration)
        return engine

    def _save_calibration(self, offset_ms: int) -> None:
        self.settings.set_calibration_offset_ms(offset_ms)
        logger.debug("Saved calibration offset %dms", offset_ms)

from __future__ import annotations


class RomatypeError(Exception):
    """Base class for errors raised at the collaborator boundary."""


class DataUnavailableError(RomatypeError):
    """A prompt or lyric source returned nothing usable (or failed)."""


class InvalidVideoIdError(RomatypeError):
    """A video identifier was rejected before any fetch or player command."""

    def __init__(self, video_id: str) -> None:
        super().__init__("Invalid video id: {!r}".format(video_id))
        self.video_id = video_id

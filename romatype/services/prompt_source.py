from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from romatype.domain.errors import DataUnavailableError, InvalidVideoIdError
from romatype.domain.models import LyricLine, LyricTrack, Prompt
from romatype.services.settings_store import DEFAULT_API_BASE

logger = logging.getLogger(__name__)

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{6,}$")


def is_valid_video_id(video_id: str) -> bool:
    return bool(_VIDEO_ID.match((video_id or "").strip()))


class _ApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 15,
        user_agent: str = "romatype/0.1",
    ) -> None:
        self.base_url = (base_url or DEFAULT_API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        self.timeout = timeout

    def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
            r.raise_for_status()
            return r.json()
        except requests.RequestException as e:
            raise DataUnavailableError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise DataUnavailableError(f"GET {path} returned invalid JSON") from e


class PromptSource(_ApiClient):
    """Prompt list from the backend. One request per call; no retries."""

    def fetch_prompts(self) -> list[Prompt]:
        data = self._get_json("/api/prompts")
        if not isinstance(data, list):
            raise DataUnavailableError("Prompt payload is not a list")
        prompts: list[Prompt] = []
        for raw in data:
            prompt = Prompt.from_api(raw)
            if prompt is None:
                logger.warning("Dropping malformed prompt: %r", raw)
                continue
            prompts.append(prompt)
        return prompts


class LyricLineSource(_ApiClient):
    """Caption lines of a video, used as beat-sync typing windows."""

    def fetch_track(self, video_id: str) -> LyricTrack:
        vid = (video_id or "").strip()
        if not is_valid_video_id(vid):
            raise InvalidVideoIdError(vid)

        data = self._get_json("/api/sudden-death/captions", params={"videoId": vid})
        if isinstance(data, list):
            title, raw_lines = "", data
        elif isinstance(data, dict):
            title = str(data.get("title") or "")
            raw_lines = data.get("lines") or []
        else:
            raise DataUnavailableError("Caption payload has an unexpected shape")

        lines = parse_lines(raw_lines if isinstance(raw_lines, list) else [])
        if not lines:
            raise DataUnavailableError(f"No caption lines for video {vid}")
        return LyricTrack(title=title, lines=lines)


def parse_lines(raw_lines: list[Any]) -> tuple[LyricLine, ...]:
    lines: list[LyricLine] = []
    for raw in raw_lines:
        line = LyricLine.from_api(raw)
        if line is None:
            logger.warning("Dropping malformed caption line: %r", raw)
            continue
        lines.append(line)
    lines.sort(key=lambda ln: (ln.start_ms, ln.end_ms))
    return tuple(lines)

from __future__ import annotations

"""Keystroke-level romaji validation.

A target phrase is stored with one canonical romanization, but several
spellings of the same kana are equally acceptable (``shi``/``si``,
``tsu``/``tu`` ...). Every decision here is made against the canonical string
*and* its expansions:

  - expand_variants()   : all accepted spellings, capped
  - is_prefix_valid()   : can this partial input still grow into one of them?
  - is_complete()       : is it exactly one of them?
  - highlight_split()   : typed / next / remaining parts of the closest spelling

Contains no Qt dependencies.
"""

import re
from typing import Final, Optional

from romatype.domain.models import HighlightSplit


DEFAULT_VARIANT_CAP: Final[int] = 256

# -----------------------------------------------------------------------------
# Variant table
# -----------------------------------------------------------------------------
#
# Each pattern lists itself first, so the first expansion of any string is the
# string itself. Patterns are tried longest first at every position.

VARIANT_RULES: Final[dict[str, tuple[str, ...]]] = {
    "sha": ("sha", "sya", "shya"),
    "shu": ("shu", "syu", "shyu"),
    "sho": ("sho", "syo", "shyo"),
    "shi": ("shi", "si"),
    "chi": ("chi", "ti", "ci"),
    "tsu": ("tsu", "tu"),
    "zzi": ("zzi", "jji"),
    "ja": ("ja", "jya", "zya"),
    "ju": ("ju", "jyu", "zyu"),
    "jo": ("jo", "jyo", "zyo"),
    "ji": ("ji", "zi"),
    "fu": ("fu", "hu"),
}

_PATTERNS_LONGEST_FIRST: Final[tuple[str, ...]] = tuple(
    sorted(VARIANT_RULES, key=lambda p: -len(p))
)

_INPUT_ALLOWED = re.compile(r"[^a-zA-Z'\s-]")


def normalise(text: str) -> str:
    return (text or "").lower()


def _rule_at(canonical: str, index: int) -> Optional[str]:
    for pattern in _PATTERNS_LONGEST_FIRST:
        if canonical.startswith(pattern, index):
            return pattern
    return None


def expand_variants(canonical: str, cap: int = DEFAULT_VARIANT_CAP) -> tuple[str, ...]:
    """Return every accepted spelling of ``canonical`` (canonical first).

    Works over suffix indices from the end of the string towards the start:
    ``tails[i]`` holds the spellings of ``canonical[i:]``. Each entry is capped
    at ``cap``, so the whole expansion is O(len * cap) regardless of how many
    rule matches the string contains.
    """
    text = normalise(canonical)
    limit = max(1, int(cap))
    n = len(text)

    tails: list[tuple[str, ...]] = [()] * (n + 1)
    tails[n] = ("",)

    for i in range(n - 1, -1, -1):
        pattern = _rule_at(text, i)
        if pattern is None:
            heads: tuple[str, ...] = (text[i],)
            rest = tails[i + 1]
        else:
            heads = VARIANT_RULES[pattern]
            rest = tails[i + len(pattern)]

        out: list[str] = []
        seen: set[str] = set()
        for head in heads:
            for tail in rest:
                candidate = head + tail
                if candidate in seen:
                    continue
                seen.add(candidate)
                out.append(candidate)
                if len(out) >= limit:
                    break
            if len(out) >= limit:
                break
        tails[i] = tuple(out)

    result = tails[0]
    if not result or result[0] != text:
        # Canonical spelling always leads, whatever the table holds.
        result = (text,) + tuple(v for v in result if v != text)[: limit - 1]
    return result


def sanitize_input(raw: str) -> str:
    """Drop characters that can never be part of a romaji spelling."""
    return _INPUT_ALLOWED.sub("", raw or "")


def is_prefix_valid(typed: str, canonical: str, *, cap: int = DEFAULT_VARIANT_CAP) -> bool:
    if not typed:
        return True
    canon = normalise(canonical)
    if not canon:
        return True
    value = normalise(typed)
    if canon.startswith(value):
        return True
    return any(v.startswith(value) for v in expand_variants(canon, cap))


def is_complete(typed: str, canonical: str, *, cap: int = DEFAULT_VARIANT_CAP) -> bool:
    value = normalise(typed).strip()
    canon = normalise(canonical).strip()
    if not canon:
        return value == ""
    if value == canon:
        return True
    return value in expand_variants(canon, cap)


def common_prefix_len(a: str, b: str) -> int:
    i = 0
    for x, y in zip(a, b):
        if x != y:
            break
        i += 1
    return i


def best_variant(typed: str, canonical: str, *, cap: int = DEFAULT_VARIANT_CAP) -> str:
    canon = normalise(canonical)
    value = normalise(typed)
    best = canon
    best_len = common_prefix_len(value, canon)
    if best_len == len(value):
        return best
    for candidate in expand_variants(canon, cap):
        length = common_prefix_len(value, candidate)
        if length > best_len:
            best, best_len = candidate, length
            if best_len == len(value):
                break
    return best


def highlight_split(typed: str, canonical: str, *, cap: int = DEFAULT_VARIANT_CAP) -> HighlightSplit:
    variant = best_variant(typed, canonical, cap=cap)
    value = normalise(typed)
    matched_len = common_prefix_len(value, variant)
    return HighlightSplit(
        matched=variant[:matched_len],
        next_char=variant[matched_len:matched_len + 1],
        remainder=variant[matched_len + 1:],
        is_mismatch=len(value) > matched_len,
    )


class RomajiMatcher:
    """Matcher bound to one cap, with its own bounded expansion cache.

    Machines hold one instance each; the cache lives and dies with it, so there
    is no process-wide state.
    """

    def __init__(self, *, cap: int = DEFAULT_VARIANT_CAP, cache_size: int = 64) -> None:
        self._cap = max(1, int(cap))
        self._cache_size = max(1, int(cache_size))
        self._cache: dict[str, tuple[str, ...]] = {}

    @property
    def cap(self) -> int:
        return self._cap

    def variants(self, canonical: str) -> tuple[str, ...]:
        key = normalise(canonical)
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        if len(self._cache) >= self._cache_size:
            self._cache.clear()
        value = expand_variants(key, self._cap)
        self._cache[key] = value
        return value

    def is_prefix_valid(self, typed: str, canonical: str) -> bool:
        if not typed or not canonical:
            return True
        value = normalise(typed)
        return any(v.startswith(value) for v in self.variants(canonical))

    def is_complete(self, typed: str, canonical: str) -> bool:
        value = normalise(typed).strip()
        canon = normalise(canonical).strip()
        if not canon:
            return value == ""
        return value in self.variants(canon)

    def highlight_split(self, typed: str, canonical: str) -> HighlightSplit:
        return highlight_split(typed, canonical, cap=self._cap)


__all__ = [
    "DEFAULT_VARIANT_CAP",
    "VARIANT_RULES",
    "RomajiMatcher",
    "best_variant",
    "common_prefix_len",
    "expand_variants",
    "highlight_split",
    "is_complete",
    "is_prefix_valid",
    "normalise",
    "sanitize_input",
]

"""Suggestion-only sub-lane inference.

Every sub-lane is scored with an absolute sum: each of its code-path globs
that matches at least one given path adds ``CODE_PATH_WEIGHT``; each of its
keywords found in the description adds ``KEYWORD_WEIGHT``. Scores are not
normalized by how many patterns a lane defines. Ties keep taxonomy order.

Globs are segment-aware: ``src/*`` matches ``src/a.py`` but not
``src/deep/a.py``; use ``src/**`` for a whole subtree.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Final

from lumenflow_core.lanes.taxonomy import LaneTaxonomy, SubLaneRule

CODE_PATH_WEIGHT: Final[int] = 5
KEYWORD_WEIGHT: Final[int] = 2
# A single keyword hit is not enough to name a sub-lane.
MIN_CONFIDENCE_SCORE: Final[int] = 4


@dataclass(frozen=True, slots=True)
class LaneSuggestion:
    lane: str
    parent: str
    sub_lane: str | None
    score: int
    matched_code_paths: tuple[str, ...] = ()
    matched_keywords: tuple[str, ...] = ()

    @property
    def confident(self) -> bool:
        return self.sub_lane is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "lane": self.lane,
            "parent": self.parent,
            "sub_lane": self.sub_lane,
            "score": self.score,
            "confident": self.confident,
            "matched_code_paths": list(self.matched_code_paths),
            "matched_keywords": list(self.matched_keywords),
        }


def _normalize_path(path: str) -> str:
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def glob_matches(path: str, pattern: str) -> bool:
    """Segment-aware glob: ``*`` and ``?`` stay inside one path segment, ``**`` spans any depth."""

    return _glob_regex(_normalize_path(pattern)).fullmatch(_normalize_path(path)) is not None


@lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**/", index):
            # "a/**/b" also matches "a/b".
            parts.append("(?:.*/)?")
            index += 3
        elif pattern.startswith("/**", index) and index + 3 == len(pattern):
            parts.append("(?:/.*)?")
            index += 3
        elif pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        elif pattern[index] == "*":
            parts.append("[^/]*")
            index += 1
        elif pattern[index] == "?":
            parts.append("[^/]")
            index += 1
        else:
            parts.append(re.escape(pattern[index]))
            index += 1
    return re.compile("".join(parts))


def score_sub_lane(
    rule: SubLaneRule,
    code_paths: Sequence[str],
    description: str,
) -> tuple[int, tuple[str, ...], tuple[str, ...]]:
    matched_globs = tuple(
        pattern
        for pattern in rule.code_paths
        if any(glob_matches(path, pattern) for path in code_paths)
    )
    lowered = description.lower()
    matched_keywords = tuple(
        keyword for keyword in rule.keywords if keyword.strip().lower() in lowered
    )
    score = CODE_PATH_WEIGHT * len(matched_globs) + KEYWORD_WEIGHT * len(matched_keywords)
    return score, matched_globs, matched_keywords


def infer_sub_lane(
    code_paths: Iterable[str],
    description: str,
    taxonomy: LaneTaxonomy,
) -> LaneSuggestion | None:
    """Return the best-scoring lane, a parent-only suggestion, or ``None`` with no match."""

    paths = [path for path in code_paths if path.strip()]
    best: tuple[str, SubLaneRule, int, tuple[str, ...], tuple[str, ...]] | None = None
    for parent, rule in taxonomy.iter_rules():
        score, globs, keywords = score_sub_lane(rule, paths, description or "")
        if score > 0 and (best is None or score > best[2]):
            best = (parent, rule, score, globs, keywords)

    if best is None:
        return None

    parent, rule, score, globs, keywords = best
    if score < MIN_CONFIDENCE_SCORE:
        return LaneSuggestion(
            lane=parent,
            parent=parent,
            sub_lane=None,
            score=score,
            matched_code_paths=globs,
            matched_keywords=keywords,
        )
    return LaneSuggestion(
        lane=f"{parent}: {rule.name}",
        parent=parent,
        sub_lane=rule.name,
        score=score,
        matched_code_paths=globs,
        matched_keywords=keywords,
    )


__all__ = [
    "CODE_PATH_WEIGHT",
    "KEYWORD_WEIGHT",
    "LaneSuggestion",
    "MIN_CONFIDENCE_SCORE",
    "glob_matches",
    "infer_sub_lane",
    "score_sub_lane",
]

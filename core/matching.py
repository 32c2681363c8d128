from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from core.utils import to_int


_PUNCT = re.compile(r'[^\w\s]|_')
_SPACES = re.compile(r'\s+')


def normalize_title(title: Any) -> str:
    text = str(title or '').casefold()
    text = _PUNCT.sub('', text)
    return _SPACES.sub(' ', text).strip()


def _title_and_year(source: Any) -> tuple:
    if isinstance(source, dict):
        return source.get('title'), to_int(source.get('year'))
    return getattr(source, 'title', None), to_int(getattr(source, 'year', None))


@dataclass
class Match:
    record: Dict[str, Any]
    year_delta: Optional[int]


class MediaMatcher:
    """Correlates records for the same title across providers that share no key.

    The pool is indexed by normalized title once; each lookup is then a dict hit
    plus a scan of the (usually single) same-title bucket.
    """

    def __init__(self, pool: Iterable[Dict[str, Any]], year_tolerance: int = 1) -> None:
        self.year_tolerance = max(0, int(year_tolerance))
        self.pool: List[Dict[str, Any]] = [r for r in (pool or []) if isinstance(r, dict)]
        self._index: Dict[str, List[Dict[str, Any]]] = {}
        for rec in self.pool:
            key = normalize_title(rec.get('title'))
            if key:
                self._index.setdefault(key, []).append(rec)

    def __len__(self) -> int:
        return len(self.pool)

    def find_match(self, source: Any) -> Optional[Match]:
        title, year = _title_and_year(source)
        bucket = self._index.get(normalize_title(title))
        if not bucket:
            return None
        best: Optional[Match] = None
        for rec in bucket:
            rec_year = to_int(rec.get('year'))
            if year is None or rec_year is None:
                # Title-only match when either side lacks a year
                if best is None:
                    best = Match(rec, None)
                continue
            delta = abs(rec_year - year)
            if delta > self.year_tolerance:
                continue
            if best is None or best.year_delta is None or delta < best.year_delta:
                best = Match(rec, delta)
        return best

    def find_close_matches(self, title: Any, limit: int = 5, prefix_len: int = 5) -> List[Dict[str, Any]]:
        """Diagnostics only: records sharing a short normalized prefix with ``title``."""
        needle = normalize_title(title)[:prefix_len]
        if not needle:
            return []
        out: List[Dict[str, Any]] = []
        for key, bucket in self._index.items():
            if key[:prefix_len] == needle or needle in key:
                out.extend(bucket)
            if len(out) >= limit:
                break
        return out[:limit]


def find_match(source: Any, pool: Iterable[Dict[str, Any]], year_tolerance: int = 1) -> Optional[Match]:
    return MediaMatcher(pool, year_tolerance).find_match(source)


def find_close_matches(title: Any, pool: Iterable[Dict[str, Any]], limit: int = 5, prefix_len: int = 5) -> List[Dict[str, Any]]:
    return MediaMatcher(pool).find_close_matches(title, limit=limit, prefix_len=prefix_len)

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.errors import IntegrationNotConfiguredError, RuleDisabledError, RuleNotFoundError
from core.fields import FIELD_DEFINITIONS
from core.matching import MediaMatcher
from core.models import (
    NOT_CONFIGURED,
    Candidate,
    MediaItem,
    MediaType,
    Rule,
    ScanResult,
    ScanRun,
    ScanStatus,
)
from core.criteria import criteria_to_dict
from core.rules import evaluate
from core.utils import new_id, to_int, utcnow


Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class ScannerDeps:
    store: Any  # storage.store.MaintenanceStore
    # Mandatory catalog + playback snapshot; None when the integration is not configured
    fetch_library: Optional[Callable[[MediaType], Awaitable[Any]]]
    fetch_movie_manager: Optional[Fetcher]
    fetch_series_manager: Optional[Fetcher]
    fetch_request_manager: Optional[Fetcher]
    event_bus: Any  # expects .log(event, **fields)
    debug_logging: bool
    year_tolerance: int = 1
    progress_interval: int = 10
    close_match_limit: int = 5
    close_match_prefix: int = 5


_NAMESPACE_ATTRS: Dict[str, List[str]] = {}
for _f in FIELD_DEFINITIONS:
    if _f.namespace:
        _NAMESPACE_ATTRS.setdefault(_f.namespace, []).append(_f.attr)


def build_namespace(namespace: str, record: Dict[str, Any]) -> Dict[str, Any]:
    return {attr: record[attr] for attr in _NAMESPACE_ATTRS.get(namespace, []) if attr in record}


async def _fetch_optional(name: str, fetch: Optional[Fetcher], deps: ScannerDeps) -> Optional[List[Dict[str, Any]]]:
    if fetch is None:
        return None
    try:
        data = await fetch()
    except Exception as e:
        logging.warning(f'Scanner: {name} fetch failed; its fields resolve absent for this run: {e}')
        deps.event_bus.log('provider_fetch_failed', provider=name, error=str(e))
        return None
    if data is NOT_CONFIGURED or data is None:
        return None
    return [r for r in data if isinstance(r, dict)]


def _load_rule(rule_id: str, deps: ScannerDeps) -> Rule:
    rule = deps.store.get_rule(rule_id)
    if rule is None:
        raise RuleNotFoundError(rule_id)
    if not rule.enabled:
        raise RuleDisabledError(rule_id)
    if deps.fetch_library is None:
        raise IntegrationNotConfiguredError('Library')
    return rule


def _log_unmatched(provider: str, item: MediaItem, matcher: MediaMatcher, deps: ScannerDeps) -> None:
    if not deps.debug_logging:
        return
    close = matcher.find_close_matches(item.title, limit=deps.close_match_limit, prefix_len=deps.close_match_prefix)
    logging.debug(
        f"Scanner: no {provider} match for '{item.title}' ({item.year}); close: "
        f"{[(r.get('title'), r.get('year')) for r in close]}"
    )


def merge_items(
    rule: Rule,
    library: List[Dict[str, Any]],
    movies: Optional[List[Dict[str, Any]]],
    series: Optional[List[Dict[str, Any]]],
    requests: Optional[List[Dict[str, Any]]],
    deps: ScannerDeps,
) -> List[MediaItem]:
    movie_matcher = MediaMatcher(movies, deps.year_tolerance) if movies is not None else None
    series_matcher = MediaMatcher(series, deps.year_tolerance) if series is not None else None
    # TMDB movie and tv ids are separate numbering spaces
    if requests is not None:
        request_kind = 'movie' if rule.media_type == MediaType.MOVIE else 'tv'
        requests = [r for r in requests if r.get('mediaType') == request_kind]
    request_matcher = MediaMatcher(requests, deps.year_tolerance) if requests is not None else None
    requests_by_tmdb: Dict[int, Dict[str, Any]] = {}
    for req in requests or []:
        tmdb = to_int(req.get('tmdbId'))
        if tmdb is not None:
            requests_by_tmdb.setdefault(tmdb, req)

    items: List[MediaItem] = []
    for rec in library:
        data = dict(rec)
        data['mediaType'] = rule.media_type.value
        item = MediaItem.from_dict(data)
        item.tmdb_id = to_int(rec.get('tmdbId'))
        item.tvdb_id = to_int(rec.get('tvdbId'))

        if movie_matcher is not None and rule.media_type == MediaType.MOVIE:
            m = movie_matcher.find_match(item)
            if m is not None:
                item.movie_manager = build_namespace('movie_manager', m.record)
                item.movie_manager_id = to_int(m.record.get('id'))
                item.tmdb_id = item.tmdb_id or to_int(m.record.get('tmdbId'))
            else:
                _log_unmatched('movie manager', item, movie_matcher, deps)

        if series_matcher is not None and rule.media_type != MediaType.MOVIE:
            # Episodes match on their parent series
            source: Any = item
            if rec.get('seriesTitle'):
                source = {'title': rec['seriesTitle'], 'year': rec.get('seriesYear')}
            m = series_matcher.find_match(source)
            if m is not None:
                item.series_manager = build_namespace('series_manager', m.record)
                item.series_manager_id = to_int(m.record.get('id'))
                item.tvdb_id = item.tvdb_id or to_int(m.record.get('tvdbId'))
                item.tmdb_id = item.tmdb_id or to_int(m.record.get('tmdbId'))
            else:
                _log_unmatched('series manager', item, series_matcher, deps)

        if request_matcher is not None:
            req = requests_by_tmdb.get(item.tmdb_id) if item.tmdb_id is not None else None
            if req is None:
                m = request_matcher.find_match(item)
                req = m.record if m is not None else None
            if req is not None:
                item.request_manager = build_namespace('request_manager', req)
        items.append(item)
    return items


def build_candidate(scan_id: str, rule: Rule, item: MediaItem, flagged_at: datetime) -> Candidate:
    return Candidate(
        id=new_id(),
        scan_id=scan_id,
        rule_id=rule.id,
        media_type=rule.media_type,
        external_rating_key=item.rating_key,
        title=item.title,
        year=item.year,
        movie_manager_id=item.movie_manager_id,
        series_manager_id=item.series_manager_id,
        tmdb_id=item.tmdb_id,
        tvdb_id=item.tvdb_id,
        file_size=to_int(item.file_size),
        play_count=int(item.play_count or 0),
        last_watched_at=item.last_watched_at,
        added_at=item.added_at,
        matched_rule={
            'id': rule.id,
            'name': rule.name,
            'actionType': rule.action_type.value,
            'criteria': criteria_to_dict(rule.criteria),
        },
        flagged_at=flagged_at,
    )


async def scan(
    rule_id: str,
    deps: ScannerDeps,
    on_progress: Optional[Callable[[int], None]] = None,
    trigger: str = 'manual',
) -> ScanResult:
    rule = _load_rule(rule_id, deps)
    run = ScanRun(id=new_id(), rule_id=rule.id, status=ScanStatus.RUNNING, started_at=utcnow(), trigger=trigger)
    deps.store.save_scan(run)
    deps.event_bus.log('scan_started', rule_id=rule.id, scan_id=run.id, trigger=trigger)
    if deps.debug_logging:
        logging.info(f"Scanner: rule '{rule.name}' ({rule.id}) scan {run.id} started")

    try:
        library_res, movies, series, requests = await asyncio.gather(
            deps.fetch_library(rule.media_type),
            _fetch_optional('movie manager', deps.fetch_movie_manager if rule.media_type == MediaType.MOVIE else None, deps),
            _fetch_optional('series manager', deps.fetch_series_manager if rule.media_type != MediaType.MOVIE else None, deps),
            _fetch_optional('request manager', deps.fetch_request_manager, deps),
            return_exceptions=True,
        )
        if isinstance(library_res, BaseException):
            raise library_res
        if library_res is NOT_CONFIGURED or library_res is None:
            raise IntegrationNotConfiguredError('Library')
        library = [r for r in library_res if isinstance(r, dict)]
        items = merge_items(rule, library, movies, series, requests, deps)

        now = utcnow()
        total = len(items)
        interval = max(1, int(deps.progress_interval or 1))
        matched: List[MediaItem] = []
        for idx, item in enumerate(items, 1):
            if evaluate(item, rule.criteria, now):
                matched.append(item)
            if on_progress is not None and (idx % interval == 0 or idx == total):
                on_progress((idx * 100) // total)
        if on_progress is not None and total == 0:
            on_progress(100)

        candidates = [build_candidate(run.id, rule, item, now) for item in matched]
        deps.store.add_candidates(candidates)
        for c in candidates:
            deps.event_bus.log('candidate_flagged', rule_id=rule.id, scan_id=run.id, candidate_id=c.id, title=c.title)

        run.status = ScanStatus.COMPLETED
        run.completed_at = utcnow()
        run.items_scanned = total
        run.items_flagged = len(candidates)
        deps.store.save_scan(run)
        current = deps.store.get_rule(rule.id)
        if current is not None:
            current.last_run_at = run.completed_at
            deps.store.save_rule(current)
    except Exception as e:
        run.status = ScanStatus.FAILED
        run.completed_at = utcnow()
        run.error = str(e) or e.__class__.__name__
        deps.store.save_scan(run)
        deps.event_bus.log('scan_failed', rule_id=rule.id, scan_id=run.id, error=run.error)
        logging.error(f"Scanner: rule '{rule.name}' ({rule.id}) scan {run.id} failed: {run.error}")
        raise

    deps.event_bus.log(
        'scan_completed', rule_id=rule.id, scan_id=run.id, items_scanned=run.items_scanned, items_flagged=run.items_flagged
    )
    if deps.debug_logging:
        logging.info(f"Scanner: rule '{rule.name}' scanned {run.items_scanned} item(s), flagged {run.items_flagged}")
    return ScanResult(
        scan_id=run.id,
        items_scanned=run.items_scanned,
        items_flagged=run.items_flagged,
        candidate_ids=[c.id for c in candidates],
    )

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.models import MediaType
from core.utils import to_float, to_int


Request = Callable[..., Awaitable[Any]]

SECTION_TYPES = {
    MediaType.MOVIE: 'movie',
    MediaType.TV_SERIES: 'show',
    MediaType.EPISODE: 'show',
}
MEDIA_INFO_LENGTH = 10000


class TautulliError(RuntimeError):
    pass


async def _call(request: Request, endpoint: Dict[str, Any], cmd: str, **params) -> Any:
    query = {'apikey': endpoint['api_key'], 'cmd': cmd}
    query.update({k: v for k, v in params.items() if v is not None})
    resp = await request(f"{endpoint['api_url']}", params=query)
    if not isinstance(resp, dict):
        raise TautulliError(f'Tautulli {cmd} request failed')
    body = resp.get('response') or {}
    if body.get('result') != 'success':
        raise TautulliError(f"Tautulli {cmd} error: {body.get('message') or 'unknown'}")
    return body.get('data')


async def get_libraries(request: Request, endpoint: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = await _call(request, endpoint, 'get_libraries')
    return [d for d in (data or []) if isinstance(d, dict)]


async def get_library_media_info(
    request: Request,
    endpoint: Dict[str, Any],
    section_id: Any = None,
    rating_key: Any = None,
    length: int = MEDIA_INFO_LENGTH,
) -> List[Dict[str, Any]]:
    data = await _call(
        request, endpoint, 'get_library_media_info', section_id=section_id, rating_key=rating_key, length=length
    )
    rows = data.get('data') if isinstance(data, dict) else data
    return [r for r in (rows or []) if isinstance(r, dict)]


def _duration_minutes(ms: Any) -> Optional[int]:
    val = to_float(ms)
    return int(val // 60000) if val is not None else None


def _split(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v]
    if isinstance(value, str) and value:
        return [v.strip() for v in value.split(';') if v.strip()]
    return []


def row_to_record(row: Dict[str, Any], library_id: Any) -> Dict[str, Any]:
    last_played = to_int(row.get('last_played'))
    return {
        'ratingKey': str(row.get('rating_key') or ''),
        'title': row.get('title') or '',
        'year': to_int(row.get('year')),
        'libraryId': str(library_id) if library_id is not None else None,
        'playCount': to_int(row.get('play_count')) or 0,
        # Tautulli reports never-played items with an empty/zero timestamp
        'lastWatchedAt': last_played or None,
        'addedAt': to_int(row.get('added_at')) or None,
        'fileSize': to_int(row.get('file_size')),
        'filePath': row.get('file') or None,
        'duration': _duration_minutes(row.get('duration')),
        'resolution': str(row['video_resolution']).lower() if row.get('video_resolution') else None,
        'videoCodec': row.get('video_codec') or None,
        'audioCodec': row.get('audio_codec') or None,
        'container': row.get('container') or None,
        'bitrate': to_int(row.get('bitrate')),
        'rating': to_float(row.get('rating')),
        'audienceRating': to_float(row.get('audience_rating')),
        'contentRating': row.get('content_rating') or None,
        'genres': _split(row.get('genres')),
        'labels': _split(row.get('labels')),
        'seriesTitle': row.get('grandparent_title') or None,
    }


async def fetch_library(
    request: Request,
    endpoint: Dict[str, Any],
    media_type: MediaType,
    debug_logging: bool = False,
) -> List[Dict[str, Any]]:
    wanted = SECTION_TYPES[media_type]
    records: List[Dict[str, Any]] = []
    for lib in await get_libraries(request, endpoint):
        if lib.get('section_type') != wanted:
            continue
        section_id = lib.get('section_id')
        rows = await get_library_media_info(request, endpoint, section_id=section_id)
        if media_type == MediaType.EPISODE:
            rows = await _episodes(request, endpoint, rows)
        if debug_logging:
            logging.info(f"Tautulli: library '{lib.get('section_name')}' returned {len(rows)} item(s)")
        records.extend(row_to_record(r, section_id) for r in rows)
    return records


async def _episodes(request: Request, endpoint: Dict[str, Any], shows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # show -> seasons -> episodes
    out: List[Dict[str, Any]] = []
    for show in shows:
        seasons = await get_library_media_info(request, endpoint, rating_key=show.get('rating_key'))
        for season in seasons:
            for ep in await get_library_media_info(request, endpoint, rating_key=season.get('rating_key')):
                ep.setdefault('grandparent_title', show.get('title'))
                out.append(ep)
    return out

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List

from core.models import ActionResult
from core.utils import to_float, to_int


Request = Callable[..., Awaitable[Any]]


class ArrError(RuntimeError):
    pass


async def _tag_names(request: Request, endpoint: Dict[str, Any]) -> Dict[int, str]:
    resp = await request(f"{endpoint['api_url']}/tag")
    if not isinstance(resp, list):
        return {}
    return {t['id']: str(t.get('label') or t['id']) for t in resp if isinstance(t, dict) and 'id' in t}


async def fetch_movies(request: Request, endpoint: Dict[str, Any]) -> List[Dict[str, Any]]:
    resp = await request(f"{endpoint['api_url']}/movie")
    if not isinstance(resp, list):
        raise ArrError('Radarr movie list request failed')
    tags = await _tag_names(request, endpoint)
    out = []
    for m in resp:
        if not isinstance(m, dict):
            continue
        ratings = m.get('ratings') if isinstance(m.get('ratings'), dict) else {}
        tmdb = ratings.get('tmdb') if isinstance(ratings.get('tmdb'), dict) else {}
        out.append({
            'id': m.get('id'),
            'title': m.get('title'),
            'year': to_int(m.get('year')),
            'tmdbId': to_int(m.get('tmdbId')),
            'hasFile': bool(m.get('hasFile')),
            'monitored': bool(m.get('monitored')),
            'qualityProfileId': to_int(m.get('qualityProfileId')),
            'minimumAvailability': m.get('minimumAvailability'),
            'tmdbRating': to_float(tmdb.get('value')),
            'tags': [tags.get(t, str(t)) for t in (m.get('tags') or [])],
            'sizeOnDisk': to_int(m.get('sizeOnDisk')),
        })
    return out


async def fetch_series(request: Request, endpoint: Dict[str, Any]) -> List[Dict[str, Any]]:
    resp = await request(f"{endpoint['api_url']}/series")
    if not isinstance(resp, list):
        raise ArrError('Sonarr series list request failed')
    tags = await _tag_names(request, endpoint)
    out = []
    for s in resp:
        if not isinstance(s, dict):
            continue
        stats = s.get('statistics') if isinstance(s.get('statistics'), dict) else {}
        out.append({
            'id': s.get('id'),
            'title': s.get('title'),
            'year': to_int(s.get('year')),
            'tvdbId': to_int(s.get('tvdbId')),
            'tmdbId': to_int(s.get('tmdbId')),
            'monitored': bool(s.get('monitored')),
            'status': s.get('status'),
            'episodeFileCount': to_int(stats.get('episodeFileCount')),
            'percentOfEpisodes': to_float(stats.get('percentOfEpisodes')),
            'seasonCount': to_int(stats.get('seasonCount')),
            'tags': [tags.get(t, str(t)) for t in (s.get('tags') or [])],
            'sizeOnDisk': to_int(stats.get('sizeOnDisk')),
        })
    return out


async def delete_item(
    request: Request,
    endpoint: Dict[str, Any],
    kind: str,
    media_id: int,
    delete_files: bool,
) -> ActionResult:
    resp = await request(
        f"{endpoint['api_url']}/{kind}/{media_id}",
        params={'deleteFiles': 'true' if delete_files else 'false', 'addImportExclusion': 'false'},
        method='delete',
        ok_statuses=(404,),
    )
    if resp is None:
        return ActionResult(success=False, error=f'{kind} delete request failed')
    if isinstance(resp, dict) and resp.get('status') == 404:
        return ActionResult(success=True, not_found=True)
    return ActionResult(success=True)


async def unmonitor_item(request: Request, endpoint: Dict[str, Any], kind: str, media_id: int) -> ActionResult:
    current = await request(f"{endpoint['api_url']}/{kind}/{media_id}", ok_statuses=(404,))
    if current is None:
        return ActionResult(success=False, error=f'{kind} lookup failed')
    if current.get('status') == 404:
        return ActionResult(success=True, not_found=True)
    id_key = 'movieIds' if kind == 'movie' else 'seriesIds'
    resp = await request(
        f"{endpoint['api_url']}/{kind}/editor",
        json_data={id_key: [media_id], 'monitored': False},
        method='put',
    )
    if resp is None:
        return ActionResult(success=False, error=f'{kind} unmonitor request failed')
    return ActionResult(success=True)

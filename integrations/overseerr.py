from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.utils import to_int


Request = Callable[..., Awaitable[Any]]

PAGE_SIZE = 100
REQUEST_STATUS = {1: 'pending', 2: 'approved', 3: 'declined'}
MEDIA_AVAILABLE = 5


class OverseerrError(RuntimeError):
    pass


def _year(date: Any) -> Optional[int]:
    if isinstance(date, str) and len(date) >= 4:
        return to_int(date[:4])
    return None


async def _details(request: Request, endpoint: Dict[str, Any], kind: str, tmdb_id: int) -> Dict[str, Any]:
    resp = await request(f"{endpoint['api_url']}/{kind}/{tmdb_id}", ok_statuses=(404,))
    if not isinstance(resp, dict) or resp.get('status') == 404:
        return {}
    if kind == 'movie':
        return {'title': resp.get('title'), 'year': _year(resp.get('releaseDate'))}
    return {'title': resp.get('name'), 'year': _year(resp.get('firstAirDate'))}


async def fetch_requests(request: Request, endpoint: Dict[str, Any], page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
    """All media requests with titles resolved; one details lookup per distinct media."""
    out: List[Dict[str, Any]] = []
    titles: Dict[tuple, Dict[str, Any]] = {}
    skip = 0
    while True:
        resp = await request(
            f"{endpoint['api_url']}/request", params={'take': page_size, 'skip': skip, 'filter': 'all'}
        )
        if not isinstance(resp, dict):
            raise OverseerrError('Overseerr request list failed')
        results = [r for r in (resp.get('results') or []) if isinstance(r, dict)]
        for r in results:
            media = r.get('media') if isinstance(r.get('media'), dict) else {}
            kind = 'movie' if r.get('type') == 'movie' else 'tv'
            tmdb_id = to_int(media.get('tmdbId'))
            if tmdb_id is not None and (kind, tmdb_id) not in titles:
                titles[(kind, tmdb_id)] = await _details(request, endpoint, kind, tmdb_id)
            info = titles.get((kind, tmdb_id), {}) if tmdb_id is not None else {}
            user = r.get('requestedBy') if isinstance(r.get('requestedBy'), dict) else {}
            status = REQUEST_STATUS.get(to_int(r.get('status')), 'pending')
            if to_int(media.get('status')) == MEDIA_AVAILABLE:
                status = 'available'
            out.append({
                'id': r.get('id'),
                'title': info.get('title'),
                'year': info.get('year'),
                'tmdbId': tmdb_id,
                'tvdbId': to_int(media.get('tvdbId')),
                'mediaType': kind,
                'requestedBy': user.get('displayName') or user.get('plexUsername') or user.get('email'),
                'requestedAt': r.get('createdAt'),
                'status': status,
            })
        page_info = resp.get('pageInfo') if isinstance(resp.get('pageInfo'), dict) else {}
        skip += page_size
        if not results or skip >= (to_int(page_info.get('results')) or 0):
            break
    return out

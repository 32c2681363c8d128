from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from core.actions import MOVIE_MANAGER, SERIES_MANAGER
from core.config import ConfigAccessor
from core.models import NOT_CONFIGURED, ActionResult, MediaType
from integrations import arr, overseerr, tautulli
from integrations.services import RequestManager, is_service_configured


# Manager service name -> (config service, *arr resource kind)
MANAGER_SERVICES = {
    MOVIE_MANAGER: ('Radarr', 'movie'),
    SERIES_MANAGER: ('Sonarr', 'series'),
}


class Providers:
    """Binds the provider clients to one HTTP session and per-service throttling."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        accessor: ConfigAccessor,
        *,
        request_manager: Optional[RequestManager] = None,
        request_timeout: int = 10,
        retry_attempts: int = 2,
        retry_backoff: float = 1.0,
        debug_logging: bool = False,
    ) -> None:
        self.session = session
        self.accessor = accessor
        self.request_manager = request_manager or RequestManager()
        self.request_timeout = request_timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.debug_logging = debug_logging

    def endpoint(self, service_name: str) -> Dict[str, Any]:
        return self.accessor.service_endpoint(service_name)

    def configured(self, service_name: str) -> bool:
        return is_service_configured(self.endpoint(service_name))

    def request_for(self, service_name: str, header_key: bool = True) -> Callable[..., Awaitable[Any]]:
        ep = self.endpoint(service_name)
        api_key = ep.get('api_key') if header_key else None

        async def _request(url: str, **kwargs) -> Any:
            return await self.request_manager.throttled_request(
                self.session,
                service_name,
                url,
                api_key,
                min_interval_ms=float(self.accessor.get_service_setting(service_name, 'min_request_interval_ms', 0) or 0),
                max_concurrent=int(self.accessor.get_service_setting(service_name, 'max_concurrent_requests', 0) or 0),
                request_timeout=self.request_timeout,
                retry_attempts=self.retry_attempts,
                retry_backoff=self.retry_backoff,
                debug_logging=self.debug_logging,
                **kwargs,
            )
        return _request

    # Scanner fetchers
    def library_fetcher(self) -> Optional[Callable[[MediaType], Awaitable[List[Dict[str, Any]]]]]:
        if not self.configured('Tautulli'):
            return None
        # Tautulli authenticates with the apikey query parameter
        request = self.request_for('Tautulli', header_key=False)
        endpoint = self.endpoint('Tautulli')

        async def _fetch(media_type: MediaType) -> List[Dict[str, Any]]:
            return await tautulli.fetch_library(request, endpoint, media_type, self.debug_logging)
        return _fetch

    async def fetch_movie_manager(self) -> Any:
        if not self.configured('Radarr'):
            return NOT_CONFIGURED
        return await arr.fetch_movies(self.request_for('Radarr'), self.endpoint('Radarr'))

    async def fetch_series_manager(self) -> Any:
        if not self.configured('Sonarr'):
            return NOT_CONFIGURED
        return await arr.fetch_series(self.request_for('Sonarr'), self.endpoint('Sonarr'))

    async def fetch_request_manager(self) -> Any:
        if not self.configured('Overseerr'):
            return NOT_CONFIGURED
        return await overseerr.fetch_requests(self.request_for('Overseerr'), self.endpoint('Overseerr'))

    # Action targets
    def _manager(self, service: str):
        if service not in MANAGER_SERVICES:
            raise ValueError(f'unknown media manager: {service}')
        return MANAGER_SERVICES[service]

    async def delete_media(self, service: str, media_id: int, delete_files: bool) -> ActionResult:
        name, kind = self._manager(service)
        if not self.configured(name):
            return ActionResult(success=False, error=f'{name} is not configured')
        result = await arr.delete_item(self.request_for(name), self.endpoint(name), kind, media_id, delete_files)
        if result.not_found and self.debug_logging:
            logging.info(f'{name}: {kind} {media_id} already gone')
        return result

    async def unmonitor_media(self, service: str, media_id: int) -> ActionResult:
        name, kind = self._manager(service)
        if not self.configured(name):
            return ActionResult(success=False, error=f'{name} is not configured')
        return await arr.unmonitor_item(self.request_for(name), self.endpoint(name), kind, media_id)

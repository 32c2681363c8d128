from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import aiohttp


# Transient failures worth another attempt
NETWORK_ERRORS = (aiohttp.ClientConnectorError, aiohttp.ClientOSError, aiohttp.ServerTimeoutError, asyncio.TimeoutError)


@dataclass
class RetryPolicy:
    attempts: int = 2
    backoff: float = 1.0

    def delay(self, attempt: int) -> float:
        # Exponential with up to 25% jitter
        return self.backoff * (2 ** (attempt - 1)) * (1 + random.uniform(0, 0.25))


def _retryable(error: Exception) -> bool:
    if isinstance(error, aiohttp.ClientResponseError):
        return bool(error.status) and (error.status >= 500 or error.status == 429)
    return isinstance(error, NETWORK_ERRORS)


def _describe(error: Exception) -> str:
    if isinstance(error, aiohttp.ClientResponseError):
        return f'error {error.status}: {error.message}'
    if isinstance(error, NETWORK_ERRORS):
        return f'network/timeout: {error}'
    return f'unexpected error: {error}'


class RequestManager:
    """Per-service pacing (minimum gap between calls) and concurrency caps."""

    def __init__(self) -> None:
        self._last_call: Dict[str, float] = {}
        self._slots: Dict[str, asyncio.Semaphore] = {}

    async def _pace(self, service_name: str, min_interval_ms: float) -> None:
        loop = asyncio.get_running_loop()
        wait = self._last_call.get(service_name, 0.0) + min_interval_ms / 1000.0 - loop.time()
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_call[service_name] = loop.time()

    def _slot(self, service_name: str, max_concurrent: int) -> asyncio.Semaphore:
        if service_name not in self._slots:
            self._slots[service_name] = asyncio.Semaphore(max_concurrent)
        return self._slots[service_name]

    async def throttled_request(
        self,
        session: aiohttp.ClientSession,
        service_name: str,
        url: str,
        api_key: Optional[str],
        *,
        min_interval_ms: float = 0.0,
        max_concurrent: int = 0,
        **request_kwargs: Any,
    ):
        if min_interval_ms and min_interval_ms > 0:
            await self._pace(service_name, min_interval_ms)
        if not max_concurrent or max_concurrent <= 0:
            return await make_api_request(session, url, api_key, **request_kwargs)
        async with self._slot(service_name, max_concurrent):
            return await make_api_request(session, url, api_key, **request_kwargs)


def is_service_configured(service_config: Dict[str, Any]) -> bool:
    return bool(service_config.get('api_url')) and bool(service_config.get('api_key'))


async def _read_body(response: aiohttp.ClientResponse) -> Any:
    if response.status == 204 or 'application/json' not in response.headers.get('Content-Type', ''):
        return None
    try:
        return await response.json()
    except (aiohttp.ContentTypeError, ValueError):
        return None


async def make_api_request(
    session: aiohttp.ClientSession,
    url: str,
    api_key: Optional[str],
    *,
    params: Optional[Dict[str, Any]] = None,
    json_data: Any = None,
    method: str = 'get',
    ok_statuses: Iterable[int] = (),
    request_timeout: int = 10,
    retry_attempts: int = 2,
    retry_backoff: float = 1.0,
    debug_logging: bool = False,
):
    """Returns parsed JSON, ``{'status': code}`` for bodiless or expected-error
    responses (``ok_statuses``), or None once retries are exhausted."""
    label = f'HTTP {method.upper()} {url}'
    headers = {'X-Api-Key': api_key} if api_key else {}
    accepted = set(ok_statuses or ())
    policy = RetryPolicy(retry_attempts, retry_backoff)
    timeout = aiohttp.ClientTimeout(total=request_timeout)

    attempt = 0
    while True:
        try:
            async with session.request(method, url, headers=headers, params=params, json=json_data, timeout=timeout) as response:
                if response.status in accepted:
                    if debug_logging:
                        logging.info(f'{label} -> {response.status} (accepted)')
                    return {'status': response.status}
                response.raise_for_status()
                data = await _read_body(response)
                if data is not None:
                    return data
                if debug_logging:
                    logging.info(f'{label} -> {response.status} (no content)')
                return {'status': response.status}
        except aiohttp.ClientError as e:
            error: Exception = e
        except asyncio.TimeoutError as e:
            error = e

        if not _retryable(error) or attempt >= policy.attempts:
            suffix = f' after {attempt} retries' if attempt else ''
            logging.error(f'{label} failed{suffix}: {_describe(error)}')
            return None
        attempt += 1
        sleep_for = policy.delay(attempt)
        if debug_logging:
            logging.warning(f'{label} {_describe(error)}; retrying in {sleep_for:.2f}s (attempt {attempt}/{policy.attempts})')
        await asyncio.sleep(sleep_for)

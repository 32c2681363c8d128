import asyncio

import pytest
from aioresponses import aioresponses
import aiohttp
from yarl import URL

from integrations.services import make_api_request


pytestmark = pytest.mark.asyncio


async def _call(url, method='get', payload=None, ok_statuses=(), api_key="dummy"):
    async with aiohttp.ClientSession() as session:
        return await make_api_request(
            session,
            url,
            api_key=api_key,
            method=method,
            json_data=payload,
            ok_statuses=ok_statuses,
            retry_backoff=0,
        )


async def test_make_api_request_success_json():
    url = "http://example.com/api"
    with aioresponses() as m:
        m.get(url, payload={"ok": True})
        resp = await _call(url)
        assert resp == {"ok": True}


async def test_make_api_request_success_no_content():
    url = "http://example.com/api/no-content"
    with aioresponses() as m:
        m.delete(url, status=204)
        resp = await _call(url, method='delete')
        assert resp == {"status": 204}


async def test_make_api_request_retries_then_success():
    url = "http://example.com/api/retry"
    with aioresponses() as m:
        m.get(url, status=500)
        m.get(url, payload={"ok": True})
        resp = await _call(url)
        assert resp == {"ok": True}


async def test_make_api_request_non_retriable_error():
    url = "http://example.com/api/not-found"
    with aioresponses() as m:
        m.get(url, status=404)
        resp = await _call(url)
        assert resp is None


async def test_make_api_request_accepted_status_is_returned():
    url = "http://example.com/api/movie/7"
    with aioresponses() as m:
        m.delete(url, status=404)
        resp = await _call(url, method='delete', ok_statuses=(404,))
        assert resp == {"status": 404}


async def test_make_api_request_timeout_retries():
    url = "http://example.com/api/timeout"

    # Simulate a timeout followed by success
    with aioresponses() as m:
        m.get(url, exception=asyncio.TimeoutError())
        m.get(url, payload={"ok": True})
        resp = await _call(url)
        assert resp == {"ok": True}


async def test_make_api_request_sends_api_key_header_only_when_given():
    url = "http://example.com/api/headers"
    with aioresponses() as m:
        m.get(url, payload=[])
        m.get(url, payload=[])
        await _call(url, api_key='secret')
        await _call(url, api_key=None)
        calls = m.requests[('GET', URL(url))]
        assert calls[0].kwargs['headers'] == {'X-Api-Key': 'secret'}
        assert calls[1].kwargs['headers'] == {}

from urllib.parse import parse_qs

import httpx
import pytest

from diary_api.errors import CaptchaFailed, CaptchaUnavailable
from diary_api.turnstile import require_turnstile, verify_turnstile
from tests.utils import build_mock_transport


@pytest.mark.asyncio
async def test_verify_turnstile_posts_form():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/turnstile/v0/siteverify"
        form = parse_qs(request.content.decode())
        assert form == {"secret": ["s3cret"], "response": ["tok"], "remoteip": ["203.0.113.7"]}
        return httpx.Response(200, json={"success": True})

    transport = build_mock_transport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        assert await verify_turnstile(client, "s3cret", "tok", "203.0.113.7")


@pytest.mark.asyncio
async def test_require_turnstile_rejects_failed_challenge():
    transport = build_mock_transport(lambda request: httpx.Response(200, json={"success": False}))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(CaptchaFailed):
            await require_turnstile(client, "s3cret", "tok")


@pytest.mark.asyncio
async def test_require_turnstile_needs_token_when_configured():
    with pytest.raises(CaptchaFailed):
        await require_turnstile(None, "s3cret", None)


@pytest.mark.asyncio
async def test_require_turnstile_skipped_without_secret():
    await require_turnstile(None, None, None)


@pytest.mark.asyncio
async def test_turnstile_upstream_error():
    transport = build_mock_transport(lambda request: httpx.Response(500, json={"error": "boom"}))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(CaptchaUnavailable):
            await require_turnstile(client, "s3cret", "tok")

import logging

import httpx

from .config import TURNSTILE_SECRET_KEY, TURNSTILE_TIMEOUT, TURNSTILE_VERIFY_URL
from .errors import CaptchaFailed, CaptchaUnavailable

_logger = logging.getLogger(__name__)
_turnstile_client: httpx.AsyncClient | None = None


async def startup_turnstile_client() -> None:
    global _turnstile_client
    if _turnstile_client is None:
        _turnstile_client = httpx.AsyncClient(timeout=httpx.Timeout(TURNSTILE_TIMEOUT))


async def shutdown_turnstile_client() -> None:
    global _turnstile_client
    if _turnstile_client is not None:
        await _turnstile_client.aclose()
        _turnstile_client = None


def get_turnstile_client() -> httpx.AsyncClient | None:
    return _turnstile_client


def get_turnstile_secret() -> str | None:
    return TURNSTILE_SECRET_KEY


async def verify_turnstile(
    client: httpx.AsyncClient,
    secret: str,
    token: str,
    remote_ip: str | None = None,
) -> bool:
    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip
    try:
        response = await client.post(TURNSTILE_VERIFY_URL, data=data)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        _logger.warning("Turnstile verification request failed: %s", exc)
        raise CaptchaUnavailable() from exc
    return bool(payload.get("success"))


async def require_turnstile(
    client: httpx.AsyncClient | None,
    secret: str | None,
    token: str | None,
    remote_ip: str | None = None,
) -> None:
    if not secret:
        return
    if not token:
        raise CaptchaFailed("Turnstile token required")
    if client is None:
        raise CaptchaUnavailable("Turnstile client is not initialized")
    if not await verify_turnstile(client, secret, token, remote_ip):
        raise CaptchaFailed()

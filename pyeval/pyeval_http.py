from typing import Optional

import httpx


class FetchError(RuntimeError):
    def __init__(self, url: str, status: int, reason: str = ""):
        self.url = url
        self.status = status
        msg = f"HTTP {status} for {url}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


def _text_or_raise(url: str, resp) -> str:
    if 200 <= resp.status_code < 300:
        return resp.text
    raise FetchError(url, int(resp.status_code), getattr(resp, "reason_phrase", "") or "")


async def fetch_text(url: str, *, timeout: Optional[float] = None) -> str:
    """
    GET `url` and return the body as text.

    Non-2xx responses raise FetchError carrying the status. Transport errors
    propagate as httpx exceptions. A timeout of None waits indefinitely.
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        resp = await client.get(url)
        return _text_or_raise(url, resp)


def fetch_text_sync(url: str, *, timeout: Optional[float] = None) -> str:
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        resp = client.get(url)
        return _text_or_raise(url, resp)

"""
Parallel race fetcher

Issues one bounded-timeout GET per candidate host at the same time and
returns the first validated JSON payload. Completion order decides the
winner, not list order: the lowest-latency mirror wins.

"Someone won" and "everyone finished" are tracked as separate conditions.
Losing branches are cancelled once a winner is known or the overall
deadline (timeout + grace) passes; a branch that fails after the winner was
chosen can no longer affect the result.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Sequence, TypeVar
from urllib.parse import quote

import httpx

from . import config
from .validation import ResponseValidator, default_validator, parse_json_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Characters left unescaped by JavaScript's encodeURIComponent; proxies
# expect the target URL encoded exactly that way.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def proxied_url(proxy: str, url: str) -> str:
    """Prefix a percent-encoded target URL with a relay prefix ('' = direct)."""
    if not proxy:
        return url
    return f"{proxy}{quote(url, safe=_URI_COMPONENT_SAFE)}"


@dataclass
class RaceResult(Generic[T]):
    data: T
    host: str


async def first_success(
    branches: Dict[str, Awaitable[Optional[T]]],
    deadline: float,
) -> Optional[RaceResult[T]]:
    """
    Run all branches concurrently; return the first non-None result.

    Args:
        branches: host label -> awaitable returning a payload or None.
        deadline: overall seconds before giving up on every branch.
    """
    if not branches:
        return None

    loop = asyncio.get_running_loop()
    tasks = {asyncio.ensure_future(aw): host for host, aw in branches.items()}
    pending = set(tasks)
    expires_at = loop.time() + deadline

    try:
        while pending:
            remaining = expires_at - loop.time()
            if remaining <= 0:
                logger.debug(f"Race deadline of {deadline:.2f}s reached with {len(pending)} branches pending")
                break
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    logger.debug(f"Race branch {tasks[task]} raised: {exc!r}")
                    continue
                result = task.result()
                if result is not None:
                    return RaceResult(data=result, host=tasks[task])
        return None
    finally:
        for task in pending:
            task.cancel()


class RaceFetcher:
    """Concurrent first-valid-wins JSON fetcher over a shared httpx client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        validator: ResponseValidator = default_validator,
        grace_seconds: float = config.RACE_GRACE_SECONDS,
    ):
        self.client = client
        self.validator = validator
        self.grace_seconds = grace_seconds

    async def fetch_json(
        self,
        url: str,
        timeout: float,
        accept: Optional[Callable[[Any], bool]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Any]:
        """
        Single bounded GET. Every failure mode (timeout, transport error,
        non-2xx, failure-page body, malformed JSON, error field, rejected by
        accept) returns None.
        """
        try:
            resp = await asyncio.wait_for(self.client.get(url, headers=headers), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Timed out after {timeout}s: {url[:120]}")
            return None
        except httpx.HTTPError as e:
            logger.debug(f"Request failed: {url[:120]}: {e}")
            return None

        if not resp.is_success:
            logger.debug(f"HTTP {resp.status_code}: {url[:120]}")
            return None

        text = resp.text
        if not self.validator.is_valid(text):
            logger.debug(f"Failure page detected: {url[:120]}")
            return None

        data = parse_json_payload(text)
        if data is None:
            return None
        if accept is not None and not accept(data):
            return None
        return data

    async def race(
        self,
        endpoint_builder: Callable[[str], str],
        candidate_hosts: Sequence[str],
        proxy: str = "",
        timeout: float = 2.0,
        accept: Optional[Callable[[Any], bool]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[RaceResult[Any]]:
        """
        Race one request per host through `proxy` (or directly when empty).

        Returns RaceResult(data, host) for the first host to produce a valid
        payload, or None when all fail or `timeout + grace` elapses.
        """
        branches: Dict[str, Awaitable[Optional[Any]]] = {}
        for host in dict.fromkeys(candidate_hosts):
            url = proxied_url(proxy, endpoint_builder(host))
            branches[host] = self.fetch_json(url, timeout, accept=accept, headers=headers)

        result = await first_success(branches, timeout + self.grace_seconds)
        if result is not None:
            via = f" via {proxy}" if proxy else ""
            logger.info(f"✅ Race won by {result.host}{via}")
        return result

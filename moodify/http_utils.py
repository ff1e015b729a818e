from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from time import perf_counter

import httpx

from .errors import RateLimited, RequestFailed, TransportFailure
from .metrics import HTTP_LATENCY, HTTP_RATE_LIMITED, HTTP_REQUESTS
from .settings import MoodifySettings

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 5.0


def make_http_client(
    settings: MoodifySettings, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Build the shared async client with the configured single-shot timeout."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout, connect=settings.http_connect_timeout),
        transport=transport,
    )


class RateLimitedRequester:
    """Send one HTTP request, retrying only on 429.

    Non-2xx responses other than 429 are returned as ``RequestFailed`` on the
    first occurrence. Any ``httpx.RequestError``, including redirect loops and
    undecodable bodies, becomes ``TransportFailure``. Neither is retried here.
    Callers attach their own auth headers.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        service: str = "http",
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.client = client
        self.service = service
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def send(
        self,
        request: httpx.Request,
        *,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> httpx.Response:
        retries_allowed = self.max_retries if max_retries is None else max_retries
        delay = self.retry_delay if retry_delay is None else retry_delay
        retries = 0

        while True:
            t0 = perf_counter()
            try:
                response = await self.client.send(request)
            except httpx.RequestError as e:
                HTTP_REQUESTS.labels(self.service, "transport_error").inc()
                logger.warning(
                    "http.transport_error",
                    extra={
                        "meta": {
                            "service": self.service,
                            "method": request.method,
                            "url": str(request.url.copy_with(query=None)),
                            "error": str(e),
                            "error_type": type(e).__name__,
                        }
                    },
                )
                raise TransportFailure(str(e) or type(e).__name__) from e
            finally:
                HTTP_LATENCY.labels(self.service).observe(perf_counter() - t0)

            status = response.status_code
            HTTP_REQUESTS.labels(self.service, str(status)).inc()

            if status == 429:
                HTTP_RATE_LIMITED.labels(self.service).inc()
                if retries >= retries_allowed:
                    logger.warning(
                        "http.rate_limited_exhausted",
                        extra={
                            "meta": {
                                "service": self.service,
                                "path": request.url.path,
                                "retries": retries,
                            }
                        },
                    )
                    raise RateLimited(retries)
                retries += 1
                logger.info(
                    "http.rate_limited_retry",
                    extra={
                        "meta": {
                            "service": self.service,
                            "path": request.url.path,
                            "retry": retries,
                            "delay": delay,
                            "retry_after_header": response.headers.get("Retry-After"),
                        }
                    },
                )
                await response.aclose()
                await self._sleep(delay)
                continue

            if not 200 <= status < 300:
                body = response.text
                logger.warning(
                    "http.status_error",
                    extra={
                        "meta": {
                            "service": self.service,
                            "method": request.method,
                            "path": request.url.path,
                            "status": status,
                            "body": body[:500],
                        }
                    },
                )
                raise RequestFailed(status, body)

            logger.debug(
                "http.ok",
                extra={
                    "meta": {
                        "service": self.service,
                        "method": request.method,
                        "path": request.url.path,
                        "status": status,
                        "retries": retries,
                    }
                },
            )
            return response


__all__ = ["RateLimitedRequester", "make_http_client", "SleepFunc"]

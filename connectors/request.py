"""
Provider request engine.

``execute()`` issues one authenticated call against a provider and runs the
retry ladder on failure, in this order:

  1. retry budget exhausted            → raise the underlying error
  2. invalid credentials + refreshable → refresh the token (single-flight
                                         through ``User.should_refresh``),
                                         then retry
  3. timeout                           → Fibonacci backoff, then retry
  4. anything else                     → raise

Whatever escapes the ladder goes through one last check: when the
provider's ``is_invalid_creds_error`` recognises it, the source is marked
``disconnected``, persisted, and ``DisconnectedSource`` is raised instead.

A failed refresh is the exception: the source is already back to
``connected`` and the error that triggered the refresh is raised, chained
to the refresh failure.  Only a refresh rejected for invalid credentials
(a revoked refresh token) disconnects the source.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from connectors.base import ProviderSpec, RequestOptions
from connectors.token_manager import RefreshSignal, claim_refresh, refresh_source
from database.models import SourceStatus
from database.users import User
from utils.errors import DisconnectedSource, ProviderHTTPError

logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Shared outbound client, created on first use."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(follow_redirects=True)
    return _http_client


def set_http_client(client: Optional[httpx.AsyncClient]) -> None:
    global _http_client
    _http_client = client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class RequestContext:
    """
    Per-request state shared by the routes and the engine.

    ``user`` is the request's single handle on the current user: the engine
    replaces it after a reload so callers always see the freshest tokens.
    """

    user: Optional[User]
    id: str = field(default_factory=new_request_id)
    nb_reqs_out: int = 0
    http: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        return self.http or get_http_client()


class RefreshFailed(Exception):
    """Carries the error that triggered a refresh which then failed (``__cause__``)."""

    def __init__(self, trigger: Exception):
        self.trigger = trigger
        super().__init__(str(trigger))


def backoff_delay_ms(attempt: int, delay_ms: int) -> int:
    """``F(attempt) * delay_ms``: d, d, 2d, 3d, 5d, … for attempts 1, 2, 3, …"""
    a, b = 0, 1
    for _ in range(max(attempt, 1) - 1):
        a, b = b, a + b
    return b * delay_ms


def decode_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


async def execute(
    ctx: RequestContext,
    spec: ProviderSpec,
    source_id: str,
    path: str,
    options: Optional[RequestOptions] = None,
    *,
    base_url: Optional[str] = None,
) -> Any:
    """
    Call ``path`` on the provider with the source's current access token.

    Parameters
    ----------
    ctx : RequestContext
        Carries the user whose ``source_id`` credentials are used.
    spec : ProviderSpec
        Provider capabilities (auth injection, timeouts, refresh…).
    path : str
        Relative to ``base_url`` (defaults to ``spec.base_url``).
    options : dict
        ``{method, params, data, json, headers, timeout}``, merged over the
        provider's own options.

    Returns
    -------
    The decoded body: JSON when the provider says so, text otherwise,
    ``None`` for empty responses.
    """
    url = (base_url or spec.base_url) + path
    attempt = 0
    try:
        while True:
            try:
                return await _send(ctx, spec, source_id, url, options)
            except (ProviderHTTPError, httpx.HTTPError) as err:
                attempt = await _prepare_retry(ctx, spec, source_id, err, attempt)
    except RefreshFailed as failed:
        refresh_err = failed.__cause__
        if refresh_err is not None and spec.is_invalid_creds_error(refresh_err):
            await disconnect_source(ctx, source_id, refresh_err)
        raise failed.trigger from refresh_err
    except (ProviderHTTPError, httpx.HTTPError) as err:
        if spec.is_invalid_creds_error(err):
            await disconnect_source(ctx, source_id, err)
        raise


async def _send(
    ctx: RequestContext,
    spec: ProviderSpec,
    source_id: str,
    url: str,
    options: Optional[RequestOptions],
) -> Any:
    source = ctx.user.get_source(source_id) if ctx.user else None
    access_token = source.access_token if source else None
    merged = spec.build_request_options(access_token, dict(options or {}))
    method = merged.get("method", "GET").upper()

    ctx.nb_reqs_out += 1
    logger.debug("%s OUT `%d` %s %s", ctx.id, ctx.nb_reqs_out, method, url)

    response = await ctx.client.request(
        method,
        url,
        params=merged.get("params"),
        data=merged.get("data"),
        json=merged.get("json"),
        headers=merged.get("headers"),
        timeout=merged.get("timeout", spec.timeout),
    )
    body = decode_body(response)
    if response.is_error:
        raise ProviderHTTPError(response.status_code, body, url, method)
    return body


async def _prepare_retry(
    ctx: RequestContext,
    spec: ProviderSpec,
    source_id: str,
    err: Exception,
    attempt: int,
) -> int:
    """Wait / refresh before the next attempt and return its number, or raise ``err``."""
    next_attempt = attempt + 1

    if next_attempt >= spec.max_attempts:
        user_id = ctx.user.id if ctx.user else None
        logger.error(
            "%s exhausted retry ttl for user `%s` and source `%s`",
            ctx.id, user_id, source_id,
        )
        raise err

    if spec.use_refresh_token and spec.is_invalid_creds_error(err):
        await _try_refreshing_token(ctx, spec, source_id, err, next_attempt)
        return next_attempt

    if isinstance(err, httpx.TimeoutException):
        await _delay(ctx, spec, next_attempt, "timeout")
        return next_attempt

    raise err


async def _try_refreshing_token(
    ctx: RequestContext,
    spec: ProviderSpec,
    source_id: str,
    err: Exception,
    attempt: int,
) -> None:
    if await claim_refresh(ctx.user, source_id) == RefreshSignal.ALREADY_REFRESHING:
        await _delay(ctx, spec, attempt, "already refreshing token")
        # Another worker owns the refresh: pick up its new tokens
        ctx.user = await ctx.user.reload()
        return
    try:
        await refresh_source(ctx, spec, source_id)
    except Exception as refresh_err:
        raise RefreshFailed(err) from refresh_err


async def _delay(ctx: RequestContext, spec: ProviderSpec, attempt: int, reason: str) -> None:
    delay = backoff_delay_ms(attempt, spec.backoff_delay_ms)
    logger.debug("%s `%s`, retrying in %dms", ctx.id, reason, delay)
    await asyncio.sleep(delay / 1000)


async def disconnect_source(ctx: RequestContext, source_id: str, err: Exception) -> None:
    """Persist ``source_id`` as disconnected and raise ``DisconnectedSource``."""
    source = ctx.user.get_source(source_id) if ctx.user else None
    if source is not None:
        source.status = SourceStatus.DISCONNECTED
        ctx.user.set_source(source)
        await ctx.user.save()
    logger.warning("%s disconnected source `%s`: %s", ctx.id, source_id, err)
    raise DisconnectedSource(source_id) from err

"""
Route-level caching and invalidation for FastAPI endpoints.

``cache_response`` serves GET endpoints from the cache store and records
their successful JSON payloads on a miss. ``invalidate_cache`` clears cache
regions once a mutating endpoint has produced a successful result, before
the response is handed back to the framework.

Both decorate endpoint functions that declare a ``Request`` parameter::

    @app.get("/api/orders")
    @cache_response(cache, ttl=LIST_TTL, namespace="orders")
    async def list_orders(request: Request): ...
"""

import functools
import inspect
import json
from urllib.parse import urlencode
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from shared.logging import get_logger
from .store import MISSING, CacheStore


TagSource = Union[Sequence[str], Callable[[Request], Iterable[str]]]
Hook = Callable[[Request, Any], None]

logger = get_logger("marketplace.cache_middleware")


def default_key_generator(request: Request) -> str:
    """``<METHOD>:<path>`` plus the query parameters, sorted, when present."""
    key = f"{request.method}:{request.url.path}"
    params = sorted(request.query_params.multi_items())
    if params:
        key = f"{key}?{urlencode(params)}"
    return key


def _always(request: Request) -> bool:
    return True


def _find_request_param(endpoint: Callable) -> str:
    for name, param in inspect.signature(endpoint).parameters.items():
        if param.annotation is Request or param.annotation == "Request":
            return name
    raise TypeError(f"{endpoint.__qualname__} must declare a 'Request' parameter to be cached")


def _resolve(source: TagSource, request: Request) -> list:
    if callable(source):
        return list(source(request))
    return list(source)


def _is_error_response(result: Any) -> bool:
    return isinstance(result, Response) and result.status_code >= 400


def cache_response(
    cache: CacheStore,
    *,
    ttl: Optional[float] = None,
    namespace: str = "api",
    tags: TagSource = ("api-response",),
    key_generator: Callable[[Request], str] = default_key_generator,
    condition: Callable[[Request], bool] = _always,
    on_hit: Optional[Hook] = None,
    on_miss: Optional[Hook] = None,
):
    """Read-through cache for idempotent GET endpoints.

    Non-GET requests and requests failing ``condition`` go straight to the
    endpoint. On a hit the endpoint is not called. On a miss a plain return
    value is JSON-encoded and stored, and a ``JSONResponse`` below 400 has its
    body stored; other responses and raised errors are never cached.
    """

    def decorator(endpoint: Callable):
        request_param = _find_request_param(endpoint)

        @functools.wraps(endpoint)
        async def wrapper(*args, **kwargs):
            request: Request = kwargs[request_param]
            if request.method != "GET" or not condition(request):
                return await endpoint(*args, **kwargs)

            key = key_generator(request)
            cached = cache.get(key, MISSING)
            if cached is not MISSING:
                logger.debug("Response cache hit", key=key, namespace=namespace)
                if on_hit:
                    on_hit(request, cached)
                return cached

            result = await endpoint(*args, **kwargs)

            if isinstance(result, JSONResponse):
                if result.status_code >= 400:
                    return result
                payload = json.loads(result.body)
            elif isinstance(result, Response):
                return result
            else:
                payload = jsonable_encoder(result)

            cache.set(key, payload, ttl=ttl, namespace=namespace, tags=_resolve(tags, request))
            logger.debug("Response cache miss", key=key, namespace=namespace)
            if on_miss:
                on_miss(request, payload)
            return result

        return wrapper

    return decorator


def invalidate_cache(
    cache: CacheStore,
    *,
    patterns: TagSource = (),
    namespaces: TagSource = (),
    tags: TagSource = (),
    on_invalidate: Optional[Callable[[str, int], None]] = None,
):
    """Clear cache regions after a mutating endpoint succeeds.

    Each option accepts a fixed sequence or a callable receiving the request.
    Nothing is cleared when the endpoint raises or returns a response with an
    error status. ``on_invalidate`` receives the kind of region ("pattern",
    "namespace" or "tag") and the number of entries it removed.
    """

    def decorator(endpoint: Callable):
        request_param = _find_request_param(endpoint)

        @functools.wraps(endpoint)
        async def wrapper(*args, **kwargs):
            request: Request = kwargs[request_param]
            result = await endpoint(*args, **kwargs)
            if _is_error_response(result):
                return result

            removed = {"pattern": 0, "namespace": 0, "tag": 0}
            for pattern in _resolve(patterns, request):
                removed["pattern"] += cache.delete_pattern(pattern)
            for namespace in _resolve(namespaces, request):
                removed["namespace"] += cache.delete_namespace(namespace)
            for tag in _resolve(tags, request):
                removed["tag"] += cache.delete_by_tag(tag)

            if on_invalidate:
                for kind, count in removed.items():
                    if count:
                        on_invalidate(kind, count)

            logger.info(
                "Invalidated cache after mutation",
                method=request.method,
                path=request.url.path,
                removed=removed,
            )
            return result

        return wrapper

    return decorator

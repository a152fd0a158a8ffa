from __future__ import annotations

import time
from typing import Callable

from django.conf import settings
from django.core.cache import caches
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.urls import Resolver404, resolve

DEFAULT_THROTTLE_LIMIT = 100  # requests
DEFAULT_THROTTLE_WINDOW = 60  # seconds
DEFAULT_THROTTLE_KEY_PREFIX = 'linkmanager:throttle'


class SlidingWindowRateThrottle:
    """Sliding-window rate limiter for the link mutation routes.

    Request timestamps are kept per client IP and route in the configured
    cache backend; requests beyond the limit within the window get a 429
    JSON response in the same shape as other API errors.
    """

    def __init__(
        self,
        get_response: Callable[[HttpRequest], HttpResponse],
        *,
        limit: int | None = None,
        window: int | None = None,
        cache_alias: str = 'default',
        key_prefix: str | None = None,
    ) -> None:
        self.get_response = get_response
        self.limit = limit or getattr(settings, 'THROTTLE_LIMIT', DEFAULT_THROTTLE_LIMIT)
        self.window = window or getattr(settings, 'THROTTLE_WINDOW', DEFAULT_THROTTLE_WINDOW)
        self.cache = caches[cache_alias]
        self.key_prefix = key_prefix or getattr(settings, 'THROTTLE_KEY_PREFIX', DEFAULT_THROTTLE_KEY_PREFIX)

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if request.method not in ('GET', 'POST'):
            return self.get_response(request)

        route_name = self._route_name(request)
        protected_routes = getattr(settings, 'THROTTLED_ROUTES', [])
        if route_name is None or route_name not in protected_routes:
            return self.get_response(request)

        cache_key = f"{self.key_prefix}:{route_name}:{self._get_client_ip(request)}"
        now = time.time()
        bucket = self.cache.get(cache_key, [])
        bucket = [timestamp for timestamp in bucket if timestamp > now - self.window]

        if len(bucket) >= self.limit:
            return self._reject(route_name)

        bucket.append(now)
        self.cache.set(cache_key, bucket, timeout=self.window)
        return self.get_response(request)

    def _route_name(self, request: HttpRequest) -> str | None:
        # Middleware runs before URL resolution, so resolve the path here.
        resolved = getattr(request, 'resolver_match', None)
        if resolved is None:
            try:
                resolved = resolve(request.path_info)
            except Resolver404:
                return None
        return resolved.view_name

    def _get_client_ip(self, request: HttpRequest) -> str:
        header = getattr(settings, 'THROTTLE_IP_HEADER', 'HTTP_X_FORWARDED_FOR')
        if header in request.META:
            value = request.META[header]
            return value.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR', '0.0.0.0')

    def _reject(self, route_name: str) -> HttpResponse:
        payload = {
            'code': 'rate_limited',
            'message': 'Rate limit exceeded. Try again shortly.',
            'data': {'status': 429, 'route': route_name},
        }
        return JsonResponse(payload, status=429)


def sliding_window_rate_throttle(get_response: Callable[[HttpRequest], HttpResponse]) -> SlidingWindowRateThrottle:
    return SlidingWindowRateThrottle(get_response)

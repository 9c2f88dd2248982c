"""
Timed request layer
===================
Every call to the lab REST API goes through `send`, which races the HTTP
call against a deadline and an optional cancellation token:

  * URL containing a slow segment (bulk seed)  → 30s
  * POST / PUT / DELETE                        → 15s
  * everything else (reads)                    → 10s

A request that misses its deadline raises `RequestTimeout` (a TimeoutError)
carrying `timeout_ms`, so callers can tell a stuck server apart from a
refused connection. Non-2xx responses are returned untouched; `fetch_api`
is the convenience wrapper that turns them into `ApiError`.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import requests

from config import (READ_TIMEOUT_MS, WRITE_TIMEOUT_MS, SLOW_TIMEOUT_MS,
                    WRITE_METHODS, SLOW_URL_SEGMENTS)

log = logging.getLogger(__name__)

_pool = ThreadPoolExecutor(max_workers=32, thread_name_prefix='api-call')
_default_session = requests.Session()


# ═══════════════════════════════════════════════════════════════════════════════
#  ERRORS
# ═══════════════════════════════════════════════════════════════════════════════

class RequestTimeout(TimeoutError):
    def __init__(self, message='Request timeout', timeout_ms=None):
        super().__init__(message)
        self.timeout_ms = timeout_ms


class RequestCancelled(Exception):
    """The caller's token was cancelled before the response arrived."""


class ApiError(Exception):
    """Non-2xx answer from the API, with the structured fields attached."""

    def __init__(self, message, status=None, code=None, details=None):
        super().__init__(message)
        self.message = message
        self.status  = status
        self.code    = code
        self.details = details

    @classmethod
    def from_response(cls, response):
        info = parse_error_response(response)
        return cls(info['message'], status=info['status'], code=info['code'], details=info['details'])


# ═══════════════════════════════════════════════════════════════════════════════
#  CANCELLATION
# ═══════════════════════════════════════════════════════════════════════════════

class CancelToken:
    """One-shot cancellation flag handed to each background operation."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks = []

    @property
    def cancelled(self):
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def add_callback(self, fn):
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(fn)
                return
        fn()

    def remove_callback(self, fn):
        with self._lock:
            if fn in self._callbacks:
                self._callbacks.remove(fn)

    def raise_if_cancelled(self):
        if self.cancelled:
            raise RequestCancelled('operation cancelled')


# ═══════════════════════════════════════════════════════════════════════════════
#  SEND
# ═══════════════════════════════════════════════════════════════════════════════

def timeout_for_request(method: str, url: str) -> int:
    if any(seg in url for seg in SLOW_URL_SEGMENTS):
        return SLOW_TIMEOUT_MS
    if method.upper() in WRITE_METHODS:
        return WRITE_TIMEOUT_MS
    return READ_TIMEOUT_MS


def _discard(future):
    # a response that lands after we gave up on it still holds a connection
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


def send(url, method='GET', json=None, timeout_ms=None, token=None, session=None):
    method = method.upper()
    timeout = timeout_ms or timeout_for_request(method, url)
    if token is not None:
        token.raise_if_cancelled()

    http = session or _default_session
    kwargs = {'timeout': timeout / 1000.0}
    if json is not None:
        kwargs['json'] = json

    future = _pool.submit(http.request, method, url, **kwargs)
    settled = threading.Event()
    future.add_done_callback(lambda _f: settled.set())
    if token is not None:
        token.add_callback(settled.set)
    try:
        settled.wait(timeout / 1000.0)
    finally:
        if token is not None:
            token.remove_callback(settled.set)

    if future.done():
        try:
            return future.result()
        except requests.Timeout as e:
            log.warning("%s %s timed out after %sms", method, url, timeout)
            raise RequestTimeout(f"Request to {method} {url} timed out after {timeout}ms", timeout) from e

    future.cancel()
    future.add_done_callback(_discard)
    if token is not None and token.cancelled:
        log.debug("%s %s cancelled", method, url)
        raise RequestCancelled(f"{method} {url} cancelled")
    log.warning("%s %s timed out after %sms", method, url, timeout)
    raise RequestTimeout(f"Request to {method} {url} timed out after {timeout}ms", timeout)


def parse_error_response(response) -> dict:
    """Structured {code, message, status, details} for a failed response."""
    default = {
        'code': response.status_code,
        'message': f"HTTP {response.status_code}: {response.reason}",
        'status': response.status_code,
        'details': None,
    }
    try:
        body = response.json()
    except ValueError:
        return default

    if isinstance(body, dict) and (body.get('code') or body.get('message')):
        return {
            'code': body.get('code') or response.status_code,
            'message': body.get('message') or default['message'],
            'status': response.status_code,
            'details': body.get('details') or body,
        }
    return {**default, 'details': body}


# what a screen shows in its error banner
REQUEST_ERRORS = (ApiError, RequestTimeout, requests.RequestException)


def fetch_api(url, method='GET', json=None, timeout_ms=None, token=None, session=None):
    response = send(url, method=method, json=json, timeout_ms=timeout_ms, token=token, session=session)
    if not 200 <= response.status_code < 300:
        err = ApiError.from_response(response)
        log.info("%s %s failed: %s", method, url, err.message)
        raise err
    if not response.content:
        return {}
    return response.json()

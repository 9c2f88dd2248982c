"""
Reference data cache
====================
Holds the five low-churn collections every screen needs (labs, faculties,
batches, books, time slots). One instance is owned by the web app: it is
loaded at start-up, refreshed per collection after writes and closed on
shutdown.

Each key (`all` or a single collection) has at most one live fetch. Starting
a new fetch cancels the previous one, and anyone still waiting on the old
fetch receives the new fetch's outcome instead. A result is committed only
while its job is still the current one for the key, so a superseded response
that arrives late is dropped.
"""
import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from timed_request import CancelToken, RequestCancelled

log = logging.getLogger(__name__)

# cache key → attribute on ApiClients
COLLECTIONS = {
    'labs': 'labs',
    'faculties': 'faculties',
    'batches': 'batches',
    'books': 'books',
    'timeSlots': 'timeslots',
}
ALL = 'all'


def _order_index(slot):
    try:
        return int(slot.get('orderIndex') or 0)
    except (TypeError, ValueError):
        return 0


def sort_time_slots(slots):
    # sorted() is stable, so equal orderIndex keeps the server's order
    return sorted(slots, key=_order_index)


def _chain(target, source):
    if target.done():
        return
    exc = source.exception()
    if exc is not None:
        target.set_exception(exc)
    else:
        target.set_result(source.result())


class _Job:
    __slots__ = ('token', 'outcome')

    def __init__(self):
        self.token = CancelToken()
        self.outcome = Future()


class ReferenceDataCache:
    def __init__(self, clients, on_change=None, executor=None):
        self._clients = clients
        self._on_change = on_change
        self._executor = executor or ThreadPoolExecutor(max_workers=8, thread_name_prefix='refdata')
        self._lock = threading.RLock()
        self._data = {key: [] for key in COLLECTIONS}
        self._jobs = {}
        self.loading = False
        self.loaded  = False
        self._errors = {}
        self.closed  = False

    # ── Read side ──────────────────────────────────────────────────────────────
    def get(self, key):
        with self._lock:
            return list(self._data[key])

    @property
    def labs(self): return self.get('labs')

    @property
    def faculties(self): return self.get('faculties')

    @property
    def batches(self): return self.get('batches')

    @property
    def books(self): return self.get('books')

    @property
    def time_slots(self): return self.get('timeSlots')

    @property
    def error(self):
        """Latest failure still standing; a key's error clears once that key loads."""
        with self._lock:
            if not self._errors:
                return None
            return list(self._errors.values())[-1]

    def snapshot(self):
        with self._lock:
            snap = {key: list(items) for key, items in self._data.items()}
            snap['loading'] = self.loading
            snap['error'] = self.error
            return snap

    # ── Fetching ───────────────────────────────────────────────────────────────
    def load_all(self):
        """Fetch all five collections concurrently. Returns a Future of the snapshot."""
        return self._start(ALL, self._fetch_all)

    def ensure_loaded(self):
        with self._lock:
            job = self._jobs.get(ALL)
            if job is not None:
                return job.outcome
            if self.loaded:
                done = Future()
                done.set_result(self.snapshot())
                return done
            return self.load_all()

    def refresh(self, key):
        if key not in COLLECTIONS:
            raise KeyError(f"unknown reference collection: {key}")
        return self._start(key, functools.partial(self._fetch_one, key))

    def refresh_labs(self): return self.refresh('labs')

    def refresh_faculties(self): return self.refresh('faculties')

    def refresh_batches(self): return self.refresh('batches')

    def refresh_books(self): return self.refresh('books')

    def refresh_time_slots(self): return self.refresh('timeSlots')

    def _start(self, key, fetch):
        with self._lock:
            if self.closed:
                raise RuntimeError('reference data cache is closed')
            job = _Job()
            previous = self._jobs.get(key)
            self._jobs[key] = job
            if key == ALL:
                self.loading = True
        if previous is not None:
            log.debug("superseding in-flight %s fetch", key)
            previous.token.cancel()
            job.outcome.add_done_callback(functools.partial(_chain, previous.outcome))
        self._executor.submit(self._run, key, job, fetch)
        return job.outcome

    def _run(self, key, job, fetch):
        try:
            result = fetch(job.token)
        except RequestCancelled:
            log.debug("%s fetch cancelled", key)
            return
        except Exception as e:
            with self._lock:
                if self._jobs.get(key) is not job:
                    log.debug("ignoring failure of superseded %s fetch: %s", key, e)
                    return
                del self._jobs[key]
                self._errors.pop(key, None)
                self._errors[key] = str(e)
                if key == ALL:
                    self.loading = False
            log.error("Failed to load reference data (%s): %s", key, e)
            job.outcome.set_exception(e)
            return

        with self._lock:
            if job.token.cancelled or self._jobs.get(key) is not job:
                log.debug("discarding superseded %s result", key)
                return
            del self._jobs[key]
            self._data.update(result)
            self._errors.pop(key, None)
            if key == ALL:
                self.loading = False
                self.loaded = True
                self._errors.clear()
            snap = self.snapshot()
        log.info("reference data refreshed: %s", key)
        job.outcome.set_result(snap)
        if self._on_change is not None:
            self._on_change(key, snap)

    def _fetch_collection(self, key, token):
        client = getattr(self._clients, COLLECTIONS[key])
        items = client.get_all(token=token).get('data') or []
        if key == 'timeSlots':
            items = sort_time_slots(items)
        return items

    def _fetch_one(self, key, token):
        return {key: self._fetch_collection(key, token)}

    def _fetch_all(self, token):
        pool = ThreadPoolExecutor(max_workers=len(COLLECTIONS), thread_name_prefix='refdata-fetch')
        try:
            futures = {key: pool.submit(self._fetch_collection, key, token) for key in COLLECTIONS}
            return {key: fut.result() for key, fut in futures.items()}
        finally:
            pool.shutdown(wait=False)

    # ── Teardown ───────────────────────────────────────────────────────────────
    def close(self, wait=False):
        """Cancel every in-flight fetch; pending outcomes fail with RequestCancelled."""
        with self._lock:
            self.closed = True
            jobs = list(self._jobs.values())
            self._jobs.clear()
            self.loading = False
        for job in jobs:
            job.token.cancel()
            if not job.outcome.done():
                job.outcome.set_exception(RequestCancelled('reference data cache closed'))
        self._executor.shutdown(wait=wait)

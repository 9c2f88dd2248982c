"""
Server-Sent Events hub.

Each open page holds one long-lived /api/notify-stream connection, keyed by
its view id. Background work (reference data refreshes, the debounced
faculty summary) announces itself here so pages re-render without polling.
"""
import json
import logging
import queue
import threading

log = logging.getLogger(__name__)


class EventHub:
    def __init__(self, maxsize=50, heartbeat=25):
        self.maxsize = maxsize
        self.heartbeat = heartbeat
        self._clients: dict[str, list] = {}
        self._lock = threading.Lock()

    def subscribe(self, channel: str) -> queue.Queue:
        q = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._clients.setdefault(channel, []).append(q)
        return q

    def unsubscribe(self, channel: str, q: queue.Queue):
        with self._lock:
            lst = self._clients.get(channel, [])
            if q in lst:
                lst.remove(q)
            if not lst:
                self._clients.pop(channel, None)

    def has_subscribers(self, channel: str) -> bool:
        with self._lock:
            return bool(self._clients.get(channel))

    def drop_channel(self, channel: str):
        with self._lock:
            self._clients.pop(channel, None)

    def push(self, channel: str, event_type: str, data):
        """Push an event to every open stream of one channel."""
        with self._lock:
            self._push_locked(channel, event_type, data)

    def push_all(self, event_type: str, data):
        with self._lock:
            for channel in list(self._clients):
                self._push_locked(channel, event_type, data)

    def _push_locked(self, channel, event_type, data):
        qs = self._clients.get(channel, [])
        dead = []
        for q in qs:
            try:
                q.put_nowait({'type': event_type, 'data': data})
            except queue.Full:
                dead.append(q)
        for q in dead:
            log.debug("dropping stalled event stream on %s", channel)
            qs.remove(q)

    def stream(self, channel: str):
        """Generator of `data: ...` frames; heartbeats keep proxies from closing it."""
        q = self.subscribe(channel)
        try:
            yield f'data: {json.dumps({"type": "heartbeat"})}\n\n'
            while True:
                try:
                    msg = q.get(timeout=self.heartbeat)
                    yield f'data: {json.dumps(msg)}\n\n'
                except queue.Empty:
                    yield f'data: {json.dumps({"type": "heartbeat"})}\n\n'
        finally:
            self.unsubscribe(channel, q)

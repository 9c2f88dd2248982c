import json
import threading

import pytest
import requests

from api_clients import ApiClients
from reference_data import ReferenceDataCache

BASE = 'http://lab-api.test/api'

FACULTIES = [{'_id': 'F1', 'name': 'Dr. Rao'}, {'_id': 'F2', 'name': 'Dr. Iyer'}]
BOOKS = [{'_id': 'K1', 'title': 'Let Us C'}, {'_id': 'K2', 'title': 'Python Crash Course'}]
LABS = [
    {'_id': 'L1', 'code': 'L1', 'capacity': 30, 'location': 'Block A'},
    {'_id': 'L2', 'code': 'L2', 'capacity': 24},
]
# deliberately out of order; S3 ties with S2 and comes later from the server
TIME_SLOTS = [
    {'_id': 'S2', 'label': '10:00-11:00', 'startTime': '10:00', 'endTime': '11:00', 'orderIndex': 2},
    {'_id': 'S1', 'label': '09:00-10:00', 'startTime': '09:00', 'endTime': '10:00', 'orderIndex': 1},
    {'_id': 'S3', 'label': '10:00-11:00 (B)', 'startTime': '10:00', 'endTime': '11:00', 'orderIndex': 2},
]
BATCHES = [
    {'_id': 'B1', 'code': 'B1', 'faculty': FACULTIES[0], 'currentSemester': '3',
     'currentBook': BOOKS[0], 'numberOfStudents': 20},
    {'_id': 'B2', 'code': 'B2', 'faculty': FACULTIES[1], 'currentSemester': '5', 'numberOfStudents': 18},
]
BATCH_BY_ID = {b['_id']: b for b in BATCHES}

FREE_BY_SLOT = {'data': [
    {'timeSlot': TIME_SLOTS[1], 'completelFreeFaculties': [FACULTIES[1]],
     'partiallyFreeFaculties': [{'faculty': FACULTIES[0], 'freeDayPatterns': ['TTS', 'REGULAR'],
                                 'busyDayPatterns': ['MWF']}],
     'busyFaculties': [], 'stats': {'completelFree': 1, 'partiallyFree': 1, 'busy': 0}},
]}


def make_allocation(allocation_id, lab, slot, pattern, batch):
    return {'_id': allocation_id, 'lab': {'_id': lab}, 'timeSlot': {'_id': slot},
            'dayPattern': pattern, 'batch': BATCH_BY_ID[batch]}


def make_response(status=200, payload=None, reason='OK', raw=None):
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    if raw is not None:
        resp._content = raw.encode()
    elif payload is None:
        resp._content = b''
    else:
        resp._content = json.dumps(payload).encode()
    resp._content_consumed = True
    resp.headers['Content-Type'] = 'application/json'
    return resp


class FakeSession:
    """Stands in for requests.Session; routes map (METHOD, path) to a handler(body) → Response."""

    def __init__(self):
        self.routes = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, method, path, payload=None, status=200, reason='OK', raw=None, handler=None):
        if handler is None:
            def handler(_body):
                return make_response(status, payload, reason, raw)
        self.routes[(method, path)] = handler

    def request(self, method, url, json=None, timeout=None, **kwargs):
        path = url[len(BASE):]
        with self._lock:
            self.calls.append({'method': method, 'path': path, 'json': json, 'timeout': timeout})
        handler = self.routes.get((method, path))
        if handler is None:
            return make_response(404, {'message': f'no route for {method} {path}'}, 'Not Found')
        return handler(json)

    def calls_to(self, method, path):
        with self._lock:
            return [c for c in self.calls if c['method'] == method and c['path'] == path]

    def close(self):
        pass


class ManualTimer:
    """threading.Timer look-alike that only runs when the test fires it."""

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


def echo_allocation_update(allocation_id):
    def handler(body):
        return make_response(200, {'data': make_allocation(
            allocation_id, body['lab'], body['timeSlot'], body['dayPattern'], body['batch'])})
    return handler


@pytest.fixture
def respond():
    return make_response


@pytest.fixture
def fake_session():
    session = FakeSession()
    session.add('GET', '/labs', {'data': LABS})
    session.add('GET', '/faculties', {'data': FACULTIES})
    session.add('GET', '/batches', {'data': BATCHES})
    session.add('GET', '/books', {'data': BOOKS})
    session.add('GET', '/timeslots', {'data': TIME_SLOTS})
    session.add('GET', '/allocations', {'data': [
        make_allocation('A1', 'L1', 'S1', 'MWF', 'B1'),
        make_allocation('A2', 'L2', 'S2', 'TTS', 'B2'),
    ]})
    session.add('PUT', '/allocations/A1', handler=echo_allocation_update('A1'))
    session.add('PUT', '/allocations/A2', handler=echo_allocation_update('A2'))
    session.add('GET', '/faculties/summary/free-by-slot', FREE_BY_SLOT)
    return session


@pytest.fixture
def clients(fake_session):
    return ApiClients(BASE, session=fake_session)


@pytest.fixture
def reference(clients):
    cache = ReferenceDataCache(clients)
    cache.load_all().result(timeout=5)
    yield cache
    cache.close()


@pytest.fixture
def timers():
    created = []

    def factory(interval, function, args=()):
        timer = ManualTimer(interval, function, args)
        created.append(timer)
        return timer

    factory.created = created
    return factory

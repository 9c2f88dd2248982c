"""One client per lab-API collection, all built on timed_request.fetch_api."""
import requests

from config import API_BASE_URL
from timed_request import fetch_api


def ref_id(ref):
    """Id of a reference that may arrive populated ({_id: ...}) or bare."""
    if isinstance(ref, dict):
        return ref.get('_id') or ref.get('id')
    return ref


class ResourceClient:
    def __init__(self, resource, base_url=API_BASE_URL, session=None):
        self.resource = resource
        self.base_url = base_url.rstrip('/')
        self.session  = session

    def url(self, *parts):
        return '/'.join([self.base_url, self.resource, *(str(p) for p in parts)])

    def _call(self, method, *parts, json=None, token=None, timeout_ms=None):
        return fetch_api(self.url(*parts), method=method, json=json,
                         timeout_ms=timeout_ms, token=token, session=self.session)

    def get_all(self, token=None):
        return self._call('GET', token=token)

    def get_by_id(self, item_id, token=None):
        return self._call('GET', item_id, token=token)

    def create(self, data, token=None):
        return self._call('POST', json=data, token=token)

    def update(self, item_id, data, token=None):
        return self._call('PUT', item_id, json=data, token=token)

    def delete(self, item_id, token=None):
        return self._call('DELETE', item_id, token=token)


class FacultyClient(ResourceClient):
    def get_free_faculties_by_slot(self, token=None):
        """Per time slot: completely free, partially free and busy faculty."""
        return self._call('GET', 'summary', 'free-by-slot', token=token)


class AllocationClient(ResourceClient):
    def get_by_lab(self, lab_id, token=None):
        return self._call('GET', 'lab', lab_id, token=token)

    def get_by_batch(self, batch_id, token=None):
        return self._call('GET', 'batch', batch_id, token=token)


class ApiClients:
    """Every resource client over one base URL and one HTTP session."""

    def __init__(self, base_url=API_BASE_URL, session=None):
        self.base_url = base_url
        self.session  = session or requests.Session()
        self.labs        = ResourceClient('labs', base_url, self.session)
        self.faculties   = FacultyClient('faculties', base_url, self.session)
        self.batches     = ResourceClient('batches', base_url, self.session)
        self.books       = ResourceClient('books', base_url, self.session)
        self.timeslots   = ResourceClient('timeslots', base_url, self.session)
        self.allocations = AllocationClient('allocations', base_url, self.session)

    def close(self):
        self.session.close()


def summarize_free_slots(payload):
    """
    Flatten the free-by-slot envelope into per-slot rows plus totals.
    The server spells the completely-free keys `completelFree*`.
    """
    if isinstance(payload, dict):
        slots = payload.get('data') or []
    else:
        slots = payload or []
    rows = []
    totals = {'completelFree': 0, 'partiallyFree': 0, 'busy': 0}
    for entry in slots:
        stats = entry.get('stats') or {}
        row = {
            'timeSlot': entry.get('timeSlot'),
            'completelFreeFaculties': entry.get('completelFreeFaculties') or [],
            'partiallyFreeFaculties': entry.get('partiallyFreeFaculties') or [],
            'busyFaculties': entry.get('busyFaculties') or [],
            'stats': {
                'completelFree': stats.get('completelFree', len(entry.get('completelFreeFaculties') or [])),
                'partiallyFree': stats.get('partiallyFree', len(entry.get('partiallyFreeFaculties') or [])),
                'busy': stats.get('busy', len(entry.get('busyFaculties') or [])),
            },
        }
        for k in totals:
            totals[k] += row['stats'][k]
        rows.append(row)
    return {'slots': rows, 'totals': totals}

"""
Modal dialogs opened from the schedule grid.

Both dialogs keep an inline `error` banner and stay open when a call fails;
the user retries by hand. Results are handed back through the `on_*`
callbacks so the grid updates without a reload.
"""
import logging

from api_clients import ref_id
from timed_request import REQUEST_ERRORS

log = logging.getLogger(__name__)


def _batch_option(batch):
    faculty = batch.get('faculty')
    name = faculty.get('name') if isinstance(faculty, dict) else None
    return {
        'id': ref_id(batch),
        'code': batch.get('code', ''),
        'label': f"{batch.get('code', '')} ({name})" if name else f"{batch.get('code', '')} (No Faculty)",
    }


class AllocationDialog:
    """Assign a batch to one (lab, time slot, day pattern) cell, or clear it."""

    kind = 'allocation'

    def __init__(self, clients, lab, time_slot, day_pattern, existing=None,
                 on_added=None, on_removed=None):
        self._clients = clients
        self.lab = lab
        self.time_slot = time_slot
        self.day_pattern = day_pattern
        self.existing = existing
        self._on_added = on_added
        self._on_removed = on_removed
        self.batches = []
        self.selected_batch = ref_id(existing.get('batch')) if existing else ''
        self.loading = False
        self.error = None
        self.closed = False

    def open(self):
        # batches come straight from the API, not the cache, so the list is current
        try:
            self.batches = self._clients.batches.get_all().get('data') or []
        except REQUEST_ERRORS as e:
            self.error = f"Failed to load batches: {e}"
        return self

    def select(self, batch_id):
        self.selected_batch = batch_id or ''

    def assign(self):
        if self.existing is not None:
            self.error = 'This cell already has an allocation; remove it first'
            return None
        if not self.selected_batch:
            self.error = 'Please select a batch'
            return None

        payload = {
            'lab': ref_id(self.lab),
            'batch': self.selected_batch,
            'timeSlot': ref_id(self.time_slot),
            'dayPattern': self.day_pattern,
        }
        self.loading, self.error = True, None
        try:
            response = self._clients.allocations.create(payload)
        except REQUEST_ERRORS as e:
            self.error = str(e)
            return None
        finally:
            self.loading = False

        allocation = response.get('data')
        if not allocation:
            self.error = 'Server returned no allocation'
            return None
        log.info("assigned batch %s to %s/%s/%s", self.selected_batch,
                 payload['lab'], payload['timeSlot'], self.day_pattern)
        if self._on_added is not None:
            self._on_added(allocation)
        self.closed = True
        return allocation

    def remove(self):
        if self.existing is None:
            return False
        allocation_id = ref_id(self.existing)
        self.loading, self.error = True, None
        try:
            self._clients.allocations.delete(allocation_id)
        except REQUEST_ERRORS as e:
            self.error = str(e)
            return False
        finally:
            self.loading = False
        if self._on_removed is not None:
            self._on_removed(allocation_id)
        self.closed = True
        return True

    def state(self):
        return {
            'kind': self.kind,
            'lab': self.lab,
            'timeSlot': self.time_slot,
            'dayPattern': self.day_pattern,
            'existing': self.existing,
            'batches': [_batch_option(b) for b in self.batches],
            'selectedBatch': self.selected_batch,
            'error': self.error,
            'closed': self.closed,
        }


class BatchEditDialog:
    """Edit the batch behind an allocation cell."""

    kind = 'batch'
    FIELDS = ('code', 'faculty', 'currentSemester', 'currentBook', 'upcomingBook', 'numberOfStudents')

    def __init__(self, clients, allocation, reference=None, on_updated=None):
        self._clients = clients
        self._reference = reference
        self._on_updated = on_updated
        self.allocation = allocation
        self.batch = allocation.get('batch') or {}
        batch = self.batch
        self.form = {
            'code': batch.get('code', ''),
            'faculty': ref_id(batch.get('faculty')) or '',
            'currentSemester': batch.get('currentSemester', ''),
            'currentBook': ref_id(batch.get('currentBook')) or '',
            'upcomingBook': ref_id(batch.get('upcomingBook')) or '',
            'numberOfStudents': batch.get('numberOfStudents') or '',
        }
        self.loading = False
        self.error = None
        self.success = None
        self.closed = False

    @property
    def faculties(self):
        return self._reference.faculties if self._reference is not None else []

    @property
    def books(self):
        return self._reference.books if self._reference is not None else []

    def change(self, **fields):
        for name, value in fields.items():
            if name in self.FIELDS:
                self.form[name] = value

    def submit_data(self):
        students = self.form.get('numberOfStudents')
        data = {
            'code': self.form.get('code', ''),
            'faculty': self.form.get('faculty', ''),
            'currentSemester': self.form.get('currentSemester', ''),
            'numberOfStudents': int(students) if students not in ('', None) else 0,
        }
        # an empty book select means "no book", which the API expects as an absent key
        for key in ('currentBook', 'upcomingBook'):
            if self.form.get(key):
                data[key] = self.form[key]
        return data

    def submit(self):
        try:
            data = self.submit_data()
        except (TypeError, ValueError):
            self.error = 'Number of students must be a whole number'
            return None
        if data['numberOfStudents'] < 0:
            self.error = 'Number of students cannot be negative'
            return None

        self.loading, self.error = True, None
        try:
            response = self._clients.batches.update(ref_id(self.batch), data)
        except REQUEST_ERRORS as e:
            self.error = str(e)
            return None
        finally:
            self.loading = False

        updated = response.get('data')
        if not updated:
            self.error = 'Server returned no batch'
            return None
        self.success = 'Batch updated successfully'
        self.closed = True
        if self._on_updated is not None:
            self._on_updated(updated)
        if self._reference is not None:
            try:
                self._reference.refresh_batches()
            except RuntimeError as e:
                # closed cache at shutdown; the update itself has already landed
                log.warning("batch list not refreshed after update: %s", e)
        return updated

    def state(self):
        return {
            'kind': self.kind,
            'allocationId': ref_id(self.allocation),
            'batchId': ref_id(self.batch),
            'form': dict(self.form),
            'faculties': [{'id': ref_id(f), 'name': f.get('name', '')} for f in self.faculties],
            'books': [{'id': ref_id(b), 'title': b.get('title', '')} for b in self.books],
            'error': self.error,
            'success': self.success,
            'closed': self.closed,
        }

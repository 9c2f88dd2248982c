"""
Schedule grid controller
========================
One instance per open schedule view. The grid is labs × time slots × day
patterns; a cell's occupant is always found by scanning the flat allocation
list, nothing is stored per cell.

Drag and drop:
  * drop on the origin cell        → nothing happens, no request
  * drop on an empty cell          → one PUT moving the allocation
  * drop on an occupied cell       → two concurrent PUTs swapping the pair;
                                     both must come back with data before
                                     the local list changes
After a move or swap the faculty free/busy summary is refetched once drag
activity has been quiet for SUMMARY_DEBOUNCE_MS.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait

from api_clients import ref_id, summarize_free_slots
from config import SUMMARY_DEBOUNCE_MS
from dialogs import AllocationDialog, BatchEditDialog

log = logging.getLogger(__name__)

DAY_PATTERNS = ('MWF', 'TTS', 'REGULAR')

_update_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix='allocation-update')


class ScheduleError(Exception):
    pass


def cell_key(lab_id, slot_id, day_pattern):
    return f"{lab_id}-{slot_id}-{day_pattern}"


def allocation_cell(allocation):
    return (ref_id(allocation.get('lab')), ref_id(allocation.get('timeSlot')), allocation.get('dayPattern'))


def _data(response):
    data = response.get('data') if isinstance(response, dict) else None
    return data if isinstance(data, dict) and data else None


# ═══════════════════════════════════════════════════════════════════════════════
#  DEBOUNCED SUMMARY REFRESH
# ═══════════════════════════════════════════════════════════════════════════════

class SummaryRefresher:
    """At most one pending timer; every trigger cancels it and starts over."""

    def __init__(self, fetch, delay=SUMMARY_DEBOUNCE_MS / 1000.0, on_result=None,
                 on_error=None, timer_factory=threading.Timer):
        self._fetch = fetch
        self.delay = delay
        self._on_result = on_result
        self._on_error = on_error
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0

    @property
    def pending(self):
        with self._lock:
            return self._timer is not None

    def trigger(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = self._timer_factory(self.delay, self._fire, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._generation += 1

    def _fire(self, generation):
        with self._lock:
            # a timer cancelled after it already started running lands here
            if generation != self._generation or self._timer is None:
                return
            self._timer = None
        try:
            result = self._fetch()
        except Exception as e:
            log.warning("free-by-slot summary refresh failed: %s", e)
            if self._on_error is not None:
                self._on_error(e)
            return
        if self._on_result is not None:
            self._on_result(result)


# ═══════════════════════════════════════════════════════════════════════════════
#  GRID
# ═══════════════════════════════════════════════════════════════════════════════

class ScheduleGrid:
    def __init__(self, clients, reference, on_summary=None, on_summary_error=None,
                 summary_delay=SUMMARY_DEBOUNCE_MS / 1000.0, timer_factory=threading.Timer):
        self._clients = clients
        self._reference = reference
        self._on_summary = on_summary
        self._lock = threading.RLock()
        self.allocations = []
        self.loading = False
        self.error = None
        self.dragged = None
        self.dialog = None
        self.summary = None
        self._summary = SummaryRefresher(self._fetch_summary, summary_delay,
                                         on_result=self._summary_loaded,
                                         on_error=on_summary_error,
                                         timer_factory=timer_factory)

    @property
    def labs(self):
        return self._reference.labs

    @property
    def time_slots(self):
        return self._reference.time_slots

    # ── Loading ────────────────────────────────────────────────────────────────
    def load(self):
        """Labs and time slots from the cache, allocations fresh from the API."""
        with self._lock:
            self.loading = True
            try:
                reference = self._reference.ensure_loaded()
                allocations = self._clients.allocations.get_all().get('data') or []
                reference.result()
            except Exception as e:
                self.error = str(e)
                log.error("Failed to load schedule: %s", e)
                raise
            finally:
                self.loading = False
            self.allocations = list(allocations)
            self.error = None
        log.info("schedule loaded: %d allocations", len(allocations))
        self._summary.trigger()
        return self

    # ── Lookups ────────────────────────────────────────────────────────────────
    def get_allocation(self, lab_id, slot_id, day_pattern):
        wanted = (lab_id, slot_id, day_pattern)
        with self._lock:
            return next((a for a in self.allocations if allocation_cell(a) == wanted), None)

    def find(self, allocation_id):
        with self._lock:
            return next((a for a in self.allocations if ref_id(a) == allocation_id), None)

    def header(self):
        return [{'timeSlot': slot, 'dayPatterns': list(DAY_PATTERNS)} for slot in self.time_slots]

    def rows(self):
        labs, slots = self.labs, self.time_slots
        rows = []
        with self._lock:
            for lab in labs:
                lab_id = ref_id(lab)
                cells = []
                for slot in slots:
                    slot_id = ref_id(slot)
                    for pattern in DAY_PATTERNS:
                        cells.append({
                            'key': cell_key(lab_id, slot_id, pattern),
                            'labId': lab_id,
                            'timeSlotId': slot_id,
                            'dayPattern': pattern,
                            'allocation': self.get_allocation(lab_id, slot_id, pattern),
                        })
                rows.append({'lab': lab, 'cells': cells})
        return rows

    def state(self):
        with self._lock:
            return {
                'timeSlots': self.time_slots,
                'dayPatterns': list(DAY_PATTERNS),
                'header': self.header(),
                'rows': self.rows(),
                'dragging': ref_id(self.dragged) if self.dragged else None,
                'summary': self.summary,
                'loading': self.loading,
                'error': self.error,
            }

    # ── Clicks / dialogs ───────────────────────────────────────────────────────
    def click_cell(self, lab_id, slot_id, day_pattern):
        if day_pattern not in DAY_PATTERNS:
            raise ScheduleError(f"Unknown day pattern: {day_pattern}")
        lab = next((l for l in self.labs if ref_id(l) == lab_id), None)
        slot = next((s for s in self.time_slots if ref_id(s) == slot_id), None)
        if lab is None or slot is None:
            raise ScheduleError('Unknown lab or time slot')
        dialog = AllocationDialog(self._clients, lab, slot, day_pattern,
                                  existing=self.get_allocation(lab_id, slot_id, day_pattern),
                                  on_added=self.add_allocation,
                                  on_removed=self.forget_allocation)
        self.dialog = dialog.open()
        return dialog

    def click_batch(self, allocation_id):
        allocation = self.find(allocation_id)
        if allocation is None:
            raise ScheduleError('Allocation not found')
        self.dialog = BatchEditDialog(self._clients, allocation, reference=self._reference,
                                      on_updated=self.apply_batch_update)
        return self.dialog

    def close_dialog(self):
        self.dialog = None

    # ── Local state updates ────────────────────────────────────────────────────
    def add_allocation(self, allocation):
        with self._lock:
            others = [a for a in self.allocations if ref_id(a) != ref_id(allocation)]
            self.allocations = others + [allocation]
        self._summary.trigger()

    def forget_allocation(self, allocation_id):
        with self._lock:
            self.allocations = [a for a in self.allocations if ref_id(a) != allocation_id]
        self._summary.trigger()

    def apply_batch_update(self, batch):
        batch_id = ref_id(batch)
        with self._lock:
            self.allocations = [
                {**a, 'batch': batch} if ref_id(a.get('batch')) == batch_id else a
                for a in self.allocations
            ]

    def _replace(self, updated):
        by_id = {ref_id(a): a for a in updated}
        self.allocations = [by_id.get(ref_id(a), a) for a in self.allocations]

    def remove_allocation(self, allocation_id):
        """Delete on the server first; the cell empties only once that succeeds."""
        with self._lock:
            if self.find(allocation_id) is None:
                raise ScheduleError('Allocation not found')
            self._clients.allocations.delete(allocation_id)
            log.info("removed allocation %s", allocation_id)
            self.forget_allocation(allocation_id)

    # ── Drag and drop ──────────────────────────────────────────────────────────
    def drag_start(self, allocation_id):
        with self._lock:
            allocation = self.find(allocation_id)
            if allocation is None:
                raise ScheduleError('Allocation not found')
            self.dragged = allocation
            return allocation

    def drag_cancel(self):
        with self._lock:
            self.dragged = None

    def drop(self, lab_id, slot_id, day_pattern):
        with self._lock:
            dragged, self.dragged = self.dragged, None
            if dragged is None:
                return {'action': 'none', 'allocations': []}
            if cell_key(lab_id, slot_id, day_pattern) == cell_key(*allocation_cell(dragged)):
                return {'action': 'none', 'allocations': []}

            target = self.get_allocation(lab_id, slot_id, day_pattern)
            if target is None:
                changed = self._move(dragged, lab_id, slot_id, day_pattern)
                action = 'move'
            else:
                changed = self._swap(dragged, target)
                action = 'swap'
            self._replace(changed)
        log.info("%s allocation %s → %s", action, ref_id(dragged), cell_key(lab_id, slot_id, day_pattern))
        self._summary.trigger()
        return {'action': action, 'allocations': changed}

    def _move(self, dragged, lab_id, slot_id, day_pattern):
        response = self._clients.allocations.update(ref_id(dragged), {
            'lab': lab_id,
            'batch': ref_id(dragged.get('batch')),
            'timeSlot': slot_id,
            'dayPattern': day_pattern,
        })
        updated = _data(response)
        if updated is None:
            raise ScheduleError('Failed to move allocation: server returned no data')
        return [updated]

    def _swap(self, dragged, target):
        origin_lab, origin_slot, origin_pattern = allocation_cell(dragged)
        target_lab, target_slot, target_pattern = allocation_cell(target)
        update = self._clients.allocations.update
        first = _update_pool.submit(update, ref_id(dragged), {
            'lab': target_lab,
            'batch': ref_id(dragged.get('batch')),
            'timeSlot': target_slot,
            'dayPattern': target_pattern,
        })
        second = _update_pool.submit(update, ref_id(target), {
            'lab': origin_lab,
            'batch': ref_id(target.get('batch')),
            'timeSlot': origin_slot,
            'dayPattern': origin_pattern,
        })
        wait([first, second])
        for future in (first, second):
            if future.exception() is not None:
                raise future.exception()

        moved, displaced = _data(first.result()), _data(second.result())
        if moved is None or displaced is None:
            raise ScheduleError('Failed to swap allocations: incomplete response from server')
        return [moved, displaced]

    # ── Faculty free/busy summary ──────────────────────────────────────────────
    def _fetch_summary(self):
        return summarize_free_slots(self._clients.faculties.get_free_faculties_by_slot())

    def _summary_loaded(self, summary):
        with self._lock:
            self.summary = summary
        if self._on_summary is not None:
            self._on_summary(summary)

    @property
    def summary_pending(self):
        return self._summary.pending

    def close(self):
        self._summary.cancel()
        self.dialog = None

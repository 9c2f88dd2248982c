"""
LAB STATUS EXPRESS — SCHEDULE ADMIN
===================================
Browser admin for the lab-scheduling REST API:
  ✅ CRUD screens for faculties, labs, books, batches and time slots
  ✅ Schedule grid (lab × time slot × day pattern) with click-to-assign
     and drag-and-drop move/swap
  ✅ Faculty free/busy summary pushed to open pages over Server-Sent Events

SETUP:
  pip install -e .
  LAB_API_BASE_URL=http://localhost:3000/api lab-schedule-admin
  → http://localhost:5000
"""
import atexit
import logging
import secrets
import threading
import time

from flask import Flask, Response, abort, jsonify, request, session, stream_with_context
from flask_cors import CORS

import pages
from api_clients import ApiClients, summarize_free_slots
from config import (ALLOWED_ORIGINS, API_BASE_URL, DEBUG, HOST, LOG_FORMAT, LOG_LEVEL, PORT,
                    READ_TIMEOUT_MS, WRITE_TIMEOUT_MS, SLOW_TIMEOUT_MS,
                    SECRET_KEY, SESSION_COOKIE_SECURE, SUMMARY_DEBOUNCE_MS, VIEW_IDLE_SECONDS)
from dialogs import AllocationDialog, BatchEditDialog
from notifications import EventHub
from reference_data import ReferenceDataCache
from schedule_grid import ScheduleError, ScheduleGrid
from timed_request import REQUEST_ERRORS, ApiError, RequestCancelled, RequestTimeout

log = logging.getLogger(__name__)

# URL entity → reference cache key
ENTITIES = {
    'labs': 'labs',
    'faculties': 'faculties',
    'books': 'books',
    'batches': 'batches',
    'timeslots': 'timeSlots',
}

UI_ERRORS = REQUEST_ERRORS + (ScheduleError, RequestCancelled)


# ═══════════════════════════════════════════════════════════════════════════════
#  APP CONTEXT
# ═══════════════════════════════════════════════════════════════════════════════

class AdminContext:
    """Everything the routes share: API clients, reference cache, push hub, open schedule views."""

    def __init__(self, clients, reference, hub, summary_delay=SUMMARY_DEBOUNCE_MS / 1000.0,
                 view_ttl=VIEW_IDLE_SECONDS):
        self.clients = clients
        self.reference = reference
        self.hub = hub
        self.summary_delay = summary_delay
        self.view_ttl = view_ttl
        self._views: dict[str, ScheduleGrid] = {}
        self._touched: dict[str, float] = {}
        self._lock = threading.Lock()

    def view(self, view_id):
        with self._lock:
            grid = self._views.get(view_id)
            if grid is not None:
                self._touched[view_id] = time.monotonic()
            return grid

    def evict_idle(self, now=None):
        """Close views untouched for view_ttl seconds whose page has no open push stream."""
        now = time.monotonic() if now is None else now
        with self._lock:
            stale = [v for v, seen in self._touched.items()
                     if now - seen > self.view_ttl and not self.hub.has_subscribers(v)]
            grids = [self._views.pop(v) for v in stale]
            for v in stale:
                del self._touched[v]
        for grid in grids:
            grid.close()
        if stale:
            log.info("evicted %d idle schedule view(s)", len(stale))
        return stale

    def open_view(self, view_id):
        """Fresh grid for this browser view; a previous one is closed."""
        self.evict_idle()
        grid = ScheduleGrid(
            self.clients, self.reference,
            on_summary=lambda summary: self.hub.push(view_id, 'summary', summary),
            on_summary_error=lambda e: self.hub.push(view_id, 'summary-error', {'message': str(e)}),
            summary_delay=self.summary_delay,
        )
        with self._lock:
            previous = self._views.get(view_id)
            self._views[view_id] = grid
            self._touched[view_id] = time.monotonic()
        if previous is not None:
            previous.close()
        return grid

    def close(self):
        with self._lock:
            views, self._views = list(self._views.values()), {}
            self._touched.clear()
        for grid in views:
            grid.close()
        self.reference.close()
        self.clients.close()


def _fail(e):
    body = {'success': False, 'message': str(e)}
    if isinstance(e, ApiError):
        body.update(status=e.status, code=e.code, details=e.details)
    if isinstance(e, RequestTimeout):
        body.update(timeout=True, timeoutMs=e.timeout_ms)
    return jsonify(body)


def _body():
    return request.get_json(silent=True) or {}


def _view_id():
    if 'view_id' not in session:
        session['view_id'] = secrets.token_hex(8)
    return session['view_id']


# ═══════════════════════════════════════════════════════════════════════════════
#  FLASK APP
# ═══════════════════════════════════════════════════════════════════════════════

def create_app(clients=None, reference=None, hub=None, summary_delay=None, load_reference=True):
    app = Flask(__name__)
    app.secret_key = SECRET_KEY
    app.config.update(
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=SESSION_COOKIE_SECURE,
        SESSION_COOKIE_HTTPONLY=True,
    )
    CORS(app,
         supports_credentials=True,
         origins=ALLOWED_ORIGINS,
         allow_headers=["Content-Type"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    clients = clients or ApiClients(API_BASE_URL)
    hub = hub or EventHub()
    if reference is None:
        reference = ReferenceDataCache(clients, on_change=lambda key, snap: hub.push_all('reference', {'key': key}))
    if summary_delay is None:
        summary_delay = SUMMARY_DEBOUNCE_MS / 1000.0
    ctx = AdminContext(clients, reference, hub, summary_delay)
    app.extensions['lab_admin'] = ctx
    if load_reference:
        reference.load_all()

    def current_grid():
        grid = ctx.view(_view_id())
        if grid is None:
            raise ScheduleError('Schedule view is not open; reload the page')
        return grid

    def grid_reply(grid, **extra):
        return jsonify({'success': True, **extra, **grid.state()})

    # ── Pages ─────────────────────────────────────────────────────────────────
    @app.route('/')
    def index():
        return pages.render_home(ctx.reference.snapshot())

    @app.route('/schedule')
    def schedule_page():
        _view_id()
        return pages.render_schedule()

    @app.route('/<entity>')
    def entity_page(entity):
        if entity not in ENTITIES:
            abort(404)
        return pages.render_entity(entity)

    # ── Health / reference data ───────────────────────────────────────────────
    @app.route('/api/health')
    def health():
        snap = ctx.reference.snapshot()
        return jsonify({'success': True, 'apiBaseUrl': ctx.clients.base_url,
                        'reference': {'loading': snap['loading'], 'error': snap['error']}})

    @app.route('/api/reference')
    def reference_data():
        try:
            ctx.reference.ensure_loaded().result()
        except UI_ERRORS as e:
            # the snapshot still carries whatever was loaded before, plus the error
            log.info("serving reference snapshot after failed load: %s", e)
        return jsonify({'success': True, **ctx.reference.snapshot()})

    @app.route('/api/reference/refresh', methods=['POST'])
    def refresh_reference():
        d = _body()
        key = d.get('key') or ENTITIES.get(d.get('entity', ''))
        try:
            outcome = ctx.reference.refresh(key) if key else ctx.reference.load_all()
            snap = outcome.result()
        except KeyError as e:
            return jsonify({'success': False, 'message': e.args[0]})
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True, **snap})

    @app.route('/api/free-by-slot')
    def free_by_slot():
        try:
            return jsonify({'success': True, **summarize_free_slots(ctx.clients.faculties.get_free_faculties_by_slot())})
        except UI_ERRORS as e:
            return _fail(e)

    # ── CRUD proxy ────────────────────────────────────────────────────────────
    def entity_client(entity):
        if entity not in ENTITIES:
            abort(404)
        return getattr(ctx.clients, entity)

    def after_write(entity):
        # the list a page re-reads after a write must already hold that write
        ctx.reference.refresh(ENTITIES[entity]).result()

    @app.route('/api/<entity>', methods=['GET'])
    def list_entities(entity):
        entity_client(entity)
        try:
            ctx.reference.ensure_loaded().result()
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True, 'data': ctx.reference.get(ENTITIES[entity])})

    @app.route('/api/<entity>', methods=['POST'])
    def create_entity(entity):
        client = entity_client(entity)
        try:
            created = client.create(_body())
            after_write(entity)
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True, 'data': created.get('data')})

    @app.route('/api/<entity>/<item_id>', methods=['GET'])
    def get_entity(entity, item_id):
        client = entity_client(entity)
        try:
            return jsonify({'success': True, 'data': client.get_by_id(item_id).get('data')})
        except UI_ERRORS as e:
            return _fail(e)

    @app.route('/api/<entity>/<item_id>', methods=['PUT'])
    def update_entity(entity, item_id):
        client = entity_client(entity)
        try:
            updated = client.update(item_id, _body())
            after_write(entity)
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True, 'data': updated.get('data')})

    @app.route('/api/<entity>/<item_id>', methods=['DELETE'])
    def delete_entity(entity, item_id):
        client = entity_client(entity)
        try:
            client.delete(item_id)
            after_write(entity)
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True})

    # ── Schedule grid ─────────────────────────────────────────────────────────
    @app.route('/api/schedule')
    def schedule_state():
        view_id = _view_id()
        try:
            grid = ctx.view(view_id)
            if grid is None or grid.error or request.args.get('reload'):
                grid = ctx.open_view(view_id).load()
        except UI_ERRORS as e:
            return _fail(e)
        return grid_reply(grid)

    @app.route('/api/schedule/drag-start', methods=['POST'])
    def drag_start():
        try:
            grid = current_grid()
            grid.drag_start(_body().get('allocationId'))
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True})

    @app.route('/api/schedule/drag-cancel', methods=['POST'])
    def drag_cancel():
        try:
            current_grid().drag_cancel()
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True})

    @app.route('/api/schedule/drop', methods=['POST'])
    def drop():
        d = _body()
        try:
            grid = current_grid()
            result = grid.drop(d.get('labId'), d.get('timeSlotId'), d.get('dayPattern'))
        except UI_ERRORS as e:
            return _fail(e)
        return grid_reply(grid, action=result['action'])

    @app.route('/api/schedule/allocations/<allocation_id>', methods=['DELETE'])
    def remove_allocation(allocation_id):
        try:
            grid = current_grid()
            grid.remove_allocation(allocation_id)
        except UI_ERRORS as e:
            return _fail(e)
        return grid_reply(grid)

    @app.route('/api/schedule/summary')
    def schedule_summary():
        try:
            grid = current_grid()
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True, 'summary': grid.summary, 'pending': grid.summary_pending})

    # ── Dialogs ───────────────────────────────────────────────────────────────
    def open_dialog(kind):
        grid = current_grid()
        if not isinstance(grid.dialog, kind):
            raise ScheduleError('That dialog is not open')
        return grid, grid.dialog

    def dialog_reply(grid, dialog):
        if dialog.error:
            return jsonify({'success': False, 'message': dialog.error, 'dialog': dialog.state()})
        if dialog.closed:
            grid.close_dialog()
        return grid_reply(grid, dialog=dialog.state())

    @app.route('/api/schedule/cell', methods=['POST'])
    def click_cell():
        d = _body()
        try:
            grid = current_grid()
            dialog = grid.click_cell(d.get('labId'), d.get('timeSlotId'), d.get('dayPattern'))
        except UI_ERRORS as e:
            return _fail(e)
        # a failed batch list still opens the dialog, with its banner
        return jsonify({'success': True, 'dialog': dialog.state()})

    @app.route('/api/schedule/assign', methods=['POST'])
    def assign():
        try:
            grid, dialog = open_dialog(AllocationDialog)
        except UI_ERRORS as e:
            return _fail(e)
        dialog.select(_body().get('batchId'))
        dialog.assign()
        return dialog_reply(grid, dialog)

    @app.route('/api/schedule/unassign', methods=['POST'])
    def unassign():
        try:
            grid, dialog = open_dialog(AllocationDialog)
        except UI_ERRORS as e:
            return _fail(e)
        dialog.remove()
        return dialog_reply(grid, dialog)

    @app.route('/api/schedule/batch-edit', methods=['POST'])
    def batch_edit():
        try:
            grid = current_grid()
            dialog = grid.click_batch(_body().get('allocationId'))
        except UI_ERRORS as e:
            return _fail(e)
        return jsonify({'success': True, 'dialog': dialog.state()})

    @app.route('/api/schedule/batch-edit/submit', methods=['POST'])
    def batch_edit_submit():
        try:
            grid, dialog = open_dialog(BatchEditDialog)
        except UI_ERRORS as e:
            return _fail(e)
        dialog.change(**_body())
        dialog.submit()
        return dialog_reply(grid, dialog)

    @app.route('/api/schedule/dialog/close', methods=['POST'])
    def close_dialog():
        grid = ctx.view(_view_id())
        if grid is not None:
            grid.close_dialog()
        return jsonify({'success': True})

    # ── SSE push stream ───────────────────────────────────────────────────────
    @app.route('/api/notify-stream')
    def notify_stream():
        return Response(stream_with_context(ctx.hub.stream(_view_id())),
                        mimetype='text/event-stream',
                        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})

    return app


# ═══════════════════════════════════════════════════════════════════════════════
#  STARTUP
# ═══════════════════════════════════════════════════════════════════════════════

def main():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    app = create_app()
    atexit.register(app.extensions['lab_admin'].close)

    print("\n" + "=" * 70)
    print("🧪  LAB STATUS EXPRESS — SCHEDULE ADMIN")
    print("=" * 70)
    print(f"\n🔗  REST API:     {API_BASE_URL}")
    print(f"⏱️   Timeouts:     reads {READ_TIMEOUT_MS}ms · writes {WRITE_TIMEOUT_MS}ms · seed {SLOW_TIMEOUT_MS}ms")
    print(f"🔔  Summary push: {SUMMARY_DEBOUNCE_MS}ms after drag activity settles")
    print(f"\n🌐  http://{HOST}:{PORT}")
    print("=" * 70 + "\n")

    app.run(host=HOST, port=PORT, debug=DEBUG, threaded=True, use_reloader=False)


if __name__ == '__main__':
    main()

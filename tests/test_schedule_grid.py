import json
import threading
import time

import pytest

from conftest import BATCHES, make_allocation, make_response
from dialogs import AllocationDialog, BatchEditDialog
from schedule_grid import ScheduleError, ScheduleGrid, SummaryRefresher, cell_key
from timed_request import ApiError

SUMMARY_PATH = '/faculties/summary/free-by-slot'


@pytest.fixture
def grid(clients, reference, timers):
    summaries = []
    grid = ScheduleGrid(clients, reference, on_summary=summaries.append, timer_factory=timers)
    grid.summaries = summaries
    grid.load()
    yield grid
    grid.close()


def _fire_all(timers):
    for timer in list(timers.created):
        timer.fire()


def test_load_builds_the_grid(grid):
    assert [a['_id'] for a in grid.allocations] == ['A1', 'A2']
    rows = grid.rows()
    assert [row['lab']['_id'] for row in rows] == ['L1', 'L2']
    # 3 time slots × 3 day patterns
    assert len(rows[0]['cells']) == 9
    assert rows[0]['cells'][0]['key'] == 'L1-S1-MWF'
    assert rows[0]['cells'][0]['allocation']['_id'] == 'A1'
    assert rows[0]['cells'][1]['allocation'] is None
    assert [h['timeSlot']['_id'] for h in grid.header()] == ['S1', 'S2', 'S3']
    assert grid.state()['dayPatterns'] == ['MWF', 'TTS', 'REGULAR']


def test_load_failure_keeps_error(clients, reference, fake_session, timers):
    fake_session.add('GET', '/allocations', {'message': 'boom'}, status=500, reason='Internal Server Error')
    grid = ScheduleGrid(clients, reference, timer_factory=timers)
    with pytest.raises(ApiError):
        grid.load()
    assert grid.error == 'boom'
    assert grid.loading is False


def test_get_allocation_matches_all_three_coordinates(grid):
    assert grid.get_allocation('L1', 'S1', 'MWF')['_id'] == 'A1'
    assert grid.get_allocation('L1', 'S1', 'TTS') is None
    assert grid.get_allocation('L2', 'S1', 'MWF') is None
    assert cell_key('L1', 'S1', 'MWF') == 'L1-S1-MWF'


def test_drop_on_origin_cell_is_a_no_op(grid, fake_session):
    grid.drag_start('A1')
    assert grid.drop('L1', 'S1', 'MWF') == {'action': 'none', 'allocations': []}
    assert fake_session.calls_to('PUT', '/allocations/A1') == []
    assert grid.dragged is None


def test_drop_without_drag_does_nothing(grid, fake_session):
    assert grid.drop('L2', 'S3', 'MWF')['action'] == 'none'
    assert not [c for c in fake_session.calls if c['method'] == 'PUT']


def test_move_to_empty_cell(grid, fake_session):
    grid.drag_start('A1')
    result = grid.drop('L2', 'S3', 'REGULAR')

    assert result['action'] == 'move'
    calls = fake_session.calls_to('PUT', '/allocations/A1')
    assert [c['json'] for c in calls] == [
        {'lab': 'L2', 'batch': 'B1', 'timeSlot': 'S3', 'dayPattern': 'REGULAR'},
    ]
    assert grid.get_allocation('L1', 'S1', 'MWF') is None
    moved = grid.get_allocation('L2', 'S3', 'REGULAR')
    assert moved['_id'] == 'A1'
    assert moved['batch']['_id'] == 'B1'
    assert len(grid.allocations) == 2


def test_swap_exchanges_cells_and_keeps_batches(grid, fake_session):
    grid.drag_start('A1')
    result = grid.drop('L2', 'S2', 'TTS')

    assert result['action'] == 'swap'
    assert fake_session.calls_to('PUT', '/allocations/A1')[0]['json'] == {
        'lab': 'L2', 'batch': 'B1', 'timeSlot': 'S2', 'dayPattern': 'TTS'}
    assert fake_session.calls_to('PUT', '/allocations/A2')[0]['json'] == {
        'lab': 'L1', 'batch': 'B2', 'timeSlot': 'S1', 'dayPattern': 'MWF'}

    at_target = grid.get_allocation('L2', 'S2', 'TTS')
    at_origin = grid.get_allocation('L1', 'S1', 'MWF')
    assert (at_target['_id'], at_target['batch']['_id']) == ('A1', 'B1')
    assert (at_origin['_id'], at_origin['batch']['_id']) == ('A2', 'B2')


def test_incomplete_swap_leaves_allocations_untouched(grid, fake_session):
    fake_session.add('PUT', '/allocations/A2', {'success': True, 'data': None})
    before = json.dumps(grid.allocations, sort_keys=True)

    grid.drag_start('A1')
    with pytest.raises(ScheduleError):
        grid.drop('L2', 'S2', 'TTS')

    assert json.dumps(grid.allocations, sort_keys=True) == before
    assert grid.dragged is None


def test_failed_swap_half_raises_and_leaves_allocations_untouched(grid, fake_session):
    fake_session.add('PUT', '/allocations/A1', {'message': 'Lab L2 is closed'}, status=400, reason='Bad Request')
    before = json.dumps(grid.allocations, sort_keys=True)

    grid.drag_start('A1')
    with pytest.raises(ApiError) as exc:
        grid.drop('L2', 'S2', 'TTS')

    assert str(exc.value) == 'Lab L2 is closed'
    assert json.dumps(grid.allocations, sort_keys=True) == before


def test_move_without_data_raises(grid, fake_session):
    fake_session.add('PUT', '/allocations/A1', {'success': True})
    grid.drag_start('A1')
    with pytest.raises(ScheduleError):
        grid.drop('L1', 'S1', 'TTS')
    assert grid.get_allocation('L1', 'S1', 'MWF')['_id'] == 'A1'


def test_rapid_moves_fetch_the_summary_once(grid, fake_session, timers):
    for pattern in ('TTS', 'REGULAR'):
        grid.drag_start('A1')
        grid.drop('L1', 'S1', pattern)
    for pattern in ('MWF', 'TTS', 'REGULAR'):
        grid.drag_start('A1')
        grid.drop('L1', 'S3', pattern)

    assert fake_session.calls_to('GET', SUMMARY_PATH) == []
    assert grid.summary_pending
    assert [t.cancelled for t in timers.created].count(False) == 1

    _fire_all(timers)

    assert len(fake_session.calls_to('GET', SUMMARY_PATH)) == 1
    assert grid.summary['totals'] == {'completelFree': 1, 'partiallyFree': 1, 'busy': 0}
    assert grid.summaries == [grid.summary]
    assert not grid.summary_pending


def test_summary_failure_goes_to_error_callback(clients, reference, fake_session, timers):
    fake_session.add('GET', SUMMARY_PATH, {'message': 'summary unavailable'}, status=503,
                     reason='Service Unavailable')
    errors = []
    grid = ScheduleGrid(clients, reference, on_summary_error=errors.append, timer_factory=timers)
    grid.load()
    _fire_all(timers)
    assert [str(e) for e in errors] == ['summary unavailable']
    assert grid.summary is None


def test_summary_refresher_debounces_with_real_timers():
    calls = []
    done = threading.Event()

    def fetch():
        calls.append(1)
        return {'slots': []}

    refresher = SummaryRefresher(fetch, delay=0.05, on_result=lambda _r: done.set())
    for _ in range(5):
        refresher.trigger()
    assert done.wait(2)
    time.sleep(0.15)
    assert len(calls) == 1


def test_summary_refresher_cancel(timers):
    calls = []
    refresher = SummaryRefresher(lambda: calls.append(1), delay=1, timer_factory=timers)
    refresher.trigger()
    refresher.cancel()
    # a timer that was already running when cancelled is ignored too
    timers.created[0].function(*timers.created[0].args)
    assert calls == []
    assert not refresher.pending


def test_rejected_delete_keeps_the_allocation(grid, fake_session):
    fake_session.add('DELETE', '/allocations/A1', {'message': 'Allocation is locked'},
                     status=404, reason='Not Found')
    with pytest.raises(ApiError) as exc:
        grid.remove_allocation('A1')
    assert str(exc.value) == 'Allocation is locked'
    assert exc.value.status == 404
    assert grid.get_allocation('L1', 'S1', 'MWF')['_id'] == 'A1'


def test_remove_allocation(grid, fake_session):
    fake_session.add('DELETE', '/allocations/A1', {'success': True})
    grid.remove_allocation('A1')
    assert grid.get_allocation('L1', 'S1', 'MWF') is None
    assert [a['_id'] for a in grid.allocations] == ['A2']
    with pytest.raises(ScheduleError):
        grid.remove_allocation('A1')


def test_batch_update_reaches_every_cell_of_that_batch(grid):
    grid.add_allocation(make_allocation('A3', 'L2', 'S1', 'REGULAR', 'B1'))
    renamed = {**BATCHES[0], 'code': 'B1-NEW', 'numberOfStudents': 25}
    grid.apply_batch_update(renamed)

    assert grid.find('A1')['batch']['code'] == 'B1-NEW'
    assert grid.find('A3')['batch']['numberOfStudents'] == 25
    assert grid.find('A2')['batch']['code'] == 'B2'


def test_click_empty_cell_then_assign(grid, fake_session):
    fake_session.add('POST', '/allocations', handler=lambda body: make_response(
        201, {'data': make_allocation('A9', body['lab'], body['timeSlot'], body['dayPattern'], body['batch'])},
        reason='Created'))
    dialog = grid.click_cell('L1', 'S1', 'TTS')
    assert isinstance(grid.dialog, AllocationDialog)
    assert dialog.existing is None
    assert [b['id'] for b in dialog.state()['batches']] == ['B1', 'B2']

    dialog.select('B2')
    dialog.assign()
    assert dialog.closed
    assert grid.get_allocation('L1', 'S1', 'TTS')['_id'] == 'A9'
    assert len(grid.allocations) == 3


def test_click_occupied_cell_then_remove(grid, fake_session):
    fake_session.add('DELETE', '/allocations/A1', {'success': True})
    dialog = grid.click_cell('L1', 'S1', 'MWF')
    assert dialog.existing['_id'] == 'A1'
    assert dialog.selected_batch == 'B1'
    assert dialog.remove()
    assert grid.find('A1') is None


def test_click_cell_validation(grid):
    with pytest.raises(ScheduleError):
        grid.click_cell('L1', 'S1', 'SUNDAY')
    with pytest.raises(ScheduleError):
        grid.click_cell('L9', 'S1', 'MWF')


def test_click_batch_opens_batch_editor(grid):
    dialog = grid.click_batch('A2')
    assert isinstance(dialog, BatchEditDialog)
    assert dialog.form['code'] == 'B2'
    assert dialog.form['faculty'] == 'F2'
    with pytest.raises(ScheduleError):
        grid.click_batch('missing')

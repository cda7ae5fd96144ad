import time

from mafia import db
from mafia.models import Room
from mafia.services.games import rooms, scheduler

from conftest import DEFAULT_SETTINGS


def test_phase_timers_are_disabled_in_tests(flask_app, monkeypatch):
    started = []
    monkeypatch.setattr(scheduler.socketio, 'start_background_task', lambda *a, **k: started.append(a))
    scheduler.schedule_phase_timer(flask_app, 1, 0, 30)
    assert started == []


def test_phase_timer_scheduled_once_per_phase(flask_app, monkeypatch):
    flask_app.config['ENABLE_SCHEDULER_IN_TESTS'] = True
    started = []
    monkeypatch.setattr(scheduler.socketio, 'start_background_task', lambda *a, **k: started.append(a))
    monkeypatch.setattr(scheduler, '_scheduled_phase_keys', set())
    scheduler.schedule_phase_timer(flask_app, 1, 0, 30)
    scheduler.schedule_phase_timer(flask_app, 1, 0, 30)
    scheduler.schedule_phase_timer(flask_app, 1, 1, 120)
    assert [a[1:] for a in started] == [(1, 0, 30.0), (1, 1, 120.0)]


def test_timer_worker_expires_the_phase(flask_app, lobby, users, monkeypatch):
    from mafia.services.games import session

    flask_app.config['ENABLE_SCHEDULER_IN_TESTS'] = True
    workers = []
    monkeypatch.setattr(scheduler.socketio, 'start_background_task', lambda fn, *a: workers.append((fn, a)))
    monkeypatch.setattr(scheduler.socketio, 'sleep', lambda seconds: None)
    monkeypatch.setattr(scheduler, '_scheduled_phase_keys', set())

    game = session.start_game(lobby.code, users[0].id)
    fn, args = workers.pop(0)
    assert args[:2] == (game.id, 0)
    fn(*args)
    # the worker ran in its own app context and session
    db.session.expire_all()
    assert game.current_phase.position == 1
    # the stale timer for the same phase is a no-op
    fn(*args)
    db.session.expire_all()
    assert game.current_phase.position == 1


def test_run_sweep_destroys_expired_rooms_and_evicts_limiter_keys(flask_app, users):
    limiter = flask_app.extensions['rate_limiter']
    room = rooms.create_room(users[0].id, DEFAULT_SETTINGS)
    code = room.code
    room.created_at = time.time() - 7200
    db.session.commit()

    assert scheduler.run_sweep(flask_app) == [code]
    assert Room.query.filter_by(code=code).first() is None
    assert len(limiter) == 0

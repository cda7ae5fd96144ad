import time
from typing import Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from mafia import db, socketio


_scheduled_phase_keys: Set[Tuple[int, int]] = set()


def schedule_phase_timer(app, game_id: int, phase_index: int, delay: float) -> None:
    """Schedule the timer trigger for one phase of one game.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (game_id, phase_index)
    - The worker calls ``expire_phase``, which ignores phases that already advanced
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    key = (game_id, phase_index)
    if key in _scheduled_phase_keys:
        app.logger.info(f"[timer-skip] game={game_id} phase={phase_index} already scheduled")
        return
    _scheduled_phase_keys.add(key)
    delay = max(0.0, float(delay))
    app.logger.info(f"[timer-set] game={game_id} phase={phase_index} duration={delay:.0f}s")

    def _worker(gid: int, expected_index: int, wait: float):
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        if hb > 0:
            slept = 0.0
            while slept < wait:
                step = min(hb, wait - slept)
                socketio.sleep(step)
                slept += step
                app.logger.info(f"[timer-heartbeat] game={gid} phase={expected_index} remaining={max(0, wait - slept):.0f}s")
        else:
            socketio.sleep(wait)

        from mafia.errors import GameError
        from mafia.services.games.session import expire_phase

        with app.app_context():
            _scheduled_phase_keys.discard((gid, expected_index))
            app.logger.info(f"[timer-fire] game={gid} phase={expected_index}")
            try:
                if not expire_phase(gid, expected_index):
                    app.logger.info(f"[timer-abort] game={gid} phase={expected_index} already advanced")
            except GameError as exc:
                # the game or its room is gone
                db.session.rollback()
                app.logger.info(f"[timer-abort] game={gid} phase={expected_index} {exc.message}")
            except SQLAlchemyError:
                db.session.rollback()
                app.logger.exception(f"[timer-error] game={gid} phase={expected_index}")

    socketio.start_background_task(_worker, game_id, phase_index, delay)


def run_sweep(app, now: Optional[float] = None):
    """One sweep: destroy expired rooms and drop idle rate-limit windows."""
    from mafia.services.games.rooms import sweep_expired_rooms

    with app.app_context():
        try:
            destroyed = sweep_expired_rooms(now=now)
        except SQLAlchemyError:
            db.session.rollback()
            app.logger.exception("[sweep-error] room sweep failed")
            destroyed = []
        limiter = app.extensions.get('rate_limiter')
        evicted = limiter.evict_expired() if limiter is not None else 0
        if destroyed or evicted:
            app.logger.info(f"[sweep] rooms={destroyed} rate_limit_keys={evicted}")
        return destroyed


def start_room_sweeper(app) -> None:
    """Run ``run_sweep`` every ROOM_SWEEP_INTERVAL_SEC in a background task."""
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    interval = float(app.config.get('ROOM_SWEEP_INTERVAL_SEC', 60))
    app.logger.info(f"[sweep-start] interval={interval:.0f}s")

    def _loop():
        while True:
            socketio.sleep(interval)
            run_sweep(app)

    socketio.start_background_task(_loop)

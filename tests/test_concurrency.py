import random
import threading

import pytest

from mafia import create_app, db
from mafia.models import GameState, Role, User
from mafia.services.games import rooms, session

from conftest import DEFAULT_SETTINGS, TestConfig


@pytest.fixture()
def file_app(tmp_path):
    """App on a file database so worker threads each get a real connection."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'mafia.db'}"

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def voting_game(file_app):
    """A five player game in its first voting phase. Returns (game_id, {role: [user ids]})."""
    members = [User(username=n, display_name=n.capitalize()) for n in ('alice', 'bob', 'carol', 'dave', 'erin')]
    db.session.add_all(members)
    db.session.commit()
    room = rooms.create_room(members[0].id, DEFAULT_SETTINGS)
    for u in members[1:]:
        rooms.join_room(room.code, u.id)
    for u in members:
        rooms.set_ready(room.code, u.id, True)
    game = session.start_game(room.code, members[0].id, rng=random.Random(3))
    session.expire_phase(game.id, 0)
    session.expire_phase(game.id, 1)
    assert game.state == GameState.DAY_VOTING

    by_role = {}
    for p in game.players:
        by_role.setdefault(Role(p.role), []).append(p.user_id)
    game_id = game.id
    db.session.remove()
    return game_id, by_role


def _race(app, *calls):
    """Run each call on its own thread, released together. Returns results or raised exceptions."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def run(i, call):
        with app.app_context():
            barrier.wait(5)
            try:
                results[i] = call()
            except Exception as exc:
                results[i] = exc
            finally:
                db.session.remove()

    threads = [threading.Thread(target=run, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert not any(t.is_alive() for t in threads)
    return results


def test_simultaneous_votes_are_both_recorded(file_app, voting_game):
    game_id, by_role = voting_game
    target = by_role[Role.MAFIA][0]
    first, second = by_role[Role.VILLAGER]

    results = _race(
        file_app,
        lambda: session.cast_vote(game_id, first, target),
        lambda: session.cast_vote(game_id, second, target),
    )
    assert not any(isinstance(r, Exception) for r in results)

    game = session.get_game(game_id)
    assert game.state == GameState.DAY_VOTING
    assert sorted(v.voter_id for v in game.current_phase.votes) == sorted([first, second])


def test_timer_racing_the_last_vote_advances_once(file_app, voting_game):
    game_id, by_role = voting_game
    mafia = by_role[Role.MAFIA][0]
    condemned, other_villager = by_role[Role.VILLAGER]
    for voter in (mafia, other_villager, by_role[Role.DOCTOR][0], by_role[Role.DETECTIVE][0]):
        session.cast_vote(game_id, voter, condemned)
    db.session.remove()

    vote, expired = _race(
        file_app,
        lambda: session.cast_vote(game_id, condemned, mafia),
        lambda: session.expire_phase(game_id, 2),
    )
    assert not isinstance(expired, Exception)
    # whichever got the room first closed the vote; the other found it closed
    if expired:
        assert isinstance(vote, Exception)
    else:
        assert not isinstance(vote, Exception)

    game = session.get_game(game_id)
    assert [p.type for p in game.phases] == ['NIGHT_ACTION', 'DAY_DISCUSSION', 'DAY_VOTING', 'NIGHT_ACTION']
    assert game.phases[2].eliminated_id == condemned
    assert game.player(condemned).is_alive is False
    assert game.state == GameState.NIGHT_ACTION

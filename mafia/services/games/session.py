"""Game Session: the phase state machine for one running game.

    STARTING -> NIGHT_ACTION -> DAY_DISCUSSION -> DAY_VOTING -> NIGHT_ACTION | GAME_END
                NIGHT_ACTION -> GAME_END (a night kill can decide the game)

Phases advance on two triggers that race: data completeness (every required
action or vote is in) and the phase timer. Both run under the room lock and
re-check the current phase first, so whichever loses finds the phase already
advanced and does nothing.
"""
import random
import time
from collections import Counter

from flask import current_app

from mafia import db
from mafia.errors import GamePermissionError, NotFoundError, StateError, ValidationError
from mafia.models import (
    ActionType, Faction, Game, GamePlayer, GameState, PhaseType, Phase,
    PhaseAction, PhaseVote, Role, RoomStatus,
)
from mafia.services.broadcast import gateway
from mafia.services.locks import room_locks
from mafia.services.games.roles import assign_roles
from mafia.services.games.rooms import get_room
from mafia.services.games.scheduler import schedule_phase_timer
from mafia.services.games.win import evaluate


TRANSITIONS = {
    GameState.STARTING: {GameState.NIGHT_ACTION},
    GameState.NIGHT_ACTION: {GameState.DAY_DISCUSSION, GameState.GAME_END},
    GameState.DAY_DISCUSSION: {GameState.DAY_VOTING},
    GameState.DAY_VOTING: {GameState.NIGHT_ACTION, GameState.GAME_END},
    GameState.GAME_END: set(),
}

LEGAL_ACTIONS = {
    (Role.MAFIA, ActionType.KILL, PhaseType.NIGHT_ACTION),
    (Role.DETECTIVE, ActionType.INVESTIGATE, PhaseType.NIGHT_ACTION),
    (Role.DOCTOR, ActionType.PROTECT, PhaseType.NIGHT_ACTION),
}

ACTION_ROLES = frozenset(role for role, _, _ in LEGAL_ACTIONS)


def check_transition(current, target):
    if target not in TRANSITIONS[current]:
        raise StateError(f'Invalid game state transition from {current.value} to {target.value}')


def is_legal_action(role, action_type, phase_type):
    return (Role(role), ActionType(action_type), PhaseType(phase_type)) in LEGAL_ACTIONS


# ---- lookups ----

def _room_code_for(game_id):
    code = db.session.query(Game.room_code).filter_by(id=game_id).scalar()
    if code is None:
        raise NotFoundError('Game not found')
    return code


def get_game(game_id):
    game = db.session.get(Game, game_id)
    if game is None:
        raise NotFoundError('Game not found')
    return game


def _require_running(game):
    if game.is_over:
        raise StateError('Game has ended')


def _require_alive_target(game, target_id):
    target = game.player(target_id)
    if target is None or not target.is_alive:
        raise ValidationError('Target must be a living player')
    return target


def _name(game, user_id):
    p = game.player(user_id)
    return p.user.display_name if p is not None and p.user is not None else str(user_id)


def _pick_top(tally, rng=None):
    """Most-picked target, or ``None`` when nothing was picked or a tie is left unresolved."""
    if not tally:
        return None
    top = max(tally.values())
    leaders = sorted(t for t, c in tally.items() if c == top)
    if len(leaders) == 1:
        return leaders[0]
    if current_app.config.get('VOTE_TIE_POLICY', 'none') == 'random':
        return (rng or random).choice(leaders)
    return None


# ---- phase bookkeeping ----

def _phase_duration(game, phase_type):
    if phase_type == PhaseType.NIGHT_ACTION:
        return int(game.night_duration)
    if phase_type == PhaseType.DAY_DISCUSSION:
        return int(game.day_duration)
    return int(current_app.config.get('VOTE_DURATION_SEC', 60))


def _open_phase(game, phase_type, now):
    check_transition(game.state, GameState(phase_type.value))
    current = game.current_phase
    if current is not None:
        current.end_time = now
    phase = Phase(
        position=len(game.phases),
        type=phase_type.value,
        start_time=now,
        end_time=now + _phase_duration(game, phase_type),
    )
    game.phases.append(phase)
    return phase


def _finish(game, winner, now, forced=False):
    # departures can end the game from any phase
    if not forced:
        check_transition(game.state, GameState.GAME_END)
    game.current_phase.end_time = now
    game.winner = winner.value
    game.ended_at = now
    if game.room is not None:
        game.room.status = RoomStatus.FINISHED.value


def _announce_phase(game, phase, eliminated=None):
    current_app.logger.info(f"[phase-open] game={game.id} index={phase.position} type={phase.type}")
    gateway.broadcast_to_room(game.room_code, 'game:phaseChanged', {
        'game_id': game.id,
        'phase': phase.type,
        'index': phase.position,
        'start_time': phase.start_time,
        'end_time': phase.end_time,
        'time_limit': int(round(phase.end_time - phase.start_time)),
        'eliminated': eliminated,
        'alive': [p.user_id for p in game.alive_players()],
    })
    schedule_phase_timer(current_app._get_current_object(), game.id, phase.position, phase.end_time - phase.start_time)


def _announce_end(game):
    current_app.logger.info(f"[game-end] game={game.id} winner={game.winner}")
    gateway.broadcast_to_room(game.room_code, 'game:ended', {
        'game_id': game.id,
        'winner': game.winner,
        'players': [p.to_dict() for p in game.players],
    })
    label = 'The mafia wins' if game.winner == Faction.MAFIA else 'The village wins'
    gateway.system_message(game.room_code, f'{label}!')


def _vote_summary(game, phase):
    tally = Counter(v.target_id for v in phase.votes)
    return {
        'game_id': game.id,
        'votes': [v.to_dict() for v in phase.votes],
        'tally': [{'target': t, 'votes': c} for t, c in tally.most_common()],
        'voters': len(phase.votes),
        'alive': len(game.alive_players()),
    }


# ---- start ----

def start_game(code, actor_id, rng=None):
    with room_locks.hold(code):
        room = get_room(code)
        if room.host_id != actor_id:
            raise GamePermissionError('Only the host can start the game')
        if room.status != RoomStatus.WAITING or room.game is not None:
            raise StateError('Game already started')
        members = list(room.members)
        if not all(m.is_ready for m in members):
            raise StateError('All players must be ready to start the game')
        min_players = int(current_app.config.get('MIN_PLAYERS', 5))
        if not min_players <= len(members) <= room.max_players:
            raise StateError(f'Need between {min_players} and {room.max_players} players to start')

        roles = assign_roles(len(members), room.role_counts, rng=rng)
        room.status = RoomStatus.STARTING.value
        db.session.commit()
        try:
            now = time.time()
            game = Game(
                room=room,
                room_code=room.code,
                day_duration=room.day_duration,
                night_duration=room.night_duration,
                started_at=now,
            )
            for seat, (member, role) in enumerate(zip(members, roles)):
                game.players.append(GamePlayer(user_id=member.user_id, seat=seat, role=role.value, is_alive=True))
            db.session.add(game)
            phase = _open_phase(game, PhaseType.NIGHT_ACTION, now)
            room.status = RoomStatus.IN_PROGRESS.value
            db.session.commit()
        except Exception:
            db.session.rollback()
            room.status = RoomStatus.WAITING.value
            db.session.commit()
            raise
        current_app.logger.info(f"[game-start] game={game.id} room={room.code} players={len(game.players)}")

        mafia = [p.user_id for p in game.players if p.role == Role.MAFIA]
        for p in game.players:
            payload = {'game_id': game.id, 'role': p.role}
            if p.role == Role.MAFIA:
                payload['allies'] = [uid for uid in mafia if uid != p.user_id]
            gateway.emit_to_identity(p.user_id, 'game:role', payload)
        gateway.broadcast_to_room(room.code, 'game:started', {
            'game_id': game.id,
            'phase': phase.type,
            'time_limit': game.night_duration,
            'players': [dict(p.to_dict(), role=None) for p in game.players],
        })
        _announce_phase(game, phase)
        return game


# ---- night ----

def perform_action(game_id, actor_id, action_type, target_id):
    try:
        action_type = ActionType(action_type)
    except ValueError as exc:
        raise ValidationError(f'Unknown action type: {action_type}') from exc
    with room_locks.hold(_room_code_for(game_id)):
        game = get_game(game_id)
        _require_running(game)
        phase = game.current_phase
        actor = game.player(actor_id)
        if actor is None or not actor.is_alive:
            raise GamePermissionError('Dead players cannot perform actions')
        if not is_legal_action(actor.role, action_type, phase.type):
            raise GamePermissionError('Invalid action for role or phase')
        _require_alive_target(game, target_id)

        existing = phase.action_of(actor_id)
        if existing is not None:
            existing.action_type = action_type.value
            existing.target_id = target_id
        else:
            phase.actions.append(PhaseAction(player_id=actor_id, action_type=action_type.value, target_id=target_id))
        db.session.commit()
        current_app.logger.info(f"[action] game={game.id} phase={phase.position} actor={actor_id} action={action_type.value}")
        _maybe_finish_night(game)
        return game


def _night_complete(game, phase):
    required = {p.user_id for p in game.alive_players() if Role(p.role) in ACTION_ROLES}
    acted = {a.player_id for a in phase.actions}
    return bool(required) and required <= acted


def _maybe_finish_night(game):
    if game.state == GameState.NIGHT_ACTION and _night_complete(game, game.current_phase):
        _resolve_night(game, time.time())
        return True
    return False


def _resolve_night(game, now):
    phase = game.current_phase
    kills = Counter(a.target_id for a in phase.actions if a.action_type == ActionType.KILL)
    protected = {a.target_id for a in phase.actions if a.action_type == ActionType.PROTECT}
    investigations = [(a.player_id, a.target_id) for a in phase.actions if a.action_type == ActionType.INVESTIGATE]

    victim_id = _pick_top(kills)
    victim = game.player(victim_id) if victim_id is not None else None
    killed = None
    if victim is not None and victim.is_alive and victim_id not in protected:
        victim.is_alive = False
        phase.eliminated_id = victim_id
        killed = victim

    winner = evaluate(game) if killed is not None else None
    next_phase = None
    if winner is not None:
        _finish(game, winner, now)
    else:
        next_phase = _open_phase(game, PhaseType.DAY_DISCUSSION, now)
    db.session.commit()

    for detective_id, target_id in investigations:
        target = game.player(target_id)
        gateway.emit_to_identity(detective_id, 'game:investigation', {
            'game_id': game.id,
            'target_id': target_id,
            'is_mafia': target is not None and target.role == Role.MAFIA,
        })
    if killed is not None:
        gateway.system_message(game.room_code, f'{_name(game, killed.user_id)} was killed during the night.')
    else:
        gateway.system_message(game.room_code, 'Nobody died tonight.')
    if next_phase is None:
        _announce_end(game)
    else:
        _announce_phase(game, next_phase, eliminated=killed.user_id if killed is not None else None)


# ---- day ----

def _open_voting(game, now):
    phase = _open_phase(game, PhaseType.DAY_VOTING, now)
    db.session.commit()
    gateway.system_message(game.room_code, 'Discussion is over. Time to vote.')
    _announce_phase(game, phase)


def cast_vote(game_id, voter_id, target_id):
    with room_locks.hold(_room_code_for(game_id)):
        game = get_game(game_id)
        _require_running(game)
        phase = game.current_phase
        voter = game.player(voter_id)
        if voter is None or not voter.is_alive:
            raise GamePermissionError('Dead players cannot vote')
        if phase.type != PhaseType.DAY_VOTING:
            raise GamePermissionError('Voting is only allowed during the day voting phase')
        _require_alive_target(game, target_id)

        existing = phase.vote_of(voter_id)
        if existing is not None:
            existing.target_id = target_id
        else:
            phase.votes.append(PhaseVote(voter_id=voter_id, target_id=target_id))
        db.session.commit()
        current_app.logger.info(f"[vote] game={game.id} phase={phase.position} voter={voter_id} target={target_id}")
        gateway.broadcast_to_room(game.room_code, 'game:voteUpdate', _vote_summary(game, phase))
        _maybe_finish_voting(game)
        return game


def _maybe_finish_voting(game):
    if game.state != GameState.DAY_VOTING:
        return False
    voters = {v.voter_id for v in game.current_phase.votes}
    alive = {p.user_id for p in game.alive_players()}
    if alive and alive <= voters:
        _resolve_votes(game, time.time())
        return True
    return False


def _resolve_votes(game, now):
    phase = game.current_phase
    alive = {p.user_id for p in game.alive_players()}
    tally = Counter(v.target_id for v in phase.votes if v.voter_id in alive and v.target_id in alive)
    eliminated_id = _pick_top(tally)
    if eliminated_id is not None:
        game.player(eliminated_id).is_alive = False
        phase.eliminated_id = eliminated_id

    winner = evaluate(game)
    next_phase = None
    if winner is not None:
        _finish(game, winner, now)
    else:
        next_phase = _open_phase(game, PhaseType.NIGHT_ACTION, now)
    db.session.commit()

    if eliminated_id is not None:
        gateway.system_message(game.room_code, f'The village has eliminated {_name(game, eliminated_id)}.')
    else:
        gateway.system_message(game.room_code, 'The village could not agree. Nobody was eliminated.')
    if next_phase is None:
        _announce_end(game)
    else:
        _announce_phase(game, next_phase, eliminated=eliminated_id)


# ---- timer and departures ----

def expire_phase(game_id, phase_index, now=None):
    """Timer trigger for the phase at ``phase_index``.

    Returns ``False`` without touching anything when the game is over or the
    phase has already advanced.
    """
    with room_locks.hold(_room_code_for(game_id)):
        game = get_game(game_id)
        phase = game.current_phase
        if game.is_over or phase is None or phase.position != phase_index:
            return False
        now = time.time() if now is None else now
        if phase.type == PhaseType.NIGHT_ACTION:
            _resolve_night(game, now)
        elif phase.type == PhaseType.DAY_DISCUSSION:
            _open_voting(game, now)
        else:
            _resolve_votes(game, now)
        return True


def forfeit(game_id, user_id):
    """Take a departing player out of a running game.

    Their seat dies, their own and incoming votes/actions in the current phase
    are dropped, and the phase's completion condition is re-checked.
    """
    with room_locks.hold(_room_code_for(game_id)):
        game = get_game(game_id)
        player = game.player(user_id)
        if game.is_over or player is None or not player.is_alive:
            return False
        player.is_alive = False
        phase = game.current_phase
        for v in list(phase.votes):
            if user_id in (v.voter_id, v.target_id):
                phase.votes.remove(v)
        for a in list(phase.actions):
            if user_id in (a.player_id, a.target_id):
                phase.actions.remove(a)

        now = time.time()
        winner = evaluate(game)
        if winner is not None:
            _finish(game, winner, now, forced=True)
        db.session.commit()
        current_app.logger.info(f"[forfeit] game={game.id} user={user_id} winner={game.winner}")
        gateway.system_message(game.room_code, f'{_name(game, user_id)} left the game.')
        if winner is not None:
            _announce_end(game)
        elif phase.type == PhaseType.NIGHT_ACTION:
            _maybe_finish_night(game)
        elif phase.type == PhaseType.DAY_VOTING:
            gateway.broadcast_to_room(game.room_code, 'game:voteUpdate', _vote_summary(game, phase))
            _maybe_finish_voting(game)
        return True


def public_state(game_id, viewer_id=None):
    return get_game(game_id).to_dict(viewer_id=viewer_id)

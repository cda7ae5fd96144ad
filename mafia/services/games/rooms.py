"""Room Registry: lobby lifecycle, membership, readiness and expiry.

Every mutation runs under the room's lock and re-reads the room after taking
it, so a join racing the TTL sweep sees the room either alive or gone.
"""
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError

from mafia import db
from mafia.errors import CapacityError, GamePermissionError, NotFoundError, StateError, ValidationError
from mafia.models import Room, RoomMember, RoomStatus
from mafia.schemas import load_settings
from mafia.services.broadcast import gateway
from mafia.services.locks import room_locks


def _ttl():
    return int(current_app.config.get('ROOM_TTL_SEC', 3600))


def get_room(code):
    room = Room.query.filter_by(code=(code or '').upper()).first()
    if not room or room.is_expired(_ttl()):
        raise NotFoundError('Room not found')
    return room


def create_room(host_id, settings):
    settings = load_settings(settings)
    while True:
        room = Room(
            host_id=host_id,
            max_players=settings.max_players,
            day_duration=settings.day_duration,
            night_duration=settings.night_duration,
        )
        room.role_counts = settings.role_counts.model_dump()
        room.members.append(RoomMember(user_id=host_id, is_ready=False))
        db.session.add(room)
        try:
            db.session.commit()
        except IntegrityError:
            # Another room claimed the same code between generation and commit
            db.session.rollback()
            continue
        break
    current_app.logger.info(f"[room-create] code={room.code} host={host_id} max_players={room.max_players}")
    return room


def join_room(code, user_id):
    with room_locks.hold(code):
        room = get_room(code)
        if room.member(user_id) is not None:
            # rejoining members just get their channel back
            return room
        if room.status != RoomStatus.WAITING:
            raise StateError('Game already in progress')
        if len(room.members) >= room.max_players:
            raise CapacityError('Room is full')
        room.members.append(RoomMember(user_id=user_id, is_ready=False))
        db.session.commit()
        current_app.logger.info(f"[room-join] code={room.code} user={user_id} members={len(room.members)}")
        return room


def leave_room(code, user_id):
    """Remove a member. Returns the room, or ``None`` once the last member left."""
    with room_locks.hold(code):
        room = get_room(code)
        member = room.member(user_id)
        if member is None:
            return room
        room.members.remove(member)
        if not room.members:
            destroy_room(room, reason='empty')
            return None
        if room.host_id == user_id:
            # members stay in join order
            room.host_id = room.members[0].user_id
            current_app.logger.info(f"[room-host] code={room.code} new_host={room.host_id}")
        db.session.commit()
        current_app.logger.info(f"[room-leave] code={room.code} user={user_id} members={len(room.members)}")
        return room


def set_ready(code, user_id, ready):
    with room_locks.hold(code):
        room = get_room(code)
        if room.status != RoomStatus.WAITING:
            raise StateError('Game already in progress')
        member = room.member(user_id)
        if member is not None and member.is_ready != bool(ready):
            member.is_ready = bool(ready)
            db.session.commit()
        return room


def toggle_ready(code, user_id):
    with room_locks.hold(code):
        room = get_room(code)
        member = room.member(user_id)
        if member is None:
            return room
        return set_ready(code, user_id, not member.is_ready)


def _require_host_in_lobby(room, actor_id, action):
    if room.host_id != actor_id:
        raise GamePermissionError(f'Only the host can {action}')
    if room.status != RoomStatus.WAITING:
        raise StateError('Game already in progress')


def update_settings(code, actor_id, settings):
    with room_locks.hold(code):
        room = get_room(code)
        _require_host_in_lobby(room, actor_id, 'change game settings')
        settings = load_settings(settings)
        if settings.max_players < len(room.members):
            raise ValidationError(f'max_players cannot be below the {len(room.members)} players already in the room')
        room.max_players = settings.max_players
        room.role_counts = settings.role_counts.model_dump()
        room.day_duration = settings.day_duration
        room.night_duration = settings.night_duration
        for m in room.members:
            if m.user_id != room.host_id:
                m.is_ready = False
        db.session.commit()
        current_app.logger.info(f"[room-settings] code={room.code} settings={room.settings}")
        return room


def kick_member(code, actor_id, target_id):
    with room_locks.hold(code):
        room = get_room(code)
        _require_host_in_lobby(room, actor_id, 'kick players')
        if target_id == room.host_id:
            raise ValidationError('Cannot kick the host')
        member = room.member(target_id)
        if member is None:
            raise NotFoundError('Player not in room')
        room.members.remove(member)
        db.session.commit()
        current_app.logger.info(f"[room-kick] code={room.code} user={target_id}")
        return room


def destroy_room(room, reason):
    code = room.code
    game = room.game
    abandoned = game is not None and not game.is_over
    if abandoned:
        # Ends without a winner; this is an abort, not a phase transition
        now = time.time()
        game.ended_at = now
        if game.current_phase is not None:
            game.current_phase.end_time = min(game.current_phase.end_time, now)
    db.session.delete(room)
    db.session.commit()
    current_app.logger.info(f"[room-destroy] code={code} reason={reason} abandoned_game={game.id if abandoned else None}")
    if abandoned:
        gateway.broadcast_to_room(code, 'game:ended', {'game_id': game.id, 'winner': None, 'reason': reason})
    gateway.broadcast_to_room(code, 'room:deleted', {'room_code': code, 'reason': reason})


def sweep_expired_rooms(now=None):
    """Destroy every room past its time-to-live. Returns the destroyed codes."""
    now = time.time() if now is None else now
    ttl = _ttl()
    codes = [c for (c,) in db.session.query(Room.code).filter(Room.created_at <= now - ttl).all()]
    destroyed = []
    for code in codes:
        with room_locks.hold(code):
            room = Room.query.filter_by(code=code).first()
            if room is None or not room.is_expired(ttl, now):
                continue
            destroy_room(room, reason='expired')
            destroyed.append(code)
    return destroyed

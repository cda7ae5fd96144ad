import time
from dataclasses import dataclass, field
from typing import Dict, Set

from flask import current_app, request
from flask_socketio import ConnectionRefusedError
from sqlalchemy.exc import SQLAlchemyError

from mafia import db, socketio
from mafia.errors import AuthError, GameError, GamePermissionError, ValidationError
from mafia.identity import Identity, get_verifier
from mafia.schemas import MESSAGE_TYPES, parse_message
from mafia.services.broadcast import NAMESPACE, gateway
from mafia.services.games import rooms, session
from mafia.services.locks import room_locks


@dataclass
class ConnectionContext:
    sid: str
    identity: Identity
    rooms: Set[str] = field(default_factory=set)


_contexts: Dict[str, ConnectionContext] = {}


def get_context(sid) -> ConnectionContext:
    ctx = _contexts.get(sid)
    if ctx is None:
        raise AuthError('Connection is not authenticated')
    return ctx


def _contexts_of(identity_id):
    return [c for c in list(_contexts.values()) if c.identity.id == identity_id]


def _broadcast_room(room):
    gateway.broadcast_to_room(room.code, 'room:updated', room.to_dict())


def _unsubscribe_identity(identity_id, code):
    for c in _contexts_of(identity_id):
        if code in c.rooms:
            c.rooms.discard(code)
            gateway.unsubscribe(c.sid, code)


def handle_connect(auth=None):
    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    token = token or request.args.get('token')
    try:
        identity = get_verifier().verify(token)
    except AuthError as exc:
        current_app.logger.info(f"[ws-refused] sid={request.sid} {exc.message}")
        raise ConnectionRefusedError(exc.to_dict())
    ctx = ConnectionContext(sid=request.sid, identity=identity)
    _contexts[ctx.sid] = ctx
    gateway.attach_identity(ctx.sid, identity.id)
    current_app.logger.info(f"[ws-connect] sid={ctx.sid} user={identity.id}")
    gateway.emit_to_connection(ctx.sid, 'connected', {'identity': identity.to_dict()})


def handle_disconnect(reason=None):
    ctx = _contexts.pop(request.sid, None)
    if ctx is None:
        return
    current_app.logger.info(f"[ws-disconnect] sid={ctx.sid} user={ctx.identity.id} rooms={sorted(ctx.rooms)}")
    # Membership persists; only this connection's subscriptions go away
    for code in ctx.rooms:
        gateway.system_message(code, f'{ctx.identity.display_name} disconnected.')


def handle_ping(data=None):
    gateway.emit_to_connection(request.sid, 'pong', data or {})


# ---- per-message handlers: (ctx, message) ----

def on_join(ctx, msg):
    room = rooms.join_room(msg.room_code, ctx.identity.id)
    with room_locks.hold(room.code):
        gateway.subscribe(ctx.sid, room.code)
        ctx.rooms.add(room.code)
        _broadcast_room(room)
        gateway.system_message(room.code, f'{ctx.identity.display_name} joined the room.')


def on_leave(ctx, msg):
    uid = ctx.identity.id
    with room_locks.hold(msg.room_code):
        room = rooms.get_room(msg.room_code)
        if room.member(uid) is None:
            _unsubscribe_identity(uid, room.code)
            return
        game = room.game
        if game is not None and not game.is_over and game.player(uid) is not None:
            session.forfeit(game.id, uid)
        room = rooms.leave_room(msg.room_code, uid)
        _unsubscribe_identity(uid, msg.room_code)
        if room is not None:
            _broadcast_room(room)
            gateway.system_message(room.code, f'{ctx.identity.display_name} left the room.')


def on_toggle_ready(ctx, msg):
    with room_locks.hold(msg.room_code):
        if msg.ready is None:
            room = rooms.toggle_ready(msg.room_code, ctx.identity.id)
        else:
            room = rooms.set_ready(msg.room_code, ctx.identity.id, msg.ready)
        _broadcast_room(room)


def on_update_settings(ctx, msg):
    with room_locks.hold(msg.room_code):
        room = rooms.update_settings(msg.room_code, ctx.identity.id, msg.settings)
        _broadcast_room(room)


def on_kick(ctx, msg):
    with room_locks.hold(msg.room_code):
        room = rooms.kick_member(msg.room_code, ctx.identity.id, msg.target_id)
        gateway.emit_to_identity(msg.target_id, 'room:kicked', {'room_code': room.code})
        _unsubscribe_identity(msg.target_id, room.code)
        _broadcast_room(room)


def on_start(ctx, msg):
    with room_locks.hold(msg.room_code):
        game = session.start_game(msg.room_code, ctx.identity.id)
        _broadcast_room(game.room)


def on_action(ctx, msg):
    session.perform_action(msg.game_id, ctx.identity.id, msg.action, msg.target_id)
    gateway.emit_to_connection(ctx.sid, 'game:action', {
        'game_id': msg.game_id,
        'action': msg.action.value,
        'target_id': msg.target_id,
    })


def on_vote(ctx, msg):
    session.cast_vote(msg.game_id, ctx.identity.id, msg.target_id)


def on_chat(ctx, msg):
    limit = int(current_app.config.get('CHAT_MAX_LENGTH', 500))
    if len(msg.content) > limit:
        raise ValidationError(f'Message exceeds {limit} characters')
    with room_locks.hold(msg.room_code):
        room = rooms.get_room(msg.room_code)
        if room.member(ctx.identity.id) is None:
            raise GamePermissionError('Only room members can chat')
        now = time.time()
        gateway.broadcast_to_room(room.code, 'chat:message', {
            'id': int(now * 1000),
            'sender': ctx.identity.to_dict(),
            'content': msg.content,
            'timestamp': now,
        })


HANDLERS = {
    'room:join': on_join,
    'room:leave': on_leave,
    'room:toggleReady': on_toggle_ready,
    'room:updateSettings': on_update_settings,
    'room:kick': on_kick,
    'game:start': on_start,
    'game:action': on_action,
    'game:vote': on_vote,
    'chat:message': on_chat,
}


def dispatch(event, data):
    """Run one inbound message; failures go back to the sender only."""
    sid = request.sid
    try:
        ctx = get_context(sid)
        current_app.extensions['rate_limiter'].hit(ctx.identity.id, event)
        msg = parse_message(event, data)
        HANDLERS[msg.type](ctx, msg)
    except GameError as exc:
        db.session.rollback()
        current_app.logger.info(f"[ws-error] sid={sid} event={event} code={exc.code} {exc.message}")
        gateway.emit_to_connection(sid, 'error', {**exc.to_dict(), 'event': event})
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(f"[ws-error] sid={sid} event={event} storage failure")
        gateway.emit_to_connection(sid, 'error', {
            'message': 'Storage failure, try again',
            'code': 'STORAGE_ERROR',
            'event': event,
        })


def _bind(event):
    def handler(data=None):
        dispatch(event, data)
    handler.__name__ = f"handle_{event.replace(':', '_')}"
    return handler


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
    for event in MESSAGE_TYPES:
        socketio.on_event(event, _bind(event), namespace=NAMESPACE)

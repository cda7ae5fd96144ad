from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from mafia.models import Room, RoomStatus
from mafia.services.games.rooms import create_room, get_room


rooms = Blueprint('rooms', __name__)


@rooms.route('', methods=['POST'])
@login_required
def create():
    data = request.get_json(silent=True) or {}
    room = create_room(current_user.id, data.get('settings', data))
    return jsonify(room.to_dict()), 201


@rooms.route('', methods=['GET'])
@login_required
def list_waiting():
    ttl = int(current_app.config.get('ROOM_TTL_SEC', 3600))
    waiting = Room.query.filter_by(status=RoomStatus.WAITING.value).order_by(Room.created_at.desc()).all()
    return jsonify([r.to_dict() for r in waiting if not r.is_expired(ttl)])


@rooms.route('/<string:code>', methods=['GET'])
@login_required
def get_one(code):
    return jsonify(get_room(code).to_dict())

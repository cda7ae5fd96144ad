from mafia import db
from flask_login import UserMixin
from enum import Enum
import json
import random
import time


class Role(str, Enum):
    MAFIA = 'MAFIA'
    DETECTIVE = 'DETECTIVE'
    DOCTOR = 'DOCTOR'
    VILLAGER = 'VILLAGER'


class RoomStatus(str, Enum):
    WAITING = 'WAITING'
    STARTING = 'STARTING'
    IN_PROGRESS = 'IN_PROGRESS'
    FINISHED = 'FINISHED'


class PhaseType(str, Enum):
    NIGHT_ACTION = 'NIGHT_ACTION'
    DAY_DISCUSSION = 'DAY_DISCUSSION'
    DAY_VOTING = 'DAY_VOTING'


class GameState(str, Enum):
    STARTING = 'STARTING'
    NIGHT_ACTION = 'NIGHT_ACTION'
    DAY_DISCUSSION = 'DAY_DISCUSSION'
    DAY_VOTING = 'DAY_VOTING'
    GAME_END = 'GAME_END'


class ActionType(str, Enum):
    KILL = 'KILL'
    INVESTIGATE = 'INVESTIGATE'
    PROTECT = 'PROTECT'


class Faction(str, Enum):
    MAFIA = 'MAFIA'
    VILLAGE = 'VILLAGE'


ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_CODE_LENGTH = 6


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'display_name': self.display_name,
        }


def generate_room_code(rng=None):
    """Generate a room code no active room holds.

    Rooms are deleted when they die, so every row in ``room`` is active.
    """
    rng = rng or random
    while True:
        code = ''.join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))
        if not Room.query.filter_by(code=code).first():
            return code


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(ROOM_CODE_LENGTH), unique=True, index=True, nullable=False)
    host_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RoomStatus.WAITING.value)
    max_players = db.Column(db.Integer, nullable=False)
    role_counts_json = db.Column('role_counts', db.Text, nullable=False)  # JSON {role: count}
    day_duration = db.Column(db.Integer, nullable=False)
    night_duration = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.Float, nullable=False, default=time.time)

    host = db.relationship('User', foreign_keys=[host_id])
    members = db.relationship(
        'RoomMember', back_populates='room', order_by='RoomMember.id',
        cascade='all, delete-orphan',
    )
    game = db.relationship('Game', back_populates='room', uselist=False)

    def __init__(self, **kwargs):
        super(Room, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_room_code()
        if self.created_at is None:
            self.created_at = time.time()

    @property
    def role_counts(self):
        return json.loads(self.role_counts_json) if self.role_counts_json else {}

    @role_counts.setter
    def role_counts(self, counts):
        self.role_counts_json = json.dumps({str(Role(k).value): int(v) for k, v in counts.items()})

    @property
    def settings(self):
        return {
            'max_players': self.max_players,
            'role_counts': self.role_counts,
            'day_duration': self.day_duration,
            'night_duration': self.night_duration,
        }

    def is_expired(self, ttl_sec, now=None):
        now = time.time() if now is None else now
        return now >= self.created_at + ttl_sec

    def member(self, user_id):
        for m in self.members:
            if m.user_id == user_id:
                return m
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'host_id': self.host_id,
            'status': self.status,
            'settings': self.settings,
            'players': [m.to_dict() for m in self.members],
            'created_at': self.created_at,
            'game_id': self.game.id if self.game else None,
        }


class RoomMember(db.Model):
    __tablename__ = 'room_member'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    is_ready = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.Float, nullable=False, default=time.time)
    __table_args__ = (db.UniqueConstraint('room_id', 'user_id', name='uq_room_member'),)

    room = db.relationship('Room', back_populates='members')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'display_name': self.user.display_name if self.user else None,
            'is_ready': self.is_ready,
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    # Survives the room: rooms expire after an hour, the record stays
    room_id = db.Column(db.Integer, db.ForeignKey('room.id', ondelete='SET NULL'), nullable=True, index=True)
    room_code = db.Column(db.String(ROOM_CODE_LENGTH), nullable=False, index=True)
    # Copied from the room settings at start
    day_duration = db.Column(db.Integer, nullable=False)
    night_duration = db.Column(db.Integer, nullable=False)
    winner = db.Column(db.String(16), nullable=True)
    started_at = db.Column(db.Float, nullable=False, default=time.time)
    ended_at = db.Column(db.Float, nullable=True)

    room = db.relationship('Room', back_populates='game')
    players = db.relationship(
        'GamePlayer', back_populates='game', order_by='GamePlayer.seat',
        cascade='all, delete-orphan',
    )
    phases = db.relationship(
        'Phase', back_populates='game', order_by='Phase.position',
        cascade='all, delete-orphan',
    )

    @property
    def current_phase(self):
        return self.phases[-1] if self.phases else None

    @property
    def is_over(self):
        return self.ended_at is not None

    @property
    def state(self):
        if self.is_over:
            return GameState.GAME_END
        phase = self.current_phase
        if phase is None:
            return GameState.STARTING
        return GameState(phase.type)

    def player(self, user_id):
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def alive_players(self):
        return [p for p in self.players if p.is_alive]

    def to_dict(self, viewer_id=None):
        """Public snapshot; roles stay hidden except the viewer's own and the dead."""
        players_serialized = []
        for p in self.players:
            pd = p.to_dict()
            if not (self.is_over or not p.is_alive or p.user_id == viewer_id):
                pd['role'] = None
            players_serialized.append(pd)
        return {
            'id': self.id,
            'room_code': self.room_code,
            'state': self.state.value,
            'players': players_serialized,
            'phases': [ph.to_dict(reveal_actions=self.is_over) for ph in self.phases],
            'winner': self.winner,
            'started_at': self.started_at,
            'ended_at': self.ended_at,
        }


class GamePlayer(db.Model):
    __tablename__ = 'game_player'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    seat = db.Column(db.Integer, nullable=False)
    role = db.Column(db.String(16), nullable=False)
    is_alive = db.Column(db.Boolean, default=True, nullable=False)
    __table_args__ = (db.UniqueConstraint('game_id', 'user_id', name='uq_game_player'),)

    game = db.relationship('Game', back_populates='players')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'display_name': self.user.display_name if self.user else None,
            'seat': self.seat,
            'role': self.role,
            'is_alive': self.is_alive,
        }


class Phase(db.Model):
    __tablename__ = 'phase'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    start_time = db.Column(db.Float, nullable=False)
    # Planned deadline while open, actual close time once closed
    end_time = db.Column(db.Float, nullable=False)
    eliminated_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    __table_args__ = (db.UniqueConstraint('game_id', 'position', name='uq_phase_position'),)

    game = db.relationship('Game', back_populates='phases')
    votes = db.relationship(
        'PhaseVote', back_populates='phase', order_by='PhaseVote.id',
        cascade='all, delete-orphan',
    )
    actions = db.relationship(
        'PhaseAction', back_populates='phase', order_by='PhaseAction.id',
        cascade='all, delete-orphan',
    )

    def vote_of(self, voter_id):
        for v in self.votes:
            if v.voter_id == voter_id:
                return v
        return None

    def action_of(self, player_id):
        for a in self.actions:
            if a.player_id == player_id:
                return a
        return None

    def to_dict(self, reveal_actions=False):
        payload = {
            'index': self.position,
            'type': self.type,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'eliminated': self.eliminated_id,
            'votes': [v.to_dict() for v in self.votes],
        }
        if reveal_actions:
            payload['actions'] = [a.to_dict() for a in self.actions]
        return payload


class PhaseVote(db.Model):
    __tablename__ = 'phase_vote'
    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(db.Integer, db.ForeignKey('phase.id', ondelete='CASCADE'), nullable=False, index=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    target_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    __table_args__ = (db.UniqueConstraint('phase_id', 'voter_id', name='uq_phase_voter'),)

    phase = db.relationship('Phase', back_populates='votes')

    def to_dict(self):
        return {'voter': self.voter_id, 'target': self.target_id}


class PhaseAction(db.Model):
    __tablename__ = 'phase_action'
    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(db.Integer, db.ForeignKey('phase.id', ondelete='CASCADE'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    action_type = db.Column(db.String(16), nullable=False)
    target_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    __table_args__ = (db.UniqueConstraint('phase_id', 'player_id', name='uq_phase_actor'),)

    phase = db.relationship('Phase', back_populates='actions')

    def to_dict(self):
        return {'player': self.player_id, 'action': self.action_type, 'target': self.target_id}

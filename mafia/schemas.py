"""Boundary validation for room settings and inbound Socket.IO messages.

Inbound payloads are validated into a closed tagged union keyed by the event
name before anything is dispatched.
"""
from typing import Annotated, Literal, Optional, Union

from flask import current_app
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from mafia.errors import ValidationError
from mafia.models import ActionType, ROOM_CODE_LENGTH


class RoleCounts(BaseModel):
    model_config = ConfigDict(extra='forbid')

    MAFIA: int = Field(ge=1)
    DETECTIVE: int = Field(default=0, ge=0)
    DOCTOR: int = Field(default=0, ge=0)
    VILLAGER: int = Field(default=0, ge=0)

    @property
    def total(self):
        return self.MAFIA + self.DETECTIVE + self.DOCTOR + self.VILLAGER


class RoomSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    max_players: int = Field(ge=5, le=15)
    role_counts: RoleCounts
    day_duration: int = Field(default=120, ge=10, le=900)
    night_duration: int = Field(default=30, ge=10, le=600)

    @model_validator(mode='after')
    def _roles_fit_room(self):
        if self.role_counts.total > self.max_players:
            raise ValueError(f'role counts need {self.role_counts.total} players but the room holds {self.max_players}')
        if self.role_counts.total < 5:
            raise ValueError('role counts must cover at least 5 players')
        return self


def load_settings(data):
    """Validate raw settings, applying the app's size bounds and duration defaults."""
    if isinstance(data, RoomSettings):
        data = data.model_dump()
    if not isinstance(data, dict):
        raise ValidationError('settings must be an object')
    cfg = current_app.config
    raw = dict(data)
    raw.setdefault('day_duration', cfg.get('DEFAULT_DAY_DURATION_SEC', 120))
    raw.setdefault('night_duration', cfg.get('DEFAULT_NIGHT_DURATION_SEC', 30))
    try:
        settings = RoomSettings.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(describe(exc)) from exc
    min_players = int(cfg.get('MIN_PLAYERS', 5))
    max_players = int(cfg.get('MAX_PLAYERS', 15))
    if not min_players <= settings.max_players <= max_players:
        raise ValidationError(f'max_players must be between {min_players} and {max_players}')
    if settings.role_counts.total < min_players:
        raise ValidationError(f'role counts must cover at least {min_players} players')
    return settings


def describe(exc):
    parts = []
    for err in exc.errors():
        loc = '.'.join(str(x) for x in err.get('loc', ()) if x != 'type')
        parts.append(f"{loc}: {err['msg']}" if loc else err['msg'])
    return '; '.join(parts) or 'invalid payload'


# ---- Inbound messages ----

class _Message(BaseModel):
    model_config = ConfigDict(extra='ignore')


class _RoomMessage(_Message):
    room_code: str = Field(min_length=ROOM_CODE_LENGTH, max_length=ROOM_CODE_LENGTH)

    @field_validator('room_code')
    @classmethod
    def _upper(cls, v):
        return v.upper()


class JoinRoom(_RoomMessage):
    type: Literal['room:join']


class LeaveRoom(_RoomMessage):
    type: Literal['room:leave']


class ToggleReady(_RoomMessage):
    type: Literal['room:toggleReady']
    ready: Optional[bool] = None


class UpdateSettings(_RoomMessage):
    type: Literal['room:updateSettings']
    settings: dict


class KickMember(_RoomMessage):
    type: Literal['room:kick']
    target_id: int


class StartGame(_RoomMessage):
    type: Literal['game:start']


class PerformAction(_Message):
    type: Literal['game:action']
    game_id: int
    action: ActionType
    target_id: int


class CastVote(_Message):
    type: Literal['game:vote']
    game_id: int
    target_id: int


class ChatMessage(_RoomMessage):
    type: Literal['chat:message']
    content: str = Field(min_length=1)

    @field_validator('content')
    @classmethod
    def _strip(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('message is empty')
        return v


InboundMessage = Annotated[
    Union[JoinRoom, LeaveRoom, ToggleReady, UpdateSettings, KickMember,
          StartGame, PerformAction, CastVote, ChatMessage],
    Field(discriminator='type'),
]

MESSAGE_TYPES = (
    'room:join', 'room:leave', 'room:toggleReady', 'room:updateSettings', 'room:kick',
    'game:start', 'game:action', 'game:vote', 'chat:message',
)

_inbound = TypeAdapter(InboundMessage)


def parse_message(event, data):
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError('payload must be an object')
    try:
        return _inbound.validate_python({**data, 'type': event})
    except PydanticValidationError as exc:
        raise ValidationError(describe(exc)) from exc

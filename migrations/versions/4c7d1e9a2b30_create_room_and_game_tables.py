"""create user, room and game tables

Revision ID: 4c7d1e9a2b30
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d1e9a2b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'room',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('host_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('role_counts', sa.Text(), nullable=False),
        sa.Column('day_duration', sa.Integer(), nullable=False),
        sa.Column('night_duration', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_room_code', 'room', ['code'], unique=True)

    op.create_table(
        'room_member',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('room.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('is_ready', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', 'user_id', name='uq_room_member'),
    )
    op.create_index('ix_room_member_room_id', 'room_member', ['room_id'])

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('room.id', ondelete='SET NULL'), nullable=True),
        sa.Column('room_code', sa.String(length=6), nullable=False),
        sa.Column('day_duration', sa.Integer(), nullable=False),
        sa.Column('night_duration', sa.Integer(), nullable=False),
        sa.Column('winner', sa.String(length=16), nullable=True),
        sa.Column('started_at', sa.Float(), nullable=False),
        sa.Column('ended_at', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_room_id', 'game', ['room_id'])
    op.create_index('ix_game_room_code', 'game', ['room_code'])

    op.create_table(
        'game_player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('seat', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_alive', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'user_id', name='uq_game_player'),
    )
    op.create_index('ix_game_player_game_id', 'game_player', ['game_id'])

    op.create_table(
        'phase',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('start_time', sa.Float(), nullable=False),
        sa.Column('end_time', sa.Float(), nullable=False),
        sa.Column('eliminated_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'position', name='uq_phase_position'),
    )
    op.create_index('ix_phase_game_id', 'phase', ['game_id'])

    op.create_table(
        'phase_vote',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phase_id', sa.Integer(), sa.ForeignKey('phase.id', ondelete='CASCADE'), nullable=False),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phase_id', 'voter_id', name='uq_phase_voter'),
    )
    op.create_index('ix_phase_vote_phase_id', 'phase_vote', ['phase_id'])

    op.create_table(
        'phase_action',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phase_id', sa.Integer(), sa.ForeignKey('phase.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('action_type', sa.String(length=16), nullable=False),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phase_id', 'player_id', name='uq_phase_actor'),
    )
    op.create_index('ix_phase_action_phase_id', 'phase_action', ['phase_id'])


def downgrade():
    for table in ('phase_action', 'phase_vote', 'phase', 'game_player', 'game', 'room_member', 'room', 'user'):
        op.drop_table(table)

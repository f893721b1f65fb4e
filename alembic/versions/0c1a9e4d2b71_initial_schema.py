"""initial_schema

Revision ID: 0c1a9e4d2b71
Revises:
Create Date: 2026-10-17

Creates the build distribution schema:
- users: API-key holders; username is the namespace
- games, uploads: created lazily on first push
- builds, build_files: push lifecycle
- channels: named pointer to the current build of an upload
- jobs: archive assembly attempts kept for retry
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0c1a9e4d2b71'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # === USERS TABLE ===
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('api_key_hash', sa.String(64), nullable=False),
        sa.Column('api_key_prefix', sa.String(32), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_api_key_hash', 'users', ['api_key_hash'], unique=True)

    # === GAMES TABLE ===
    op.create_table(
        'games',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('short_text', sa.Text, nullable=True),
        sa.Column('type', sa.String(50), nullable=False, server_default='default'),
        sa.Column('classification', sa.String(50), nullable=False, server_default='game'),
        sa.Column('url', sa.String(1000), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'title', name='uq_game_owner_title'),
    )
    op.create_index('ix_games_user_id', 'games', ['user_id'])

    # === UPLOADS TABLE ===
    op.create_table(
        'uploads',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('game_id', sa.Integer, sa.ForeignKey('games.id', ondelete='CASCADE'), nullable=False),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('size', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('storage', sa.String(20), nullable=False, server_default='hosted'),
        sa.Column('type', sa.String(50), nullable=False, server_default='default'),
        sa.Column('platforms', JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_uploads_game_id', 'uploads', ['game_id'])

    # === BUILDS TABLE ===
    op.create_table(
        'builds',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('upload_id', sa.Integer, sa.ForeignKey('uploads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_version', sa.String(255), nullable=True),
        sa.Column('parent_build_id', sa.Integer, sa.ForeignKey('builds.id'), nullable=True),
        sa.Column('state', sa.String(20), nullable=False, server_default='started'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_builds_upload', 'builds', ['upload_id'])
    op.create_index('ix_builds_state', 'builds', ['state'])

    # === BUILD FILES TABLE ===
    op.create_table(
        'build_files',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('build_id', sa.Integer, sa.ForeignKey('builds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('sub_type', sa.String(50), nullable=False, server_default='default'),
        sa.Column('size', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('state', sa.String(20), nullable=False, server_default='uploading'),
        sa.Column('storage_path', sa.String(500), nullable=True),
        sa.Column('upload_url', sa.String(2000), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_build_files_build', 'build_files', ['build_id'])

    # === CHANNELS TABLE ===
    op.create_table(
        'channels',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('upload_id', sa.Integer, sa.ForeignKey('uploads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('current_build_id', sa.Integer, sa.ForeignKey('builds.id'), nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('name', 'upload_id', name='uq_channel_name_upload'),
    )
    op.create_index('ix_channels_name', 'channels', ['name'])

    # === JOBS TABLE ===
    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), server_default='queued'),
        sa.Column('attempts', sa.Integer, server_default='0'),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('result', JSON, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('logs', JSON, nullable=True),
        sa.Column('build_id', sa.Integer, sa.ForeignKey('builds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_jobs_build', 'jobs', ['build_id'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('ix_jobs_type', 'jobs', ['job_type'])


def downgrade() -> None:
    op.drop_table('jobs')
    op.drop_table('channels')
    op.drop_table('build_files')
    op.drop_table('builds')
    op.drop_table('uploads')
    op.drop_table('games')
    op.drop_table('users')

"""create listening tables

Revision ID: listening_tables_001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'listening_tables_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

def upgrade() -> None:
    # Connected users and their Spotify credentials
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), nullable=False),
        sa.Column('spotify_id', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('avatar_url', sa.String(1000), nullable=True),
        sa.Column('access_token', sa.String(2000), nullable=True),
        sa.Column('refresh_token', sa.String(2000), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('spotify_id', name='uq_users_spotify_id')
    )

    # Listening events
    op.create_table(
        'track_stats',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('track_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('artist', sa.String(1000), nullable=False),
        sa.Column('image_url', sa.String(1000), nullable=True),
        sa.Column('played_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('popularity', sa.Integer(), nullable=True),
        sa.Column('energy', sa.Float(), nullable=True),
        sa.Column('valence', sa.Float(), nullable=True),
        sa.Column('danceability', sa.Float(), nullable=True),
        sa.Column('tempo', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_track_stats'),
        sa.UniqueConstraint('user_id', 'track_id', 'played_at', name='uq_track_stats_user_track_played')
    )
    op.create_index('ix_track_stats_user_id', 'track_stats', ['user_id'], unique=False)
    op.create_index('ix_track_stats_user_played', 'track_stats', ['user_id', 'played_at'], unique=False)

    # Per-user artist aggregates
    op.create_table(
        'artist_stats',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('artist_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('genres', sa.JSON(), nullable=False),
        sa.Column('image_url', sa.String(1000), nullable=True),
        sa.Column('play_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_artist_stats'),
        sa.UniqueConstraint('user_id', 'artist_id', name='uq_artist_stats_user_artist')
    )
    op.create_index('ix_artist_stats_user_id', 'artist_stats', ['user_id'], unique=False)

    # Derived taste profiles
    op.create_table(
        'music_profiles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('top_tracks', sa.JSON(), nullable=False),
        sa.Column('top_artists', sa.JSON(), nullable=False),
        sa.Column('genre_dist', sa.JSON(), nullable=False),
        sa.Column('avg_energy', sa.Float(), nullable=True),
        sa.Column('avg_valence', sa.Float(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_music_profiles')
    )
    op.create_index('ix_music_profiles_user_id', 'music_profiles', ['user_id'], unique=True)

def downgrade() -> None:
    op.drop_index('ix_music_profiles_user_id', table_name='music_profiles')
    op.drop_table('music_profiles')
    op.drop_index('ix_artist_stats_user_id', table_name='artist_stats')
    op.drop_table('artist_stats')
    op.drop_index('ix_track_stats_user_played', table_name='track_stats')
    op.drop_index('ix_track_stats_user_id', table_name='track_stats')
    op.drop_table('track_stats')
    op.drop_table('users')

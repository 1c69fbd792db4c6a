"""create users, galleries, images, gallery_archives and rate_limit_counters

Revision ID: 4b1e7c2d9a10
Revises:
Create Date: 2026-09-28 14:10:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4b1e7c2d9a10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('auth_subject', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('plan', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_auth_subject'), 'users', ['auth_subject'], unique=True)

    op.create_table(
        'galleries',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('cover_image_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('download_enabled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_galleries_user_id'), 'galleries', ['user_id'], unique=False)

    op.create_table(
        'images',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('gallery_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('original_filename', sa.String(), nullable=False),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('mime_type', sa.String(), nullable=False),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['gallery_id'], ['galleries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('storage_path'),
    )
    op.create_index(op.f('ix_images_gallery_id'), 'images', ['gallery_id'], unique=False)

    op.create_foreign_key(
        'galleries_cover_image_id_fkey', 'galleries', 'images',
        ['cover_image_id'], ['id'], ondelete='SET NULL',
    )

    op.create_table(
        'gallery_archives',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('gallery_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('images_hash', sa.String(), nullable=False),
        sa.Column('image_count', sa.Integer(), nullable=False),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('checksum', sa.String(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('lease_owner', sa.String(), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['gallery_id'], ['galleries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_gallery_archives_gallery_id'), 'gallery_archives', ['gallery_id'], unique=False)
    op.create_index(
        'ix_gallery_archives_status_priority', 'gallery_archives', ['status', 'priority', 'created_at'], unique=False
    )
    op.create_index('ix_gallery_archives_lease', 'gallery_archives', ['status', 'lease_expires_at'], unique=False)

    op.create_table(
        'rate_limit_counters',
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('window_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('key', 'window_start'),
    )


def downgrade() -> None:
    op.drop_table('rate_limit_counters')
    op.drop_index('ix_gallery_archives_lease', table_name='gallery_archives')
    op.drop_index('ix_gallery_archives_status_priority', table_name='gallery_archives')
    op.drop_index(op.f('ix_gallery_archives_gallery_id'), table_name='gallery_archives')
    op.drop_table('gallery_archives')
    op.drop_constraint('galleries_cover_image_id_fkey', 'galleries', type_='foreignkey')
    op.drop_index(op.f('ix_images_gallery_id'), table_name='images')
    op.drop_table('images')
    op.drop_index(op.f('ix_galleries_user_id'), table_name='galleries')
    op.drop_table('galleries')
    op.drop_index(op.f('ix_users_auth_subject'), table_name='users')
    op.drop_table('users')

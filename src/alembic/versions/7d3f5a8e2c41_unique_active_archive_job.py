"""one active archive job and one row per version for each gallery

Revision ID: 7d3f5a8e2c41
Revises: 4b1e7c2d9a10
Create Date: 2026-10-20 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7d3f5a8e2c41'
down_revision: Union[str, None] = '4b1e7c2d9a10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_unique_constraint(
        'uq_gallery_archives_gallery_version', 'gallery_archives', ['gallery_id', 'version']
    )
    op.create_index(
        'uq_gallery_archives_active',
        'gallery_archives',
        ['gallery_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )


def downgrade() -> None:
    op.drop_index('uq_gallery_archives_active', table_name='gallery_archives')
    op.drop_constraint('uq_gallery_archives_gallery_version', 'gallery_archives', type_='unique')

"""Feed cache tables: feeds, entries and refresh locks

Revision ID: 001
Revises: 
Create Date: 2025-08-04 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create rss_feeds table
    op.create_table('rss_feeds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('feed_url', sa.String(length=2048), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('last_fetched', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('feed_url', name='uq_rss_feeds_feed_url')
    )
    op.create_index('ix_rss_feeds_title', 'rss_feeds', ['title'], unique=False)

    # Create rss_entries table
    op.create_table('rss_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('feed_id', sa.Integer(), nullable=False),
        sa.Column('guid', sa.String(length=1024), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('link', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('pub_date', sa.String(length=32), nullable=False),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['feed_id'], ['rss_feeds.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('feed_id', 'guid', name='uq_rss_entries_feed_guid')
    )
    op.create_index('ix_rss_entries_pub_date', 'rss_entries', ['pub_date'], unique=False)
    op.create_index('ix_rss_entries_feed_id', 'rss_entries', ['feed_id'], unique=False)

    # Create rss_locks table
    op.create_table('rss_locks',
        sa.Column('lock_key', sa.String(length=2100), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('lock_key')
    )
    op.create_index('ix_rss_locks_expires_at', 'rss_locks', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_rss_locks_expires_at', table_name='rss_locks')
    op.drop_table('rss_locks')
    op.drop_index('ix_rss_entries_feed_id', table_name='rss_entries')
    op.drop_index('ix_rss_entries_pub_date', table_name='rss_entries')
    op.drop_table('rss_entries')
    op.drop_index('ix_rss_feeds_title', table_name='rss_feeds')
    op.drop_table('rss_feeds')

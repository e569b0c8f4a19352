"""Initial horizn schema: sites, sessions, tracking rows, presence and funnels.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ### Sites table ###
    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tracking_code', sa.String(64), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('timezone', sa.String(64), server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_sites_tracking_code', 'sites', ['tracking_code'], unique=True)
    op.create_index('ix_sites_is_active', 'sites', ['is_active'])

    # ### Sessions table ###
    op.create_table(
        'sessions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_hash', sa.String(64), nullable=False),
        sa.Column('ip_hash', sa.String(64)),
        sa.Column('first_visit', sa.DateTime(), nullable=False),
        sa.Column('last_activity', sa.DateTime(), nullable=False),
        sa.Column('page_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_bounce', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('referrer', sa.String(512)),
        sa.Column('referrer_domain', sa.String(255)),
        sa.Column('entry_page', sa.String(512)),
        sa.Column('exit_page', sa.String(512)),
        sa.Column('user_agent', sa.Text()),
        sa.Column('device_type', sa.String(20), server_default='desktop'),
        sa.Column('browser', sa.String(50), server_default='Unknown'),
        sa.Column('os', sa.String(50), server_default='Unknown'),
        sa.Column('country_code', sa.String(2)),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sessions_user_hash', 'sessions', ['user_hash'])
    op.create_index('ix_sessions_referrer_domain', 'sessions', ['referrer_domain'])
    op.create_index('idx_sessions_site_activity', 'sessions', ['site_id', 'last_activity'])
    op.create_index('idx_sessions_site_first_visit', 'sessions', ['site_id', 'first_visit'])

    # ### Pageviews table ###
    op.create_table(
        'pageviews',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.String(64), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('page_url', sa.String(512), nullable=False),
        sa.Column('page_path', sa.String(512), nullable=False),
        sa.Column('page_title', sa.String(255)),
        sa.Column('referrer', sa.String(512)),
        sa.Column('user_agent', sa.Text()),
        sa.Column('ip_hash', sa.String(64)),
        sa.Column('load_time', sa.Integer()),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_pageviews_session_id', 'pageviews', ['session_id'])
    op.create_index('idx_pageviews_site_timestamp', 'pageviews', ['site_id', 'timestamp'])
    op.create_index('idx_pageviews_site_path', 'pageviews', ['site_id', 'page_path'])

    # ### Events table ###
    op.create_table(
        'events',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.String(64), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_name', sa.String(100), nullable=False),
        sa.Column('event_category', sa.String(100)),
        sa.Column('event_action', sa.String(100)),
        sa.Column('event_label', sa.String(255)),
        sa.Column('event_value', sa.Float()),
        sa.Column('event_data', postgresql.JSONB()),
        sa.Column('page_url', sa.String(512)),
        sa.Column('page_path', sa.String(512)),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_events_session_id', 'events', ['session_id'])
    op.create_index('idx_events_site_timestamp', 'events', ['site_id', 'timestamp'])
    op.create_index('idx_events_site_name', 'events', ['site_id', 'event_name'])

    # ### Realtime presence ###
    op.create_table(
        'realtime_visitors',
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('session_id', sa.String(64), primary_key=True),
        sa.Column('page_url', sa.String(512)),
        sa.Column('page_title', sa.String(255)),
        sa.Column('user_agent', sa.Text()),
        sa.Column('ip_hash', sa.String(64)),
        sa.Column('last_seen', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_realtime_site_last_seen', 'realtime_visitors', ['site_id', 'last_seen'])
    op.create_index('idx_realtime_last_seen', 'realtime_visitors', ['last_seen'])

    # ### Funnels ###
    op.create_table(
        'funnels',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('status', sa.String(20), server_default='active'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('idx_funnels_site_status', 'funnels', ['site_id', 'status'])

    op.create_table(
        'funnel_steps',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('funnel_id', sa.Integer(), sa.ForeignKey('funnels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('step_type', sa.String(20), nullable=False),
        sa.Column('conditions', postgresql.JSONB(), nullable=False),
        sa.Column('is_required', sa.Boolean(), server_default=sa.true()),
        sa.UniqueConstraint('funnel_id', 'step_order', name='uq_funnel_steps_order'),
    )

    op.create_table(
        'funnel_user_sessions',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('funnel_id', sa.Integer(), sa.ForeignKey('funnels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.String(64), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_hash', sa.String(64)),
        sa.Column('last_step_reached', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('steps_data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('is_converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conversion_time', sa.Integer()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('date', sa.Date(), nullable=False),
        sa.UniqueConstraint('funnel_id', 'session_id', name='uq_funnel_user_sessions_pair'),
    )
    op.create_index('idx_funnel_user_sessions_funnel_date', 'funnel_user_sessions', ['funnel_id', 'date'])

    op.create_table(
        'funnel_analytics',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('funnel_id', sa.Integer(), sa.ForeignKey('funnels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('sessions_entered', sa.Integer(), server_default='0'),
        sa.Column('total_conversions', sa.Integer(), server_default='0'),
        sa.Column('overall_conversion_rate', sa.Float(), server_default='0'),
        sa.Column('avg_time_to_convert', sa.Float()),
        sa.Column('step_counts', postgresql.JSONB(), server_default='{}'),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('funnel_id', 'date', name='uq_funnel_analytics_day'),
    )


def downgrade() -> None:
    op.drop_table('funnel_analytics')
    op.drop_table('funnel_user_sessions')
    op.drop_table('funnel_steps')
    op.drop_table('funnels')
    op.drop_table('realtime_visitors')
    op.drop_table('events')
    op.drop_table('pageviews')
    op.drop_table('sessions')
    op.drop_table('sites')

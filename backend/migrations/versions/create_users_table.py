"""create users table with referral fields

Revision ID: create_users_table
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'create_users_table'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('referral_code', sa.String(7), nullable=False),
        # Plain integer: deleting a referrer must not cascade into referred accounts
        sa.Column('referred_by', sa.Integer(), nullable=True),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('referral_code', name='uq_users_referral_code'),
        sa.CheckConstraint('total_referrals >= 0', name='ck_users_total_referrals_non_negative'),
        sa.CheckConstraint(
            "role IN ('superadmin', 'contentmanager', 'support', 'user')",
            name='ck_users_role_allowed',
        ),
    )
    op.create_index('ix_users_referred_by', 'users', ['referred_by'])


def downgrade() -> None:
    op.drop_index('ix_users_referred_by', table_name='users')
    op.drop_table('users')

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from backend.app.core.base import Base

ACCOUNT_ROLES = ("superadmin", "contentmanager", "support", "user")


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default='user')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Referral program
    referral_code: Mapped[str] = mapped_column(String(7), unique=True)
    # No FK: a deleted referrer leaves a dangling id that readers resolve defensively
    referred_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, server_default='0')

    __table_args__ = (
        Index('ix_users_referred_by', 'referred_by'),
        CheckConstraint('total_referrals >= 0', name='total_referrals_non_negative'),
        CheckConstraint(
            "role IN (" + ", ".join(f"'{r}'" for r in ACCOUNT_ROLES) + ")",
            name='role_allowed',
        ),
    )

    def __repr__(self):
        return f"<User(id={self.id}, referral_code={self.referral_code})>"

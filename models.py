import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text

from database import Base
from stages import BUSINESS_INTEL


def new_id():
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    revoked = Column(Boolean, default=False, nullable=False)


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)

    company_name = Column(String, index=True, default="")
    services_needed = Column(String, default="")
    industry = Column(String, default="")
    website = Column(String, default="")
    company_size = Column(String, default="")
    lead_source = Column(String, default="")

    contact_name = Column(String, default="")
    contact_title = Column(String, default="")
    contact_email = Column(String, default="")
    contact_phone = Column(String, default="")

    stage = Column(String, index=True, nullable=False, default=BUSINESS_INTEL)
    value = Column(Float, default=0)
    monthly_value = Column(Float, default=0)
    deal_score = Column(Integer, default=50)

    expected_close_date = Column(DateTime, nullable=True)
    next_follow_up_date = Column(DateTime, nullable=True)

    # [{"text": ..., "timestamp": ..., "sentiment": ...}]
    notes = Column(JSON, default=list)
    lost_reason = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.utcnow)


# Fields a client may write through the store's field-level update.
ACCOUNT_FIELDS = frozenset(
    c.name for c in Account.__table__.columns if c.name not in ("id", "owner_id")
)

"""
SQLAlchemy ORM models for integration credentials and synced CRM records.

JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in
tests), so free-form provider metadata never needs a migration.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

JsonType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class IntegrationCredential(Base):
    __tablename__ = "integration_settings"
    __table_args__ = (
        UniqueConstraint("user_id", "integration_type", name="uq_integration_settings_user_type"),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    integration_type = Column(String(64), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    workspace_id = Column(String(255))
    additional_settings = Column(JsonType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CompanyRecord(Base):
    __tablename__ = "company_data"
    __table_args__ = (
        UniqueConstraint("user_id", "remote_id", name="uq_company_data_user_remote"),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    remote_id = Column(String(255), nullable=False)
    source = Column(String(64), nullable=False)
    name = Column(Text)
    domain = Column(Text)
    industry = Column(Text)
    annual_revenue = Column(Float)
    size = Column(Integer)
    location = Column(Text)
    created_date = Column(DateTime(timezone=True))
    last_modified_date = Column(DateTime(timezone=True))
    properties = Column(JsonType, nullable=False, default=dict)
    synced_at = Column(DateTime(timezone=True), default=_utcnow)

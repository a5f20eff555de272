"""Data models for Lazyfill."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()

OutboxStatusEnum = Enum(
    "pending",
    "claimed",
    "done",
    "failed",
    name="outbox_status",
    native_enum=False,
)
CreditUsageKindEnum = Enum(
    "autofill",
    "top_up",
    "refund",
    "adjustment",
    name="credit_usage_kind",
    native_enum=False,
)
SemanticTypeEnum = Enum(
    "text",
    "choice",
    "date",
    "file",
    "boolean",
    "unknown",
    name="field_semantic_type",
    native_enum=False,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldRecord(Base):
    """Canonical classification metadata for one form field identity."""

    __tablename__ = "field_records"

    field_hash = Column(String(128), primary_key=True)
    tag = Column(String(50), nullable=False)
    field_type = Column(String(50), nullable=False)
    name = Column(String(500), nullable=True)
    label = Column(Text, nullable=True)
    placeholder = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    is_file_upload = Column(Boolean, nullable=False, default=False)
    classification = Column(String(100), nullable=False)
    semantic_type = Column(SemanticTypeEnum, nullable=False, default="unknown")
    link_type = Column(String(100), nullable=True)
    inference_hint = Column(String(100), nullable=True)
    answer_template = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserBalance(Base):
    """Per-user credit balance."""

    __tablename__ = "user_balances"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_user_balances_non_negative"),
    )

    user_id = Column(String(200), primary_key=True)
    credit_balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CreditUsage(Base):
    """Append-only audit row for every accepted balance delta."""

    __tablename__ = "credit_usage"
    __table_args__ = (Index("ix_credit_usage_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(200), nullable=False)
    kind = Column(CreditUsageKindEnum, nullable=False)
    credits_delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reference_id = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class OutboxEntry(Base):
    """Durable outbox row paired with the business mutation that produced it."""

    __tablename__ = "outbox_entries"
    __table_args__ = (
        Index("ix_outbox_status_available", "status", "available_at", "created_at"),
        Index("ix_outbox_status_claimed", "status", "claimed_at"),
        Index("ix_outbox_owner_key", "owner_key"),
    )

    log_id = Column(String(64), primary_key=True)
    kind = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    owner_key = Column(String(200), nullable=True)
    dedupe_key = Column(String(200), nullable=True, unique=True)
    status = Column(OutboxStatusEnum, nullable=False, default="pending")
    claim_token = Column(String(64), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AutofillRecord(Base):
    """Result of one billed autofill."""

    __tablename__ = "autofills"
    __table_args__ = (Index("ix_autofills_user_created", "user_id", "created_at"),)

    autofill_id = Column(String(64), primary_key=True)
    user_id = Column(String(200), nullable=False)
    form_hash = Column(String(128), nullable=False)
    credits_charged = Column(Integer, nullable=False)
    filled_values = Column(JSON, nullable=False)
    llm_usage = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

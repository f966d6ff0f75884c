"""SQLAlchemy models for settlement persistence."""

import uuid
import enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TransactionStatus(str, enum.Enum):
    """Canonical transaction statuses."""
    CREATED = "created"
    IN_PAYMENT = "in_payment"
    COMPLETED = "completed"
    REJECTED = "rejected"
    HASH_TOKEN_VALIDATION_ERROR = "hash_token_validation_error"
    HASH_PAYMENT_VALIDATION_ERROR = "hash_payment_validation_error"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PENDING = "pending"
    OVERDUE = "overdue"


class LiquidationStatus(str, enum.Enum):
    """Status tag derived from the settlement sub-entity."""
    PROCESSED = "PROCESSED"
    DEBIT = "DEBIT"


class SyncType(str, enum.Enum):
    """Operation types recorded in the sync ledger."""
    TRANSACTION = "TRANSACTION"
    LIQUIDATION = "LIQUIDATION"
    MATCHING = "MATCHING"
    EXPECTED_DATES = "EXPECTED_DATES"
    RECONCILIATION = "RECONCILIATION"


class SyncStatus(str, enum.Enum):
    """Outcome of a ledger entry."""
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class Organization(Base):
    """Merchant organization owning one or more payment buttons."""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    payment_buttons: Mapped[List["PaymentButton"]] = relationship(
        "PaymentButton",
        back_populates="organization",
    )


class PaymentButton(Base):
    """One processor credential set (guid / frase) scoped to an organization."""
    __tablename__ = "payment_buttons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(String(255), nullable=False)
    secret_key: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    organization: Mapped["Organization"] = relationship("Organization", back_populates="payment_buttons")

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment button to dictionary, without credentials."""
        return {
            "id": self.id,
            "name": self.name,
            "organization_id": self.organization_id,
        }


class Liquidation(Base):
    """Settlement batch paid out by the processor."""
    __tablename__ = "liquidations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    liquidation_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ARS")
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=LiquidationStatus.PROCESSED.value)
    payment_button_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("payment_buttons.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    transactions: Mapped[List["Transaction"]] = relationship("Transaction", back_populates="liquidation")

    __table_args__ = (
        Index("ix_liquidations_date", "date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert liquidation to dictionary representation."""
        return {
            "id": self.id,
            "liquidation_id": self.liquidation_id,
            "amount": self.amount,
            "currency": self.currency,
            "date": self.date.isoformat() if self.date else None,
            "status": self.status,
            "payment_button_id": self.payment_button_id,
        }


class Transaction(Base):
    """Card-processor transaction awaiting (or holding) a settlement."""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ARS")
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    quotas: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expected_pay_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payment_button_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("payment_buttons.id"), nullable=False, index=True
    )
    liquidation_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("liquidations.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    liquidation: Mapped[Optional["Liquidation"]] = relationship("Liquidation", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_status", "status"),
        Index("ix_transactions_date", "date"),
    )

    @property
    def is_settled(self) -> bool:
        return self.liquidation_id is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert transaction to dictionary representation."""
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "quotas": self.quotas,
            "date": self.date.isoformat() if self.date else None,
            "expected_pay_date": self.expected_pay_date.isoformat() if self.expected_pay_date else None,
            "payment_button_id": self.payment_button_id,
            "liquidation_id": self.liquidation_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SyncLog(Base):
    """Append-only audit entry for a sync or match attempt."""
    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scope of the attempt; both null for fleet-wide operations
    payment_button_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("payment_buttons.id"), nullable=True
    )
    organization_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_sync_logs_type_status_created_at", "type", "status", "created_at"),
        Index("ix_sync_logs_payment_button_id", "payment_button_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert ledger entry to dictionary representation."""
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "message": self.message,
            "payment_button_id": self.payment_button_id,
            "organization_id": self.organization_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SyncLease(Base):
    """Mutual-exclusion lease keyed by payment button."""
    __tablename__ = "sync_leases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lease_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

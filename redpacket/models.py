"""
SQLAlchemy database models for the red packet service.

Users hold a simulated balance, envelopes hold the puzzle and the pooled
money, claims record who took which share, and transactions are the
append-only ledger behind every balance change.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

Money = Numeric(12, 2, asdecimal=True)

# Envelope states
STATUS_PENDING = "pending"
STATUS_CLAIMED = "claimed"
STATUS_EXPIRED = "expired"

# Transaction kinds
TX_RECHARGE = "recharge"
TX_SEND = "send"
TX_RECEIVE = "receive"


def generate_uuid():
    """Generate a UUID string for primary keys."""
    return str(uuid.uuid4())


def utc_now():
    """Generate timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive datetimes read back from backends that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value):
    value = as_utc(value)
    return value.isoformat() if value else None


class User(Base):
    """
    Player account with a simulated wallet balance.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    nickname = Column(String(64), unique=True, nullable=False)
    password = Column(String(255), nullable=False)  # Format depends on CREDENTIAL_SCHEME
    balance = Column(Money, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    envelopes = relationship("Envelope", back_populates="sender")
    claims = relationship("Claim", back_populates="claimer")
    transactions = relationship("Transaction", back_populates="user")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_balance_non_negative"),
        Index("idx_user_nickname", "nickname"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, nickname={self.nickname})>"


class Envelope(Base):
    """
    Funded claim pool gated by a Morse-encoded passphrase.
    """

    __tablename__ = "envelopes"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    amount = Column(Money, nullable=False)
    total_count = Column(Integer, nullable=False)
    claimed_count = Column(Integer, nullable=False, default=0)
    book_name = Column(String(255), nullable=False)
    book_excerpt = Column(Text, nullable=False)
    answer = Column(String(64), nullable=False)  # Never leaves the server after creation
    morse_code = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    sender = relationship("User", back_populates="envelopes")
    claims = relationship("Claim", back_populates="envelope", order_by="Claim.created_at.desc()")

    __table_args__ = (
        CheckConstraint("claimed_count >= 0 AND claimed_count <= total_count", name="ck_envelope_claimed_count"),
        Index("idx_envelope_created", "created_at"),
        Index("idx_envelope_status_expires", "status", "expires_at"),
    )

    def __repr__(self):
        return f"<Envelope(id={self.id}, status={self.status}, claimed={self.claimed_count}/{self.total_count})>"


class Claim(Base):
    """
    One user's redemption of one share.
    """

    __tablename__ = "claims"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    envelope_id = Column(String(36), ForeignKey("envelopes.id"), nullable=False)
    claimer_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    amount = Column(Money, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    envelope = relationship("Envelope", back_populates="claims")
    claimer = relationship("User", back_populates="claims")

    __table_args__ = (
        UniqueConstraint("envelope_id", "claimer_id", name="uq_claim_envelope_claimer"),
        CheckConstraint("amount > 0", name="ck_claim_amount_positive"),
        Index("idx_claim_envelope", "envelope_id"),
    )

    def __repr__(self):
        return f"<Claim(envelope={self.envelope_id}, claimer={self.claimer_id}, amount={self.amount})>"


class Transaction(Base):
    """
    Append-only wallet ledger entry. Amounts are signed.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    type = Column(String(20), nullable=False)  # 'recharge', 'send', 'receive'
    amount = Column(Money, nullable=False)
    envelope_id = Column(String(36), ForeignKey("envelopes.id"))
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    user = relationship("User", back_populates="transactions")
    envelope = relationship("Envelope")

    __table_args__ = (
        Index("idx_tx_user_created", "user_id", "created_at"),
        Index("idx_tx_envelope", "envelope_id"),
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, user={self.user_id}, type={self.type}, amount={self.amount})>"

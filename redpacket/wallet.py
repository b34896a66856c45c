"""
Wallet ledger.

Every balance change is a conditional UPDATE on the user row plus the
matching ledger insert, inside one database transaction. Methods take an
optional session so callers such as claim settlement can fold the money
movement into their own atomic unit; without one, each call commits on its
own.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable, Dict, Optional, TypeVar

from sqlalchemy.orm import Session

from redpacket import metrics
from redpacket.audit_logger import get_audit_logger
from redpacket.database import session_scope
from redpacket.errors import InsufficientFundsError, NotFoundError, ValidationError
from redpacket.models import TX_RECEIVE, TX_RECHARGE, TX_SEND, Transaction, User, isoformat
from redpacket.money import MAX_AMOUNT, ZERO, as_number, quantize

logger = logging.getLogger(__name__)

T = TypeVar("T")


def serialize_transaction(tx: Transaction, include_envelope: bool = False) -> Dict:
    data = {
        "id": tx.id,
        "userId": tx.user_id,
        "type": tx.type,
        "amount": as_number(tx.amount),
        "envelopeId": tx.envelope_id,
        "createdAt": isoformat(tx.created_at),
    }
    if include_envelope:
        envelope = tx.envelope
        data["envelope"] = (
            {"id": envelope.id, "bookName": envelope.book_name, "amount": as_number(envelope.amount)}
            if envelope is not None
            else None
        )
    return data


class WalletService(ABC):
    """
    Ledger capability used by accounts and envelopes.

    ``LocalWalletService`` keeps balances in the application database; any
    other backend only has to honour the same all-or-nothing contract.
    """

    @abstractmethod
    def get_balance(self, user_id: str, session: Optional[Session] = None) -> Decimal:
        """Current balance; NotFoundError if the user does not exist."""

    @abstractmethod
    def recharge(self, user_id: str, amount: Decimal, envelope_id: Optional[str] = None,
                 session: Optional[Session] = None) -> Dict:
        """Credit the user with a ``recharge`` record (top-ups, grants, refunds)."""

    @abstractmethod
    def deduct(self, user_id: str, amount: Decimal, envelope_id: Optional[str] = None,
               session: Optional[Session] = None) -> Dict:
        """Debit the user with a ``send`` record; fails rather than go negative."""

    @abstractmethod
    def receive(self, user_id: str, amount: Decimal, envelope_id: Optional[str] = None,
                session: Optional[Session] = None) -> Dict:
        """Credit the user with a ``receive`` record (claim payouts)."""

    @abstractmethod
    def transfer(self, from_user_id: str, to_user_id: str, amount: Decimal, envelope_id: Optional[str] = None,
                 session: Optional[Session] = None) -> Dict:
        """Move money between two users; returns the recipient's ledger entry."""


class LocalWalletService(WalletService):
    """Database-backed wallet."""

    def __init__(self):
        self.audit = get_audit_logger()

    def _run(self, session: Optional[Session], fn: Callable[[Session], T]) -> T:
        if session is not None:
            return fn(session)
        with session_scope() as own_session:
            return fn(own_session)

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        if Decimal(amount) >= MAX_AMOUNT:
            raise ValidationError(f"amount must be less than {MAX_AMOUNT}")
        amount = quantize(amount)
        if amount <= ZERO:
            raise ValidationError("amount must be greater than 0")
        return amount

    def _apply(self, session: Session, user_id: str, delta: Decimal, kind: str,
               envelope_id: Optional[str]) -> Transaction:
        query = session.query(User).filter(User.id == user_id)
        if delta < ZERO:
            query = query.filter(User.balance >= -delta)
        else:
            query = query.filter(User.balance < MAX_AMOUNT - delta)

        updated = query.update({User.balance: User.balance + delta}, synchronize_session=False)
        if updated != 1:
            if session.get(User, user_id) is None:
                raise NotFoundError("User not found")
            if delta > ZERO:
                raise ValidationError("Balance would exceed the wallet limit")
            raise InsufficientFundsError("Insufficient balance")

        tx = Transaction(user_id=user_id, type=kind, amount=delta, envelope_id=envelope_id)
        session.add(tx)
        session.flush()

        # The UPDATE bypassed the identity map
        user = session.get(User, user_id)
        if user is not None:
            session.refresh(user, ["balance"])

        metrics.WALLET_MUTATIONS.labels(kind=kind).inc()
        self.audit.log_wallet_mutation(user_id=user_id, kind=kind, amount=str(delta), envelope_id=envelope_id)
        return tx

    def get_balance(self, user_id: str, session: Optional[Session] = None) -> Decimal:
        def _get(s: Session) -> Decimal:
            user = s.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            return quantize(user.balance)

        return self._run(session, _get)

    def recharge(self, user_id, amount, envelope_id=None, session=None):
        amount = self._validate_amount(amount)
        return self._run(
            session, lambda s: serialize_transaction(self._apply(s, user_id, amount, TX_RECHARGE, envelope_id))
        )

    def deduct(self, user_id, amount, envelope_id=None, session=None):
        amount = self._validate_amount(amount)
        return self._run(
            session, lambda s: serialize_transaction(self._apply(s, user_id, -amount, TX_SEND, envelope_id))
        )

    def receive(self, user_id, amount, envelope_id=None, session=None):
        amount = self._validate_amount(amount)
        return self._run(
            session, lambda s: serialize_transaction(self._apply(s, user_id, amount, TX_RECEIVE, envelope_id))
        )

    def transfer(self, from_user_id, to_user_id, amount, envelope_id=None, session=None):
        amount = self._validate_amount(amount)
        if from_user_id == to_user_id:
            raise ValidationError("Cannot transfer to the same account")

        def _transfer(s: Session) -> Dict:
            if s.get(User, to_user_id) is None:
                raise NotFoundError("Recipient not found")
            self._apply(s, from_user_id, -amount, TX_SEND, envelope_id)
            return serialize_transaction(self._apply(s, to_user_id, amount, TX_RECEIVE, envelope_id))

        return self._run(session, _transfer)

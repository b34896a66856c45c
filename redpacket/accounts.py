"""User accounts: login-or-register and ledger history."""

import logging
from decimal import Decimal
from typing import Dict, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from redpacket.credentials import CredentialVerifier
from redpacket.database import session_scope
from redpacket.errors import AuthenticationError, NotFoundError, ValidationError
from redpacket.models import Transaction, User, isoformat
from redpacket.money import ZERO, as_number
from redpacket.wallet import WalletService, serialize_transaction

logger = logging.getLogger(__name__)

MAX_NICKNAME_LENGTH = 64


def serialize_user(user: User) -> Dict:
    return {
        "id": user.id,
        "nickname": user.nickname,
        "balance": as_number(user.balance),
        "createdAt": isoformat(user.created_at),
    }


class AccountService:
    def __init__(self, wallet: WalletService, verifier: CredentialVerifier, starting_balance: Decimal,
                 transaction_limit: int = 50):
        self.wallet = wallet
        self.verifier = verifier
        self.starting_balance = starting_balance
        self.transaction_limit = transaction_limit

    @staticmethod
    def _validate(nickname, password) -> Tuple[str, str]:
        if not isinstance(nickname, str) or not nickname.strip():
            raise ValidationError("nickname is required")
        if not isinstance(password, str) or not password:
            raise ValidationError("password is required")
        nickname = nickname.strip()
        if len(nickname) > MAX_NICKNAME_LENGTH:
            raise ValidationError(f"nickname must be at most {MAX_NICKNAME_LENGTH} characters")
        return nickname, password

    def login(self, nickname, password) -> Tuple[Dict, bool]:
        """
        Log in, creating the account on first sight of the nickname.

        New accounts receive the starting balance as a ``recharge`` entry.

        Returns:
            (user data, whether the account was just created)

        Raises:
            AuthenticationError: if the nickname exists with another password
        """
        nickname, password = self._validate(nickname, password)

        try:
            return self._login_or_register(nickname, password)
        except IntegrityError:
            # Lost a race against a concurrent first login; the row exists now
            logger.info(f"Concurrent registration for {nickname!r}, retrying as login")
            return self._login_or_register(nickname, password)

    def _login_or_register(self, nickname: str, password: str) -> Tuple[Dict, bool]:
        with session_scope() as session:
            user = session.query(User).filter_by(nickname=nickname).first()
            if user is not None:
                if not self.verifier.verify(user.password, password):
                    raise AuthenticationError("Wrong password")
                return serialize_user(user), False

            user = User(nickname=nickname, password=self.verifier.prepare(password), balance=ZERO)
            session.add(user)
            session.flush()
            if self.starting_balance > ZERO:
                self.wallet.recharge(user.id, self.starting_balance, session=session)
            return serialize_user(user), True

    def get_user(self, user_id: str) -> Dict:
        with session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            return serialize_user(user)

    def list_transactions(self, user_id: str) -> List[Dict]:
        """Most recent ledger entries, newest first, with an envelope summary."""
        with session_scope() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError("User not found")
            rows = (
                session.query(Transaction)
                .options(joinedload(Transaction.envelope))
                .filter(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc())
                .limit(self.transaction_limit)
                .all()
            )
            return [serialize_transaction(tx, include_envelope=True) for tx in rows]

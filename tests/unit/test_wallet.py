"""
Unit tests for the wallet ledger.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from redpacket import metrics
from redpacket.database import session_scope
from redpacket.errors import InsufficientFundsError, NotFoundError, ValidationError
from redpacket.models import Transaction, User


def _recharges():
    return metrics.registry.get_sample_value("redpacket_wallet_mutations_total", {"kind": "recharge"}) or 0


def _ledger(user_id):
    with session_scope() as session:
        rows = session.query(Transaction).filter_by(user_id=user_id).order_by(Transaction.created_at).all()
        return [(tx.type, tx.amount, tx.envelope_id) for tx in rows]


class TestLocalWalletService:
    """Test balance mutations and their ledger entries."""

    def test_starting_balance_is_recorded_as_recharge(self, wallet, make_user):
        alice = make_user("alice")
        assert wallet.get_balance(alice) == Decimal("100.00")
        assert _ledger(alice) == [("recharge", Decimal("100.00"), None)]

    def test_recharge(self, wallet, make_user):
        alice = make_user("alice")
        tx = wallet.recharge(alice, Decimal("25.50"))

        assert tx["type"] == "recharge"
        assert tx["amount"] == 25.5
        assert tx["userId"] == alice
        assert wallet.get_balance(alice) == Decimal("125.50")

    def test_deduct_records_negative_send(self, wallet, make_user):
        alice = make_user("alice")
        tx = wallet.deduct(alice, Decimal("30.00"))

        assert tx["type"] == "send"
        assert tx["amount"] == -30.0
        assert wallet.get_balance(alice) == Decimal("70.00")

    def test_deduct_rejects_overdraft_without_side_effects(self, wallet, make_user):
        alice = make_user("alice")
        with pytest.raises(InsufficientFundsError):
            wallet.deduct(alice, Decimal("100.01"))

        assert wallet.get_balance(alice) == Decimal("100.00")
        assert len(_ledger(alice)) == 1

    def test_deduct_whole_balance(self, wallet, make_user):
        alice = make_user("alice")
        wallet.deduct(alice, Decimal("100.00"))
        assert wallet.get_balance(alice) == Decimal("0.00")

    def test_receive(self, wallet, make_user):
        alice = make_user("alice")
        tx = wallet.receive(alice, Decimal("1.23"), envelope_id=None)
        assert tx["type"] == "receive"
        assert wallet.get_balance(alice) == Decimal("101.23")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("0.001")])
    def test_non_positive_amounts_rejected(self, wallet, make_user, amount):
        alice = make_user("alice")
        with pytest.raises(ValidationError):
            wallet.recharge(alice, amount)

    def test_amount_beyond_column_rejected(self, wallet, make_user):
        alice = make_user("alice")
        with pytest.raises(ValidationError):
            wallet.recharge(alice, Decimal("1e30"))
        assert wallet.get_balance(alice) == Decimal("100.00")

    def test_credit_cannot_overflow_balance(self, wallet, make_user):
        alice = make_user("alice")
        wallet.recharge(alice, Decimal("9999999800.00"))
        assert wallet.get_balance(alice) == Decimal("9999999900.00")

        with pytest.raises(ValidationError, match="limit"):
            wallet.receive(alice, Decimal("100.00"))

        assert wallet.get_balance(alice) == Decimal("9999999900.00")
        assert len(_ledger(alice)) == 2

    def test_unknown_user(self, wallet, db):
        with pytest.raises(NotFoundError):
            wallet.get_balance("missing")
        with pytest.raises(NotFoundError):
            wallet.recharge("missing", Decimal("1.00"))

    def test_transfer_is_two_sided(self, wallet, make_user):
        alice, bob = make_user("alice"), make_user("bob")
        tx = wallet.transfer(alice, bob, Decimal("12.34"))

        assert tx["userId"] == bob
        assert tx["type"] == "receive"
        assert wallet.get_balance(alice) == Decimal("87.66")
        assert wallet.get_balance(bob) == Decimal("112.34")
        assert _ledger(alice)[-1][:2] == ("send", Decimal("-12.34"))

    def test_transfer_failure_moves_nothing(self, wallet, make_user):
        alice, bob = make_user("alice"), make_user("bob")
        with pytest.raises(InsufficientFundsError):
            wallet.transfer(alice, bob, Decimal("500.00"))

        assert wallet.get_balance(alice) == Decimal("100.00")
        assert wallet.get_balance(bob) == Decimal("100.00")

    def test_transfer_to_self_rejected(self, wallet, make_user):
        alice = make_user("alice")
        with pytest.raises(ValidationError):
            wallet.transfer(alice, alice, Decimal("1.00"))

    def test_shared_session_rolls_back_together(self, wallet, make_user):
        alice = make_user("alice")
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                wallet.recharge(alice, Decimal("10.00"), session=session)
                raise RuntimeError("abort")

        assert wallet.get_balance(alice) == Decimal("100.00")

    def test_balance_never_negative_in_storage(self, wallet, make_user):
        alice = make_user("alice")
        with pytest.raises(InsufficientFundsError):
            wallet.deduct(alice, Decimal("1000.00"))
        with session_scope() as session:
            assert session.get(User, alice).balance >= 0

    def test_mutations_are_audited_and_counted(self, wallet, make_user):
        alice = make_user("alice")
        before = _recharges()

        with patch.object(wallet.audit.logger, "info") as mock_info:
            wallet.recharge(alice, Decimal("2.00"))

        message = mock_info.call_args[0][0]
        assert "WALLET_MUTATION" in message
        assert f"user={alice}" in message
        assert "kind=recharge" in message
        assert _recharges() == before + 1

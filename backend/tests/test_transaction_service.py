"""Transaction ledger tests (open, settle, fail, cancel)"""
import re
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from meterbill.core.exceptions import (
    DuplicatePayment, TransactionIdCollision, TransactionNotFound, ValidationError,
)
from meterbill.models.enums import TransactionType
from meterbill.models.transaction import Transaction
from meterbill.services.plan_service import create_plan, update_plan
from meterbill.services.transaction_service import (
    cancel, fail, get_transaction, list_account_transactions, open_transaction,
    pending_transactions, settle,
)


def open_and_commit(db, account, plan, **kwargs):
    transaction = open_transaction(account.id, plan, db, **kwargs)
    db.commit()
    return transaction


@pytest.mark.critical
class TestOpenTransaction:
    """Test transaction creation"""

    def test_open_copies_plan_price(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan, metadata={"source": "checkout"})

        assert re.match(r"^TXN_[0-9A-F]{16}_\d+$", transaction.transaction_id)
        assert transaction.status == "pending"
        assert transaction.transaction_type == "purchase"
        assert transaction.amount == Decimal("10.00")
        assert transaction.currency == "USD"
        assert transaction.payment_gateway == "wompi"
        assert transaction.transaction_metadata == {"source": "checkout"}
        assert transaction.processed_at is None

    def test_amount_is_frozen_at_creation(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan)
        update_plan(basic_plan.id, db_session, price="99.00")

        db_session.refresh(transaction)
        assert transaction.amount == Decimal("10.00")

    def test_free_plan_cannot_be_charged(self, db_session, test_account, free_plan):
        with pytest.raises(ValidationError, match="positive"):
            open_transaction(test_account.id, free_plan, db_session)

    def test_inactive_plan_rejected(self, db_session, test_account):
        retired = create_plan(name="Retired", monthly_message_limit=200, price=20, active=False, db=db_session)
        with pytest.raises(ValidationError, match="not available"):
            open_transaction(test_account.id, retired, db_session)
        assert db_session.query(Transaction).count() == 0

    def test_identifier_collision_is_fatal(self, db_session, test_account, basic_plan):
        existing = open_and_commit(db_session, test_account, basic_plan)

        with patch("meterbill.services.transaction_service.generate_transaction_id", return_value=existing.transaction_id):
            with pytest.raises(TransactionIdCollision):
                open_transaction(test_account.id, basic_plan, db_session)


@pytest.mark.critical
class TestResolveTransaction:
    """Test terminal transitions and their idempotency"""

    def test_settle(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan)

        result = settle(transaction.transaction_id, {"id": "gw_1", "status": "APPROVED"}, db_session)
        db_session.commit()

        assert result.applied is True
        assert result.duplicate is None
        assert result.transaction.status == "completed"
        assert result.transaction.processed_at is not None
        assert result.transaction.gateway_response == {"id": "gw_1", "status": "APPROVED"}

    def test_second_settle_is_a_no_op(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan)
        settle(transaction.transaction_id, {"attempt": 1}, db_session)
        db_session.commit()
        processed_at = get_transaction(transaction.transaction_id, db_session).processed_at

        again = settle(transaction.transaction_id, {"attempt": 2}, db_session)
        db_session.commit()

        assert again.applied is False
        assert isinstance(again.duplicate, DuplicatePayment)
        assert again.transaction.status == "completed"
        assert again.transaction.gateway_response == {"attempt": 1}
        assert again.transaction.processed_at == processed_at

    def test_fail_stores_reason(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan)

        result = fail(transaction.transaction_id, "Insufficient funds", db_session)
        db_session.commit()

        assert result.applied is True
        assert result.transaction.status == "failed"
        assert result.transaction.gateway_response == {"error": "Insufficient funds"}
        assert result.transaction.processed_at is not None

    def test_settle_after_fail_keeps_failure(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan)
        fail(transaction.transaction_id, "declined", db_session)
        db_session.commit()

        result = settle(transaction.transaction_id, {}, db_session)
        assert result.applied is False
        assert result.transaction.status == "failed"

    def test_cancel_pending(self, db_session, test_account, basic_plan):
        transaction = open_and_commit(db_session, test_account, basic_plan)

        result = cancel(transaction.transaction_id, db_session, reason="never settled")
        db_session.commit()

        assert result.applied is True
        assert result.transaction.status == "cancelled"
        assert result.transaction.gateway_response["reason"] == "never settled"

    @pytest.mark.parametrize("resolve", [
        lambda db: settle("TXN_UNKNOWN_1", {}, db),
        lambda db: fail("TXN_UNKNOWN_1", "nope", db),
    ])
    def test_unknown_transaction(self, db_session, resolve):
        with pytest.raises(TransactionNotFound):
            resolve(db_session)


@pytest.mark.medium
class TestTransactionQueries:
    """Test transaction listings"""

    def test_list_account_transactions_recent_first(self, db_session, test_account, basic_plan, pro_plan):
        first = open_and_commit(db_session, test_account, basic_plan)
        second = open_and_commit(db_session, test_account, pro_plan, transaction_type=TransactionType.UPGRADE)

        listed = list_account_transactions(test_account.id, db_session)
        assert [t.transaction_id for t in listed] == [second.transaction_id, first.transaction_id]

        assert len(list_account_transactions(test_account.id, db_session, page=2, limit=1)) == 1
        assert list_account_transactions(test_account.id, db_session, page=3, limit=1) == []

    def test_pending_transactions(self, db_session, test_account, basic_plan):
        pending = open_and_commit(db_session, test_account, basic_plan)
        done = open_and_commit(db_session, test_account, basic_plan)
        settle(done.transaction_id, {}, db_session)
        db_session.commit()

        assert [t.transaction_id for t in pending_transactions(db_session)] == [pending.transaction_id]
        assert pending_transactions(db_session, older_than=timedelta(hours=1)) == []

"""Subscription ledger tests (consumption, renewal, upgrade, status changes)"""
import pytest
from datetime import date

from meterbill.core.exceptions import (
    InvalidTransition, InvalidUpgrade, QuotaExceeded, SubscriptionInactive,
    SubscriptionNotFound, ValidationError,
)
from meterbill.db.unit_of_work import unit_of_work
from meterbill.services import subscription_service
from meterbill.services.plan_service import create_plan
from meterbill.services.subscription_service import (
    activate, cancel, consume, create_subscription, expire, get_subscription,
    grant_messages, month_bounds, renew_period, suspend, suspend_if_exceeded, upgrade,
)


@pytest.mark.medium
def test_month_bounds():
    assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(date(2023, 12, 31)) == (date(2023, 12, 1), date(2023, 12, 31))


@pytest.mark.high
class TestCreateSubscription:
    """Test subscription creation"""

    def test_account_starts_on_plan(self, db_session, basic_account, basic_plan):
        sub = get_subscription(basic_account.id, db_session)
        start, end = month_bounds()

        assert sub.plan_id == basic_plan.id
        assert sub.status == "active"
        assert sub.messages_limit == 100
        assert sub.messages_used == 0
        assert sub.current_period_start == start
        assert sub.current_period_end == end
        assert sub.last_reset_at is not None

    def test_one_subscription_per_account(self, db_session, basic_account, pro_plan):
        with pytest.raises(ValidationError):
            create_subscription(basic_account.id, pro_plan, db_session)

    def test_missing_subscription(self, db_session):
        with pytest.raises(SubscriptionNotFound):
            get_subscription(12345, db_session)


@pytest.mark.critical
class TestConsume:
    """Test atomic quota consumption"""

    def test_consume_increments_usage(self, db_session, basic_account):
        result = consume(basic_account.id, db_session)
        db_session.commit()

        assert result.allowed is True
        assert result.remaining == 99
        assert result.error is None
        assert get_subscription(basic_account.id, db_session).messages_used == 1

    def test_boundary_call_succeeds_then_refuses(self, db_session, basic_account, set_usage):
        sub = set_usage(basic_account.subscription, 99)

        first = consume(basic_account.id, db_session)
        db_session.commit()
        assert first.allowed is True
        assert first.remaining == 0
        assert sub.messages_used == 100

        second = consume(basic_account.id, db_session)
        db_session.commit()
        assert second.allowed is False
        assert isinstance(second.error, QuotaExceeded)
        assert second.remaining == 0
        db_session.refresh(sub)
        assert sub.messages_used == 100

        with pytest.raises(QuotaExceeded):
            second.raise_for_refusal()

    def test_serialized_calls_never_exceed_limit(self, db_session, basic_account, set_usage):
        set_usage(basic_account.subscription, 90)

        allowed = 0
        for _ in range(25):
            with unit_of_work(db_session):
                if consume(basic_account.id, db_session).allowed:
                    allowed += 1

        sub = get_subscription(basic_account.id, db_session)
        assert allowed == 10
        assert sub.messages_used == sub.messages_limit == 100

    def test_inactive_subscription_refused(self, db_session, basic_account, set_usage):
        sub = set_usage(basic_account.subscription, 10, status="suspended")

        result = consume(basic_account.id, db_session)
        db_session.commit()

        assert result.allowed is False
        assert isinstance(result.error, SubscriptionInactive)
        db_session.refresh(sub)
        assert sub.messages_used == 10

    def test_unknown_account_refused(self, db_session):
        result = consume(4242, db_session)
        assert result.allowed is False
        assert isinstance(result.error, SubscriptionNotFound)


@pytest.mark.high
class TestRenewAndUpgrade:
    """Test period renewal and plan upgrades"""

    def test_renew_period_resets_usage(self, db_session, basic_account, set_usage):
        sub = set_usage(basic_account.subscription, 73)
        sub.current_period_start = date(2020, 1, 1)
        sub.current_period_end = date(2020, 1, 31)
        db_session.commit()

        renew_period(sub, db_session)
        db_session.commit()

        start, end = month_bounds()
        assert sub.messages_used == 0
        assert sub.current_period_start == start
        assert sub.current_period_end == end
        assert sub.last_reset_at is not None

    def test_upgrade_keeps_usage(self, db_session, basic_account, pro_plan, set_usage):
        sub = set_usage(basic_account.subscription, 40, status="suspended")

        upgrade(sub, pro_plan, db_session)
        db_session.commit()
        db_session.refresh(sub)

        assert sub.plan_id == pro_plan.id
        assert sub.messages_limit == 1000
        assert sub.messages_used == 40
        assert sub.status == "active"

    @pytest.mark.parametrize("limit", [100, 50])
    def test_non_increasing_upgrade_refused(self, db_session, basic_account, basic_plan, limit):
        other = create_plan(name=f"Other{limit}", monthly_message_limit=limit, price=5, db=db_session)
        sub = basic_account.subscription

        with pytest.raises(InvalidUpgrade):
            upgrade(sub, other, db_session)
        db_session.rollback()
        db_session.refresh(sub)

        assert sub.plan_id == basic_plan.id
        assert sub.messages_limit == 100

    def test_upgrade_of_cancelled_subscription_refused(self, db_session, basic_account, pro_plan):
        sub = basic_account.subscription
        cancel(sub, db_session)
        db_session.commit()

        with pytest.raises(InvalidTransition):
            upgrade(sub, pro_plan, db_session)

    def test_grant_messages(self, db_session, basic_account):
        sub = grant_messages(basic_account.subscription, 50, db_session)
        db_session.commit()
        assert sub.messages_limit == 150

        with pytest.raises(ValidationError):
            grant_messages(sub, 0, db_session)


@pytest.mark.high
class TestStatusChanges:
    """Test suspend/activate/cancel/expire"""

    def test_suspend_and_activate_are_idempotent(self, db_session, basic_account):
        sub = basic_account.subscription

        suspend(sub, db_session)
        suspend(sub, db_session)
        assert sub.status == "suspended"

        activate(sub, db_session)
        activate(sub, db_session)
        assert sub.status == "active"

    def test_terminal_states(self, db_session, basic_account):
        sub = basic_account.subscription
        expire(sub, db_session)
        expire(sub, db_session)
        assert sub.status == "expired"

        with pytest.raises(InvalidTransition):
            activate(sub, db_session)
        with pytest.raises(InvalidTransition):
            cancel(sub, db_session)

    def test_suspend_if_exceeded_only_over_limit(self, db_session, basic_account, set_usage):
        sub = set_usage(basic_account.subscription, 50)
        assert suspend_if_exceeded(sub.id, db_session) is False

        set_usage(sub, 100)
        assert suspend_if_exceeded(sub.id, db_session) is True
        db_session.commit()
        db_session.refresh(sub)
        assert sub.status == "suspended"

        # already suspended
        assert suspend_if_exceeded(sub.id, db_session) is False

    def test_apply_plan_with_reset(self, db_session, basic_account, pro_plan, set_usage):
        sub = set_usage(basic_account.subscription, 80, status="suspended")

        subscription_service.apply_plan(sub, pro_plan, db_session, reset_usage=True)
        db_session.commit()

        assert sub.messages_used == 0
        assert sub.messages_limit == 1000
        assert sub.status == "active"

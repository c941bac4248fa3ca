"""
Tests for MembershipStateMachine.

Covers the persistence shell around the pure transitions: ledger
deduplication, row updates, and the outcome reported for each command.
"""

from datetime import UTC
from datetime import datetime
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase

from academie.billing.commands import ManualOverride
from academie.billing.commands import MarkLapsed
from academie.billing.commands import RecordAddOnPurchase
from academie.billing.commands import RecordPaymentReversal
from academie.billing.commands import RecordSuccessfulCharge
from academie.billing.commands import RecurringSubscriptionEnded
from academie.billing.commands import RecurringSubscriptionObserved
from academie.billing.commands import SelectInstallmentPlan
from academie.billing.constants import MembershipStatus
from academie.billing.constants import PaymentProcessor
from academie.billing.constants import TransactionKind
from academie.billing.constants import TransactionStatus
from academie.billing.effects import CancelRecurringSubscription
from academie.billing.exceptions import AccountNotFound
from academie.billing.membership import LedgerEntry
from academie.billing.membership import MembershipStateMachine
from academie.billing.membership import minor_units
from academie.billing.models import Transaction
from academie.billing.transitions import Outcome
from academie.users.tests.factories import UserFactory

NOW = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)
T1 = NOW + timedelta(days=30)


def charge(user, reference, *, recurring=True, subscription_id=None, amount=33300):
    return RecordSuccessfulCharge(
        account_id=user.pk,
        amount_minor=amount,
        currency="usd",
        processor=PaymentProcessor.STRIPE,
        processor_reference=reference,
        is_recurring_installment=recurring,
        subscription_id=subscription_id,
    )


def observed(user, subscription_id, raw_status="active", **kwargs):
    return RecurringSubscriptionObserved(
        account_id=user.pk,
        subscription_id=subscription_id,
        raw_status=raw_status,
        period_end=kwargs.pop("period_end", T1),
        **kwargs,
    )


class InstallmentScenarioTests(TestCase):
    """Three-installment plan from first payment to lifetime access."""

    def setUp(self):
        self.machine = MembershipStateMachine(clock=lambda: NOW)
        self.user = UserFactory(installments_required=3, stripe_customer_id="cus_a")

    def test_full_installment_journey(self):
        result = self.machine.observe_subscription(observed(self.user, "sub_a"))
        self.assertEqual(result.projection.status, MembershipStatus.ACTIVE)
        self.assertEqual(result.projection.current_period_end, T1)

        result = self.machine.record_successful_charge(
            charge(self.user, "ch_1", subscription_id="sub_a"),
        )
        self.assertEqual(result.projection.installments_paid, 1)
        self.assertEqual(result.projection.status, MembershipStatus.ACTIVE)

        result = self.machine.record_successful_charge(
            charge(self.user, "ch_1", subscription_id="sub_a"),
        )
        self.assertEqual(result.outcome, Outcome.DUPLICATE)
        self.assertEqual(result.projection.installments_paid, 1)
        self.assertEqual(result.effects, ())

        self.machine.record_successful_charge(
            charge(self.user, "ch_2", subscription_id="sub_a"),
        )
        result = self.machine.record_successful_charge(
            charge(self.user, "ch_3", subscription_id="sub_a"),
        )

        self.assertEqual(result.projection.status, MembershipStatus.LIFETIME_ACCESS)
        self.assertEqual(result.projection.installments_paid, 3)
        self.assertIsNone(result.projection.current_period_end)
        self.assertIn(
            CancelRecurringSubscription(self.user.pk, "sub_a"),
            result.effects,
        )

        self.user.refresh_from_db()
        self.assertIsNone(self.user.stripe_subscription_id)
        self.assertIsNone(self.user.current_period_end)
        self.assertEqual(
            Transaction.objects.filter(user=self.user).count(),
            3,
        )

    def test_lifetime_ignores_later_subscription_events(self):
        self.machine.observe_subscription(observed(self.user, "sub_a"))
        for reference in ("ch_1", "ch_2", "ch_3"):
            self.machine.record_successful_charge(
                charge(self.user, reference, subscription_id="sub_a"),
            )

        updated = self.machine.observe_subscription(
            observed(self.user, "sub_a", raw_status="past_due"),
        )
        ended = self.machine.end_subscription(
            RecurringSubscriptionEnded(self.user.pk, "sub_a"),
        )

        self.assertEqual(updated.outcome, Outcome.LIFETIME_LOCKED)
        self.assertEqual(ended.outcome, Outcome.LIFETIME_LOCKED)
        self.user.refresh_from_db()
        self.assertEqual(self.user.subscription_status, MembershipStatus.LIFETIME_ACCESS)
        self.assertIsNone(self.user.stripe_subscription_id)
        self.assertIsNone(self.user.current_period_end)


class LedgerTests(TestCase):
    def setUp(self):
        self.machine = MembershipStateMachine(clock=lambda: NOW)
        self.user = UserFactory(installment_plan=True)

    def test_ledger_row_records_charge(self):
        self.machine.record_successful_charge(
            charge(self.user, "in_1", subscription_id=self.user.stripe_subscription_id),
        )

        row = Transaction.objects.get(processor_reference="in_1")
        self.assertEqual(row.user, self.user)
        self.assertEqual(row.amount, Decimal("333.00"))
        self.assertEqual(row.currency, "usd")
        self.assertEqual(row.kind, TransactionKind.INSTALLMENT)
        self.assertEqual(row.status, TransactionStatus.SUCCEEDED)
        self.assertEqual(row.stripe_subscription_id, self.user.stripe_subscription_id)

    def test_same_reference_for_another_account_is_duplicate(self):
        other = UserFactory(installment_plan=True)
        self.machine.record_successful_charge(charge(self.user, "in_shared"))

        result = self.machine.record_successful_charge(charge(other, "in_shared"))

        self.assertEqual(result.outcome, Outcome.DUPLICATE)
        other.refresh_from_db()
        self.assertEqual(other.installments_paid, 0)
        self.assertEqual(Transaction.objects.count(), 1)

    def test_one_shot_payment_goes_straight_to_lifetime(self):
        user = UserFactory(installments_required=1)

        result = self.machine.record_successful_charge(
            charge(user, "pi_1", recurring=False, amount=99700),
        )

        self.assertEqual(result.projection.status, MembershipStatus.LIFETIME_ACCESS)
        self.assertEqual(result.projection.installments_paid, 1)
        self.assertEqual(result.projection.installments_required, 1)
        row = Transaction.objects.get(processor_reference="pi_1")
        self.assertEqual(row.kind, TransactionKind.FULL_PAYMENT)

    def test_one_shot_payment_cancels_running_subscription(self):
        subscription_id = self.user.stripe_subscription_id

        result = self.machine.record_successful_charge(
            charge(self.user, "pi_2", recurring=False),
        )

        self.assertIn(
            CancelRecurringSubscription(self.user.pk, subscription_id),
            result.effects,
        )
        self.user.refresh_from_db()
        self.assertIsNone(self.user.stripe_subscription_id)

    def test_unknown_account_raises(self):
        command = RecordSuccessfulCharge(
            account_id=999_999,
            amount_minor=100,
            currency="usd",
            processor=PaymentProcessor.STRIPE,
            processor_reference="in_x",
            is_recurring_installment=True,
        )
        with self.assertRaises(AccountNotFound):
            self.machine.record_successful_charge(command)
        self.assertFalse(Transaction.objects.exists())


class StaleEventTests(TestCase):
    def setUp(self):
        self.machine = MembershipStateMachine(clock=lambda: NOW)
        self.user = UserFactory(installments_required=3)

    def test_old_subscription_events_after_replacement_are_ignored(self):
        self.machine.observe_subscription(
            observed(self.user, "sub_a", is_new_subscription=True),
        )
        self.machine.observe_subscription(
            observed(self.user, "sub_b", is_new_subscription=True, period_end=T1 + timedelta(days=1)),
        )

        late_update = self.machine.observe_subscription(
            observed(self.user, "sub_a", raw_status="canceled"),
        )
        late_end = self.machine.end_subscription(
            RecurringSubscriptionEnded(self.user.pk, "sub_a"),
        )

        self.assertEqual(late_update.outcome, Outcome.STALE)
        self.assertEqual(late_end.outcome, Outcome.STALE)
        self.user.refresh_from_db()
        self.assertEqual(self.user.stripe_subscription_id, "sub_b")
        self.assertEqual(self.user.subscription_status, MembershipStatus.ACTIVE)
        self.assertEqual(self.user.current_period_end, T1 + timedelta(days=1))


class AdministrativeCommandTests(TestCase):
    def setUp(self):
        self.machine = MembershipStateMachine(clock=lambda: NOW, renewal_days=30)

    def test_override_renews_manual_payer(self):
        user = UserFactory(
            subscription_status=MembershipStatus.PAST_DUE,
            installments_paid=1,
            installments_required=3,
            current_period_end=NOW - timedelta(days=3),
        )

        result = self.machine.manual_override(
            ManualOverride(
                account_id=user.pk,
                target_status=MembershipStatus.PAST_DUE,
                installments_paid=2,
                installments_required=3,
            ),
        )

        self.assertEqual(result.projection.status, MembershipStatus.ACTIVE)
        self.assertEqual(result.projection.current_period_end, NOW + timedelta(days=30))

    def test_override_forces_lifetime_when_goal_met(self):
        user = UserFactory(installment_plan=True)

        result = self.machine.manual_override(
            ManualOverride(
                account_id=user.pk,
                target_status=MembershipStatus.ACTIVE,
                installments_paid=3,
                installments_required=3,
            ),
        )

        self.assertEqual(result.projection.status, MembershipStatus.LIFETIME_ACCESS)
        user.refresh_from_db()
        self.assertIsNone(user.stripe_subscription_id)
        self.assertIsNone(user.current_period_end)

    def test_select_plan_updates_goal(self):
        user = UserFactory()
        result = self.machine.select_installment_plan(SelectInstallmentPlan(user.pk, 6))
        self.assertEqual(result.projection.installments_required, 6)

    def test_mark_lapsed(self):
        user = UserFactory(
            subscription_status=MembershipStatus.ACTIVE,
            current_period_end=NOW - timedelta(hours=1),
        )
        result = self.machine.mark_lapsed(MarkLapsed(user.pk, NOW))

        self.assertTrue(result.applied)
        self.assertEqual(result.projection.status, MembershipStatus.PAST_DUE)


class AddOnAndReversalTests(TestCase):
    def setUp(self):
        self.machine = MembershipStateMachine(clock=lambda: NOW)

    def test_add_on_purchase_for_new_buyer(self):
        user = UserFactory()

        result = self.machine.record_add_on_purchase(
            RecordAddOnPurchase(user.pk, 19700, "BRL", PaymentProcessor.HOTMART, "HP-ADD"),
        )

        self.assertEqual(result.projection.status, MembershipStatus.SMMA_ONLY)
        self.assertEqual(result.projection.installments_required, 0)
        row = Transaction.objects.get(processor_reference="HP-ADD")
        self.assertEqual(row.kind, TransactionKind.ADD_ON)
        self.assertEqual(row.currency, "brl")

    def test_refund_revokes_recorded_payment(self):
        user = UserFactory(installments_required=1)
        self.machine.record_successful_charge(
            RecordSuccessfulCharge(
                account_id=user.pk,
                amount_minor=99700,
                currency="brl",
                processor=PaymentProcessor.HOTMART,
                processor_reference="HP1",
                is_recurring_installment=False,
            ),
        )

        result = self.machine.record_payment_reversal(
            RecordPaymentReversal(user.pk, PaymentProcessor.HOTMART, "HP1"),
        )

        self.assertEqual(result.projection.status, MembershipStatus.CANCELED)
        self.assertEqual(result.projection.installments_paid, 0)
        reversal = Transaction.objects.get(
            processor_reference="HP1",
            status=TransactionStatus.REFUNDED,
        )
        self.assertEqual(reversal.kind, TransactionKind.REVERSAL)
        self.assertEqual(reversal.amount, Decimal("997.00"))

    def test_repeated_refund_is_duplicate(self):
        user = UserFactory(installments_required=1)
        self.machine.record_successful_charge(
            RecordSuccessfulCharge(
                account_id=user.pk,
                amount_minor=99700,
                currency="brl",
                processor=PaymentProcessor.HOTMART,
                processor_reference="HP2",
                is_recurring_installment=False,
            ),
        )
        reversal = RecordPaymentReversal(user.pk, PaymentProcessor.HOTMART, "HP2")
        self.machine.record_payment_reversal(reversal)

        result = self.machine.record_payment_reversal(reversal)

        self.assertEqual(result.outcome, Outcome.DUPLICATE)

    def test_refund_of_unknown_payment_is_ignored(self):
        user = UserFactory(lifetime=True)

        result = self.machine.record_payment_reversal(
            RecordPaymentReversal(user.pk, PaymentProcessor.HOTMART, "HP-unknown"),
        )

        self.assertEqual(result.outcome, Outcome.IGNORED)
        user.refresh_from_db()
        self.assertEqual(user.subscription_status, MembershipStatus.LIFETIME_ACCESS)


class HelperTests(TestCase):
    def test_minor_units(self):
        self.assertEqual(minor_units(997.0), 99700)
        self.assertEqual(minor_units("19.99"), 1999)
        self.assertEqual(minor_units(0), 0)

    def test_ledger_entry_amount(self):
        entry = LedgerEntry(
            processor=PaymentProcessor.STRIPE,
            reference="in_1",
            amount_minor=1999,
            currency="usd",
            kind=TransactionKind.INSTALLMENT,
        )
        self.assertEqual(entry.amount, Decimal("19.99"))

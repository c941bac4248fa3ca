"""
Tests for Stripe and Hotmart webhook ingestion.

Ingestor tests inject a StripeGateway double and a RecordingDispatcher.
View tests go through the URLconf with a real Stripe signature.
"""

import hashlib
import hmac
import json
import time

from django.test import TestCase
from django.test import override_settings
from django.urls import reverse

from academie.billing.constants import MembershipStatus
from academie.billing.constants import NotificationKind
from academie.billing.constants import PaymentProcessor
from academie.billing.constants import TransactionStatus
from academie.billing.effects import CancelRecurringSubscription
from academie.billing.effects import NotifyAccount
from academie.billing.exceptions import AuthenticationFailure
from academie.billing.models import Transaction
from academie.billing.tests import helpers
from academie.billing.webhooks import HotmartEventIngestor
from academie.billing.webhooks import MalformedPayload
from academie.billing.webhooks import StripeEventIngestor
from academie.billing.webhooks import from_timestamp
from academie.billing.webhooks import invoice_subscription_id
from academie.users.models import User
from academie.users.tests.factories import UserFactory


class StripeIngestorTests(TestCase):
    def setUp(self):
        self.user = UserFactory(installment_plan=True)
        self.dispatcher = helpers.RecordingDispatcher()

    def ingest(self, event):
        ingestor = StripeEventIngestor(
            gateway=helpers.fake_gateway(event),
            dispatcher=self.dispatcher,
        )
        return ingestor.ingest(b"{}", {"Stripe-Signature": "t=1,v1=abc"})

    def paid_invoice(self, invoice_id="in_1", **kwargs):
        return helpers.stripe_event(
            "invoice.payment_succeeded",
            helpers.invoice(
                invoice_id,
                customer=self.user.stripe_customer_id,
                subscription=self.user.stripe_subscription_id,
                **kwargs,
            ),
        )

    def test_installment_invoice_counts(self):
        result = self.ingest(self.paid_invoice())

        self.assertEqual(result.outcome, "applied")
        self.assertEqual(result.account_id, self.user.pk)
        self.user.refresh_from_db()
        self.assertEqual(self.user.installments_paid, 1)
        notices = self.dispatcher.of_type(NotifyAccount)
        self.assertEqual(notices[0].kind, NotificationKind.INSTALLMENT_PAID)
        self.assertEqual(notices[0].amount_minor, 33300)

    def test_redelivered_invoice_is_duplicate(self):
        self.ingest(self.paid_invoice())

        result = self.ingest(self.paid_invoice())

        self.assertEqual(result.outcome, "duplicate")
        self.assertEqual(result.as_dict()["received"], True)
        self.user.refresh_from_db()
        self.assertEqual(self.user.installments_paid, 1)

    def test_invoice_paid_alias_shares_dedup(self):
        self.ingest(self.paid_invoice())
        event = self.paid_invoice()
        event["type"] = "invoice.paid"

        result = self.ingest(event)

        self.assertEqual(result.outcome, "duplicate")

    def test_zero_amount_invoice_is_dropped(self):
        result = self.ingest(self.paid_invoice(amount_paid=0))

        self.assertEqual(result.outcome, "dropped")
        self.assertFalse(Transaction.objects.exists())

    def test_new_api_invoice_layout(self):
        result = self.ingest(self.paid_invoice("in_nested", nested=True))

        self.assertEqual(result.outcome, "applied")
        row = Transaction.objects.get(processor_reference="in_nested")
        self.assertEqual(row.stripe_subscription_id, self.user.stripe_subscription_id)

    def test_unknown_customer_is_not_created(self):
        event = helpers.stripe_event(
            "invoice.payment_succeeded",
            helpers.invoice("in_2", customer="cus_nobody", subscription="sub_nobody"),
        )

        result = self.ingest(event)

        self.assertEqual(result.outcome, "account_not_found")
        self.assertEqual(User.objects.count(), 1)

    def test_full_payment_intent_grants_lifetime(self):
        linked_subscription = self.user.stripe_subscription_id
        event = helpers.stripe_event(
            "payment_intent.succeeded",
            helpers.payment_intent("pi_1", user_id=self.user.pk, closer="maria"),
        )

        result = self.ingest(event)

        self.assertEqual(result.outcome, "applied")
        self.user.refresh_from_db()
        self.assertEqual(self.user.subscription_status, MembershipStatus.LIFETIME_ACCESS)
        self.assertEqual(self.user.installments_paid, 1)
        self.assertEqual(self.user.installments_required, 1)
        self.assertEqual(Transaction.objects.get(processor_reference="pi_1").closer, "maria")
        self.assertIsNone(self.user.stripe_subscription_id)
        cancelled = self.dispatcher.of_type(CancelRecurringSubscription)
        self.assertEqual(
            [effect.subscription_id for effect in cancelled],
            [linked_subscription],
        )

    def test_other_payment_intents_are_dropped(self):
        event = helpers.stripe_event(
            "payment_intent.succeeded",
            helpers.payment_intent("pi_2", user_id=self.user.pk, payment_type="ADDON"),
        )

        self.assertEqual(self.ingest(event).outcome, "dropped")

    def test_subscription_created_links_new_member(self):
        member = UserFactory()
        event = helpers.stripe_event(
            "customer.subscription.created",
            helpers.subscription(
                "sub_new",
                customer="cus_new",
                user_id=member.pk,
                installments=6,
            ),
        )

        result = self.ingest(event)

        self.assertEqual(result.outcome, "applied")
        member.refresh_from_db()
        self.assertEqual(member.stripe_subscription_id, "sub_new")
        self.assertEqual(member.stripe_customer_id, "cus_new")
        self.assertEqual(member.installments_required, 6)
        self.assertEqual(member.subscription_status, MembershipStatus.ACTIVE)
        self.assertEqual(member.current_period_end, from_timestamp(helpers.PERIOD_END_TS))

    def test_subscription_created_replaces_old_link(self):
        event = helpers.stripe_event(
            "customer.subscription.created",
            helpers.subscription("sub_replacement", customer=self.user.stripe_customer_id),
        )

        self.ingest(event)

        self.user.refresh_from_db()
        self.assertEqual(self.user.stripe_subscription_id, "sub_replacement")

    def test_subscription_keeps_customer_of_another_account(self):
        member = UserFactory(stripe_customer_id="cus_member")
        held_customer = self.user.stripe_customer_id
        held_subscription = self.user.stripe_subscription_id
        event = helpers.stripe_event(
            "customer.subscription.created",
            helpers.subscription(
                "sub_shared",
                customer=held_customer,
                user_id=member.pk,
            ),
        )

        result = self.ingest(event)

        self.assertEqual(result.outcome, "applied")
        self.assertEqual(result.account_id, member.pk)
        member.refresh_from_db()
        self.assertEqual(member.stripe_subscription_id, "sub_shared")
        self.assertEqual(member.stripe_customer_id, "cus_member")
        self.user.refresh_from_db()
        self.assertEqual(self.user.stripe_customer_id, held_customer)
        self.assertEqual(self.user.stripe_subscription_id, held_subscription)

    def test_update_for_old_subscription_is_stale(self):
        event = helpers.stripe_event(
            "customer.subscription.updated",
            helpers.subscription(
                "sub_previous",
                customer=self.user.stripe_customer_id,
                status="canceled",
            ),
        )

        result = self.ingest(event)

        self.assertEqual(result.outcome, "stale")
        self.user.refresh_from_db()
        self.assertEqual(self.user.subscription_status, MembershipStatus.ACTIVE)

    def test_update_reads_period_end_from_item(self):
        event = helpers.stripe_event(
            "customer.subscription.updated",
            helpers.subscription(
                self.user.stripe_subscription_id,
                customer=self.user.stripe_customer_id,
                status="past_due",
                period_on_item=True,
            ),
        )

        self.ingest(event)

        self.user.refresh_from_db()
        self.assertEqual(self.user.subscription_status, MembershipStatus.PAST_DUE)
        self.assertEqual(self.user.current_period_end, from_timestamp(helpers.PERIOD_END_TS))
        self.assertEqual(
            [effect.kind for effect in self.dispatcher.of_type(NotifyAccount)],
            [NotificationKind.PAST_DUE],
        )

    def test_subscription_deleted_cancels_membership(self):
        event = helpers.stripe_event(
            "customer.subscription.deleted",
            helpers.subscription(
                self.user.stripe_subscription_id,
                customer=self.user.stripe_customer_id,
                status="canceled",
            ),
        )

        result = self.ingest(event)

        self.assertEqual(result.outcome, "applied")
        self.user.refresh_from_db()
        self.assertEqual(self.user.subscription_status, MembershipStatus.CANCELED)
        self.assertIsNone(self.user.current_period_end)

    def test_unhandled_event_type_is_dropped(self):
        event = helpers.stripe_event("charge.refunded", {"id": "ch_1"})
        self.assertEqual(self.ingest(event).outcome, "dropped")

    def test_bad_signature_raises(self):
        gateway = helpers.fake_gateway()
        gateway.verify_webhook.side_effect = AuthenticationFailure("bad signature")
        ingestor = StripeEventIngestor(gateway=gateway, dispatcher=self.dispatcher)

        with self.assertRaises(AuthenticationFailure):
            ingestor.ingest(b"{}", {"Stripe-Signature": "t=1,v1=abc"})
        self.assertEqual(self.dispatcher.effects, [])


class InvoiceHelperTests(TestCase):
    def test_invoice_subscription_id_variants(self):
        self.assertEqual(invoice_subscription_id({"subscription": "sub_1"}), "sub_1")
        self.assertEqual(invoice_subscription_id({"subscription": {"id": "sub_2"}}), "sub_2")
        self.assertEqual(
            invoice_subscription_id(
                {"parent": {"subscription_details": {"subscription": "sub_3"}}},
            ),
            "sub_3",
        )
        self.assertIsNone(invoice_subscription_id({}))


class HotmartIngestorTests(TestCase):
    def setUp(self):
        self.dispatcher = helpers.RecordingDispatcher()
        self.ingestor = HotmartEventIngestor(
            hottok="secret-hottok",
            membership_product_ids=["1001"],
            addon_product_ids=["2002"],
            dispatcher=self.dispatcher,
        )

    def ingest(self, payload, hottok="secret-hottok"):
        headers = {"X-Hotmart-Hottok": hottok} if hottok else {}
        return self.ingestor.ingest(helpers.as_body(payload), headers)

    def test_approved_purchase_creates_lifetime_account(self):
        result = self.ingest(
            helpers.hotmart_postback(
                "PURCHASE_APPROVED",
                transaction="HP100",
                email="  Ana@Example.com ",
            ),
        )

        self.assertEqual(result.outcome, "applied")
        user = User.objects.get(email="ana@example.com")
        self.assertEqual(user.subscription_status, MembershipStatus.LIFETIME_ACCESS)
        self.assertEqual(user.hotmart_transaction_code, "HP100")
        self.assertEqual(user.name, "Ana Souza")
        self.assertFalse(user.has_usable_password())
        self.assertTrue(user.account_setup_token)
        kinds = [effect.kind for effect in self.dispatcher.of_type(NotifyAccount)]
        self.assertEqual(
            kinds,
            [NotificationKind.ACCOUNT_SETUP, NotificationKind.LIFETIME_REACHED],
        )
        row = Transaction.objects.get(processor_reference="HP100")
        self.assertEqual(row.processor, PaymentProcessor.HOTMART)
        self.assertEqual(row.currency, "brl")

    def test_existing_buyer_matched_by_email(self):
        existing = UserFactory(email="buyer@example.com")

        result = self.ingest(
            helpers.hotmart_postback(
                "PURCHASE_COMPLETE",
                transaction="HP101",
                email="BUYER@example.com",
            ),
        )

        self.assertEqual(result.account_id, existing.pk)
        self.assertEqual(User.objects.count(), 1)
        kinds = [effect.kind for effect in self.dispatcher.of_type(NotifyAccount)]
        self.assertNotIn(NotificationKind.ACCOUNT_SETUP, kinds)

    def test_redelivered_purchase_is_duplicate(self):
        payload = helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP102")
        self.ingest(payload)

        result = self.ingest(payload)

        self.assertEqual(result.outcome, "duplicate")
        self.assertEqual(User.objects.count(), 1)

    def test_add_on_purchase(self):
        self.ingest(
            helpers.hotmart_postback(
                "PURCHASE_APPROVED",
                transaction="HP200",
                product_id=2002,
                value=197.0,
            ),
        )

        user = User.objects.get(email="buyer@example.com")
        self.assertEqual(user.subscription_status, MembershipStatus.SMMA_ONLY)
        self.assertEqual(user.installments_required, 0)

    def test_unknown_product_is_dropped(self):
        result = self.ingest(
            helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP300", product_id=3003),
        )

        self.assertEqual(result.outcome, "dropped")
        self.assertFalse(User.objects.exists())

    def test_any_non_addon_product_is_membership_when_unconfigured(self):
        ingestor = HotmartEventIngestor(
            hottok="secret-hottok",
            membership_product_ids=[],
            addon_product_ids=["2002"],
            dispatcher=self.dispatcher,
        )
        payload = helpers.hotmart_postback(
            "PURCHASE_APPROVED",
            transaction="HP301",
            product_id=3003,
        )

        result = ingestor.ingest(helpers.as_body(payload), {"X-Hotmart-Hottok": "secret-hottok"})

        self.assertEqual(result.outcome, "applied")

    def test_refund_revokes_access(self):
        self.ingest(helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP400"))

        result = self.ingest(helpers.hotmart_postback("PURCHASE_REFUNDED", transaction="HP400"))

        self.assertEqual(result.outcome, "applied")
        user = User.objects.get(email="buyer@example.com")
        self.assertEqual(user.subscription_status, MembershipStatus.CANCELED)
        self.assertTrue(
            Transaction.objects.filter(
                processor_reference="HP400",
                status=TransactionStatus.REFUNDED,
            ).exists(),
        )

    def test_chargeback_is_recorded_as_chargeback(self):
        self.ingest(helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP401"))

        self.ingest(helpers.hotmart_postback("PURCHASE_CHARGEBACK", transaction="HP401"))

        self.assertTrue(
            Transaction.objects.filter(
                processor_reference="HP401",
                status=TransactionStatus.CHARGEBACK,
            ).exists(),
        )

    def test_refund_for_unknown_buyer_does_not_create_account(self):
        result = self.ingest(
            helpers.hotmart_postback("PURCHASE_REFUNDED", transaction="HP402"),
        )

        self.assertEqual(result.outcome, "account_not_found")
        self.assertFalse(User.objects.exists())

    def test_hottok_in_body_is_accepted(self):
        payload = helpers.hotmart_postback(
            "PURCHASE_APPROVED",
            transaction="HP500",
            hottok="secret-hottok",
        )
        result = self.ingest(payload, hottok=None)
        self.assertEqual(result.outcome, "applied")

    def test_wrong_hottok_is_rejected(self):
        with self.assertRaises(AuthenticationFailure):
            self.ingest(
                helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP501"),
                hottok="wrong",
            )
        self.assertFalse(User.objects.exists())

    def test_unconfigured_hottok_rejects_everything(self):
        ingestor = HotmartEventIngestor(hottok="", dispatcher=self.dispatcher)
        payload = helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP502")

        with self.assertRaises(AuthenticationFailure):
            ingestor.ingest(helpers.as_body(payload), {"X-Hotmart-Hottok": ""})

    def test_malformed_body(self):
        with self.assertRaises(MalformedPayload):
            self.ingestor.ingest(b"not json", {"X-Hotmart-Hottok": "secret-hottok"})

    def test_null_sections_are_dropped(self):
        payload = {"event": "PURCHASE_APPROVED", "data": {"buyer": None, "purchase": None}}
        result = self.ingest(payload)
        self.assertEqual(result.outcome, "dropped")


def stripe_signature(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@override_settings(STRIPE_WEBHOOK_SECRET="whsec_view_tests")
class WebhookViewTests(TestCase):
    def setUp(self):
        self.user = UserFactory(installment_plan=True)

    def post_stripe(self, payload: bytes, signature: str):
        return self.client.post(
            reverse("billing:stripe-webhook"),
            data=payload,
            content_type="application/json",
            headers={"stripe-signature": signature},
        )

    def test_signed_stripe_event_is_processed(self):
        event = helpers.stripe_event(
            "invoice.payment_succeeded",
            helpers.invoice(
                "in_view",
                customer=self.user.stripe_customer_id,
                subscription=self.user.stripe_subscription_id,
            ),
        )
        payload = helpers.as_body(event)

        response = self.post_stripe(payload, stripe_signature(payload, "whsec_view_tests"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"received": True, "event_type": "invoice.payment_succeeded", "outcome": "applied"},
        )
        self.user.refresh_from_db()
        self.assertEqual(self.user.installments_paid, 1)

    def test_bad_stripe_signature_is_400(self):
        payload = helpers.as_body(helpers.stripe_event("invoice.paid", {}))

        response = self.post_stripe(payload, stripe_signature(payload, "whsec_wrong"))

        self.assertEqual(response.status_code, 400)

    def test_missing_stripe_signature_is_400(self):
        response = self.client.post(
            reverse("billing:stripe-webhook"),
            data=b"{}",
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 400)

    def test_webhooks_reject_get(self):
        self.assertEqual(self.client.get(reverse("billing:stripe-webhook")).status_code, 405)
        self.assertEqual(self.client.get(reverse("billing:hotmart-webhook")).status_code, 405)

    @override_settings(HOTMART_HOTTOK="view-hottok")
    def test_hotmart_postback(self):
        payload = helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP-view")

        response = self.client.post(
            reverse("billing:hotmart-webhook"),
            data=json.dumps(payload),
            content_type="application/json",
            headers={"x-hotmart-hottok": "view-hottok"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "applied")

    @override_settings(HOTMART_HOTTOK="view-hottok")
    def test_hotmart_wrong_hottok_is_401(self):
        payload = helpers.hotmart_postback("PURCHASE_APPROVED", transaction="HP-401")

        response = self.client.post(
            reverse("billing:hotmart-webhook"),
            data=json.dumps(payload),
            content_type="application/json",
            headers={"x-hotmart-hottok": "nope"},
        )

        self.assertEqual(response.status_code, 401)
        self.assertFalse(Transaction.objects.exists())

    @override_settings(HOTMART_HOTTOK="view-hottok")
    def test_hotmart_malformed_body_is_400(self):
        response = self.client.post(
            reverse("billing:hotmart-webhook"),
            data="{not json",
            content_type="application/json",
            headers={"x-hotmart-hottok": "view-hottok"},
        )
        self.assertEqual(response.status_code, 400)

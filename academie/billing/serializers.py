from rest_framework import serializers

from academie.billing.commands import UNSET
from academie.billing.constants import MembershipStatus
from academie.billing.models import Transaction
from academie.users.models import User


class TransactionSerializer(serializers.ModelSerializer[Transaction]):
    class Meta:
        model = Transaction
        fields = [
            "id",
            "created",
            "amount",
            "currency",
            "status",
            "kind",
            "processor",
            "processor_reference",
            "stripe_subscription_id",
            "closer",
        ]
        read_only_fields = fields


class AccountBillingSerializer(serializers.ModelSerializer[User]):
    """Billing projection of an account plus its ledger, for admins."""

    transactions = TransactionSerializer(many=True, read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "name",
            "subscription_status",
            "installments_paid",
            "installments_required",
            "current_period_end",
            "stripe_customer_id",
            "stripe_subscription_id",
            "hotmart_transaction_code",
            "transactions",
        ]
        read_only_fields = fields


class MembershipProjectionSerializer(serializers.Serializer):
    account_id = serializers.IntegerField()
    status = serializers.CharField()
    installments_paid = serializers.IntegerField()
    installments_required = serializers.IntegerField()
    current_period_end = serializers.DateTimeField(allow_null=True)


class ManualOverrideSerializer(serializers.Serializer):
    subscription_status = serializers.ChoiceField(choices=MembershipStatus.choices)
    installments_paid = serializers.IntegerField(min_value=0)
    installments_required = serializers.IntegerField(min_value=0)
    current_period_end = serializers.DateTimeField(required=False, allow_null=True)
    paying_status = serializers.ChoiceField(
        choices=[MembershipStatus.ACTIVE, MembershipStatus.SMMA_ONLY],
        default=MembershipStatus.ACTIVE,
    )

    def validate(self, attrs):
        if (
            attrs["installments_required"] == 0
            and attrs["subscription_status"] != MembershipStatus.SMMA_ONLY
        ):
            raise serializers.ValidationError(
                {"installments_required": "Only SMMA_ONLY accounts may require 0."},
            )
        return attrs

    def to_override_kwargs(self) -> dict:
        data = self.validated_data
        return {
            "target_status": data["subscription_status"],
            "installments_paid": data["installments_paid"],
            "installments_required": data["installments_required"],
            "current_period_end": data.get("current_period_end", UNSET),
            "paying_status": data["paying_status"],
        }


class LinkSubscriptionSerializer(serializers.Serializer):
    subscription_id = serializers.RegexField(r"^sub_\w+$")


class RecordPaymentSerializer(serializers.Serializer):
    payment_intent_id = serializers.RegexField(r"^pi_\w+$")
    closer = serializers.CharField(max_length=255, required=False, default="", allow_blank=True)


class PriceOfferQuerySerializer(serializers.Serializer):
    installments = serializers.IntegerField(min_value=1)
    currency = serializers.CharField(max_length=3, min_length=3)


class PriceOfferSerializer(serializers.Serializer):
    price_id = serializers.CharField()
    installments_required = serializers.IntegerField()
    currency = serializers.CharField()
    unit_amount = serializers.IntegerField()
    recurring = serializers.BooleanField()


class PublishOfferSerializer(serializers.Serializer):
    installments = serializers.IntegerField(min_value=1)
    currency = serializers.CharField(max_length=3, min_length=3)
    unit_amount = serializers.IntegerField(min_value=1)


class StartMembershipSerializer(serializers.Serializer):
    price_id = serializers.RegexField(r"^price_\w+$")
    payment_method_id = serializers.RegexField(r"^pm_\w+$")

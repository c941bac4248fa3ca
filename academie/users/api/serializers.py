from rest_framework import serializers

from academie.users.models import User


class UserSerializer(serializers.ModelSerializer[User]):
    """
    Serializer for the User model.

    Membership fields are read-only; they change only through billing.
    """

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
        ]
        read_only_fields = fields

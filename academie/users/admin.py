from django.contrib import admin
from django.contrib.auth import admin as auth_admin
from django.utils.translation import gettext_lazy as _

from academie.users.models import User

MEMBERSHIP_FIELDS = (
    "subscription_status",
    "installments_paid",
    "installments_required",
    "current_period_end",
    "stripe_customer_id",
    "stripe_subscription_id",
    "hotmart_transaction_code",
)


@admin.register(User)
class UserAdmin(auth_admin.UserAdmin):
    fieldsets = (
        (None, {"fields": ("email", "password")}),
        (_("Personal info"), {"fields": ("name", "phone")}),
        (
            _("Membership"),
            {
                "fields": MEMBERSHIP_FIELDS,
                "description": _(
                    "Membership fields change only through billing events or "
                    "the billing admin API.",
                ),
            },
        ),
        (
            _("Permissions"),
            {
                "fields": (
                    "is_active",
                    "is_staff",
                    "is_superuser",
                    "groups",
                    "user_permissions",
                ),
            },
        ),
        (_("Important dates"), {"fields": ("last_login", "date_joined")}),
    )
    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "password1", "password2"),
            },
        ),
    )
    readonly_fields = MEMBERSHIP_FIELDS
    list_display = ["email", "name", "subscription_status", "installments_paid", "is_superuser"]
    list_filter = ["subscription_status", "is_staff", "is_superuser", "is_active"]
    search_fields = ["name", "email", "stripe_customer_id", "hotmart_transaction_code"]
    ordering = ["email"]

"""
Django admin configuration for the payment ledger.

Ledger rows are append-only, so the admin is read-only. Membership
corrections go through the reconciliation API instead.
"""

from django.contrib import admin

from academie.billing.models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = [
        "processor_reference",
        "user",
        "processor",
        "kind",
        "status",
        "amount",
        "currency",
        "created",
    ]
    list_filter = ["processor", "kind", "status", "created"]
    search_fields = ["processor_reference", "user__email", "stripe_subscription_id"]
    raw_id_fields = ["user"]
    date_hierarchy = "created"
    readonly_fields = [
        "user",
        "amount",
        "currency",
        "status",
        "kind",
        "processor",
        "processor_reference",
        "stripe_subscription_id",
        "closer",
        "created",
        "modified",
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

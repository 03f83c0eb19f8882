# projections/admin.py
"""Django admin for read models. Everything here is owned by a processor."""

from django.contrib import admin

from .models import (
    Asset,
    KycGrant,
    LendingReserve,
    Liquidation,
    Loan,
    LoanRepayment,
    ProcessorAppliedEvent,
    ProvidedLiquidity,
    Transaction,
    WithdrawnLiquidity,
)


class ReadModelAdmin(admin.ModelAdmin):

    def has_add_permission(self, request):
        return False  # Managed by processor

    def has_change_permission(self, request, obj=None):
        return False  # Managed by processor

    def has_delete_permission(self, request, obj=None):
        return False  # Use rebuild_projection


@admin.register(Asset)
class AssetAdmin(ReadModelAdmin):
    list_display = ["symbol", "name", "token", "timestamp"]
    search_fields = ["symbol", "name", "token"]


@admin.register(KycGrant)
class KycGrantAdmin(ReadModelAdmin):
    list_display = ["account", "token", "granted_at"]
    search_fields = ["account"]


@admin.register(Transaction)
class TransactionAdmin(ReadModelAdmin):
    list_display = ["type", "account", "token", "amount", "hash", "timestamp"]
    list_filter = ["type"]
    search_fields = ["account", "token", "hash"]


@admin.register(LendingReserve)
class LendingReserveAdmin(ReadModelAdmin):
    list_display = ["name", "symbol", "asset", "token", "timestamp"]
    search_fields = ["name", "asset", "token"]


@admin.register(Loan)
class LoanAdmin(ReadModelAdmin):
    list_display = ["id", "account", "collateral_asset", "loan_amount_usdc", "timestamp"]
    search_fields = ["id", "account", "collateral_asset"]


@admin.register(Liquidation)
class LiquidationAdmin(ReadModelAdmin):
    list_display = ["id", "account", "loan", "timestamp"]
    list_select_related = ["loan"]
    search_fields = ["account"]


@admin.register(LoanRepayment)
class LoanRepaymentAdmin(ReadModelAdmin):
    list_display = ["id", "account", "loan", "token", "timestamp"]
    list_select_related = ["loan"]
    search_fields = ["account"]


@admin.register(ProvidedLiquidity)
class ProvidedLiquidityAdmin(ReadModelAdmin):
    list_display = ["id", "account", "asset", "amount", "timestamp"]
    search_fields = ["account", "asset"]


@admin.register(WithdrawnLiquidity)
class WithdrawnLiquidityAdmin(ReadModelAdmin):
    list_display = ["id", "account", "asset", "amount", "timestamp"]
    search_fields = ["account", "asset"]


@admin.register(ProcessorAppliedEvent)
class ProcessorAppliedEventAdmin(ReadModelAdmin):
    list_display = ["contract", "event_key", "event_type", "applied_at"]
    list_filter = ["contract"]
    ordering = ["contract", "-event_key"]

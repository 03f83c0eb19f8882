# tests/test_projections.py
"""
Tests for the contract processors.

Covers:
- Issuer and lender read models built from event streams
- Duplicate and redelivered events
- Unknown event types
- Transaction rollback on handler failure
- Handler exhaustiveness at registration
- Rebuild
"""

import pytest
from decimal import Decimal

from django.core.exceptions import ImproperlyConfigured

from events.checkpoints import DatabaseCheckpointStore
from events.models import EventCheckpoint
from events.sources import DatabaseEventSource, EventRecord
from events.types import KYCGranted
from indexer.backoff import RetryPolicy
from indexer.errors import IndexerHalted
from indexer.models import IndexerStreamStatus
from indexer.observers import default_observer
from indexer.runner import build_engine
from projections.base import BaseProcessor, ProcessorRegistry, processor_registry
from projections.issuer import IssuerProcessor
from projections.lender import LenderProcessor
from projections.models import (
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
    amount_text,
)
from tests.fakes import RecordingObserver


POLICY = RetryPolicy(backoff_initial=0.001, backoff_max=0.01, checkpoint_retries=1)


def index(contract, observer=None, ignore_last_commit=False):
    """Catch ``contract`` up against the database, in this thread."""
    engine = build_engine(
        contract,
        ignore_last_commit=ignore_last_commit,
        policy=POLICY,
        source=DatabaseEventSource(page_size=2),
        checkpoints=DatabaseCheckpointStore(),
        observer=observer or RecordingObserver(),
    )
    return engine.catch_up()


def checkpoint(contract):
    return EventCheckpoint.objects.get(contract=contract).last_key


ASSET = {"token": "0xgold", "name": "Gold", "symbol": "GLD", "timestamp": 1700000000}


# =============================================================================
# Issuer
# =============================================================================

@pytest.mark.django_db
class TestIssuerStream:

    def test_asset_and_kyc_backlog(self, store_event):
        store_event("issuer", "AssetCreated", **ASSET)
        store_event("issuer", "KYCGranted", account="0xalice", token="0xgold")

        assert index("issuer") == 2

        asset = Asset.objects.get()
        assert (asset.token, asset.name, asset.symbol, asset.timestamp) == (
            "0xgold", "Gold", "GLD", 1700000000,
        )
        kyc = KycGrant.objects.get()
        assert (kyc.account, kyc.token) == ("0xalice", "0xgold")
        assert checkpoint("issuer") == 2

    def test_duplicate_kyc_grant_keeps_one_row(self, store_event):
        store_event("issuer", "KYCGranted", account="0xalice", token="0xgold")
        store_event("issuer", "KYCGranted", account="0xalice", token="0xsilver")

        index("issuer")

        assert KycGrant.objects.count() == 1
        assert KycGrant.objects.get().token == "0xgold"
        assert checkpoint("issuer") == 2

    def test_unknown_event_type_is_acknowledged(self, store_event):
        store_event("issuer", "AssetCreated", **ASSET)
        store_event("issuer", "KYCGranted", account="0xalice")
        store_event("issuer", "OwnershipTransferred", owner="0xnew")
        observer = RecordingObserver()

        index("issuer", observer=observer)

        assert checkpoint("issuer") == 3
        assert Asset.objects.count() == 1
        assert KycGrant.objects.count() == 1
        assert observer.of("processor_failed") == []
        assert ProcessorAppliedEvent.objects.filter(contract="issuer").count() == 3

    def test_malformed_known_event_is_acknowledged(self, store_event):
        store_event("issuer", "AssetPurchased", hash="0xh", amount="lots")

        index("issuer")

        assert Transaction.objects.count() == 0
        assert checkpoint("issuer") == 1

    def test_purchases_and_sales(self, store_event):
        store_event(
            "issuer", "AssetPurchased",
            hash="0xh1", buyer="0xalice", asset="0xgold", amount="2.5", timestamp=1,
        )
        store_event(
            "issuer", "AssetSold",
            hash="0xh2", seller="0xbob", asset="0xgold", amount=1, timestamp=2,
        )

        index("issuer")

        buy, sell = Transaction.objects.order_by("timestamp")
        assert (buy.type, buy.account, buy.token, buy.amount) == (
            Transaction.Type.BUY, "0xalice", "0xgold", "2.5",
        )
        assert (sell.type, sell.account, sell.amount) == (
            Transaction.Type.SELL, "0xbob", "1",
        )

    def test_large_amount_is_stored_exactly(self, store_event):
        amount = "123456789012345678901234567890"
        store_event(
            "issuer", "AssetPurchased",
            hash="0xh", buyer="0xalice", asset="0xgold", amount=amount, timestamp=1,
        )

        index("issuer")

        assert Transaction.objects.get().amount == amount
        assert Transaction.objects.filter(amount=amount).exists()
        assert checkpoint("issuer") == 1

    def test_mint_and_burn_write_nothing(self, store_event):
        store_event("issuer", "AssetMinted", token="0xgold", account="0xalice", amount=5)
        store_event("issuer", "AssetBurned", token="0xgold", account="0xalice", amount=5)

        index("issuer")

        assert Transaction.objects.count() == 0
        assert Asset.objects.count() == 0
        assert checkpoint("issuer") == 2

    def test_new_events_resume_after_checkpoint(self, store_event):
        store_event("issuer", "KYCGranted", account="0xalice")
        index("issuer")

        store_event("issuer", "KYCGranted", account="0xbob")
        assert index("issuer") == 1

        assert set(KycGrant.objects.values_list("account", flat=True)) == {"0xalice", "0xbob"}
        assert checkpoint("issuer") == 2

    def test_stream_status_is_recorded(self, store_event):
        store_event("issuer", "KYCGranted", account="0xalice")

        index("issuer", observer=default_observer())

        status = IndexerStreamStatus.objects.get(contract="issuer")
        assert status.state == IndexerStreamStatus.State.STOPPED
        assert status.last_key == 1


# =============================================================================
# Lender
# =============================================================================

LOAN = {
    "borrower": "0xalice",
    "token": "0xgold",
    "collateralAmountAsset": "10",
    "liquidationUSDCPrice": "1500",
    "loanAmountUSDC": "1000",
    "repayAmount": "1050",
    "timestamp": 100,
}


@pytest.mark.django_db
class TestLenderStream:

    def test_reserve_symbol_falls_back_to_name(self, store_event):
        store_event("lender", "AssetLendingReserveCreated", token="0xr", asset="0xgold", name="Gold Reserve", timestamp=1)
        store_event("lender", "AssetLendingReserveCreated", token="0xs", asset="0xsilver", name="Silver Reserve", symbol="rSLV", timestamp=2)

        index("lender")

        gold, silver = LendingReserve.objects.order_by("timestamp")
        assert gold.symbol == "Gold Reserve"
        assert silver.symbol == "rSLV"

    def test_loan_lifecycle(self, store_event):
        store_event("lender", "LoanRecorded", **LOAN)
        store_event("lender", "LoanRepaid", borrower="0xalice", token="0xgold", timestamp=200)
        store_event("lender", "LoanLiquidated", borrower="0xalice", token="0xgold", timestamp=300)

        index("lender")

        loan = Loan.objects.get()
        assert loan.id.startswith("loan_")
        assert (loan.account, loan.collateral_asset) == ("0xalice", "0xgold")
        assert loan.collateral_amount == "10"
        assert loan.liquidation_price == "1500"
        assert loan.loan_amount_usdc == "1000"
        assert loan.repayment_amount == "1050"

        repayment = LoanRepayment.objects.get()
        assert repayment.loan_id == loan.id
        assert repayment.id.startswith("repayment_")
        assert repayment.token == "0xgold"

        liquidation = Liquidation.objects.get()
        assert liquidation.loan_id == loan.id
        assert liquidation.id.startswith("liquidation_")

    def test_repayment_uses_latest_matching_loan(self, store_event):
        store_event("lender", "LoanRecorded", **LOAN)
        store_event("lender", "LoanRecorded", **{**LOAN, "timestamp": 150})
        store_event("lender", "LoanRepaid", borrower="0xalice", token="0xgold", timestamp=200)

        index("lender")

        latest = Loan.objects.get(timestamp=150)
        assert LoanRepayment.objects.get().loan_id == latest.id

    def test_liquidation_without_loan_is_acknowledged(self, store_event):
        store_event("lender", "LoanLiquidated", borrower="0xnobody", token="0xgold", timestamp=1)

        index("lender")

        assert Liquidation.objects.count() == 0
        assert checkpoint("lender") == 1

    def test_uint256_amounts_survive(self, store_event):
        max_uint256 = str(2 ** 256 - 1)
        store_event("lender", "LoanRecorded", **{**LOAN, "collateralAmountAsset": max_uint256, "loanAmountUSDC": 10 ** 40})

        index("lender")

        loan = Loan.objects.get()
        assert loan.collateral_amount == max_uint256
        assert Decimal(loan.loan_amount_usdc) == 10 ** 40

    def test_liquidity_movements(self, store_event):
        store_event("lender", "LiquidityProvided", user="0xlp", asset="0xusdc", amount="500", timestamp=1)
        store_event("lender", "LiquidityWithdrawn", user="0xlp", asset="0xusdc", amount="200", timestamp=2)

        index("lender")

        provided = ProvidedLiquidity.objects.get()
        withdrawn = WithdrawnLiquidity.objects.get()
        assert (provided.account, provided.amount) == ("0xlp", "500")
        assert (withdrawn.account, withdrawn.amount) == ("0xlp", "200")
        assert provided.id.startswith("liquidity_")
        assert withdrawn.id.startswith("withdrawal_")


# =============================================================================
# Redelivery and failure
# =============================================================================

@pytest.mark.django_db
class TestProcessorSemantics:

    def purchase(self, key):
        return EventRecord(
            key=key,
            contract="issuer",
            type="AssetPurchased",
            fields={"hash": "0xh", "buyer": "0xalice", "asset": "0xgold", "amount": "1", "timestamp": 1},
        )

    def test_redelivered_event_is_applied_once(self):
        processor = processor_registry.get("issuer")

        processor(self.purchase(7))
        processor(self.purchase(7))

        assert Transaction.objects.count() == 1
        assert ProcessorAppliedEvent.objects.get().event_key == 7

    def test_same_key_in_other_contract_is_not_a_duplicate(self):
        processor_registry.get("issuer")(self.purchase(1))
        processor_registry.get("lender")(EventRecord(
            key=1,
            contract="lender",
            type="LiquidityProvided",
            fields={"user": "0xlp", "asset": "0xusdc", "amount": "5", "timestamp": 1},
        ))

        assert Transaction.objects.count() == 1
        assert ProvidedLiquidity.objects.count() == 1

    def test_failing_handler_leaves_no_rows_or_marker(self, monkeypatch):
        def create_then_fail(self, event, record):
            Transaction.objects.create(
                hash=event.hash, account=event.buyer, token=event.asset,
                amount=event.amount, type=Transaction.Type.BUY, timestamp=event.timestamp,
            )
            raise RuntimeError("downstream failure")

        monkeypatch.setattr(IssuerProcessor, "handle_asset_purchased", create_then_fail)

        with pytest.raises(RuntimeError, match="downstream failure"):
            processor_registry.get("issuer")(self.purchase(1))

        assert Transaction.objects.count() == 0
        assert ProcessorAppliedEvent.objects.count() == 0

    def test_failing_handler_halts_stream(self, store_event, monkeypatch):
        store_event("issuer", "KYCGranted", account="0xalice")
        store_event(
            "issuer", "AssetPurchased",
            hash="0xh", buyer="0xalice", asset="0xgold", amount="1", timestamp=1,
        )

        def fail(self, event, record):
            raise RuntimeError("downstream failure")

        monkeypatch.setattr(IssuerProcessor, "handle_asset_purchased", fail)

        with pytest.raises(IndexerHalted):
            index("issuer")

        assert checkpoint("issuer") == 1
        checkpoint_row = EventCheckpoint.objects.get(contract="issuer")
        assert checkpoint_row.error_count == 1
        assert "downstream failure" in checkpoint_row.last_error


# =============================================================================
# Registration
# =============================================================================

class TestRegistration:

    def test_registered_contracts(self):
        assert set(processor_registry.contracts()) >= {"issuer", "lender"}
        assert isinstance(processor_registry.get("lender"), LenderProcessor)

    def test_processor_missing_a_variant_is_rejected(self):

        class PartialIssuer(BaseProcessor):
            contract = "issuer"

            def handlers(self):
                return {KYCGranted: lambda event, record: None}

        with pytest.raises(ImproperlyConfigured, match="AssetCreated"):
            ProcessorRegistry().register(PartialIssuer())

        assert isinstance(processor_registry.get("issuer"), IssuerProcessor)

    def test_shipped_processors_handle_every_variant(self):
        for processor in processor_registry.all():
            assert processor.missing_handlers() == []


# =============================================================================
# Rebuild
# =============================================================================

@pytest.mark.django_db
class TestRebuild:

    def test_reset_then_replay_restores_rows(self, store_event):
        store_event("issuer", "AssetCreated", **ASSET)
        store_event("issuer", "KYCGranted", account="0xalice")
        index("issuer")

        processor_registry.get("issuer").reset()
        assert Asset.objects.count() == 0
        assert KycGrant.objects.count() == 0
        assert ProcessorAppliedEvent.objects.count() == 0

        assert index("issuer", ignore_last_commit=True) == 2
        assert Asset.objects.count() == 1
        assert KycGrant.objects.count() == 1
        assert checkpoint("issuer") == 2

    def test_reset_is_per_contract(self, store_event):
        store_event("issuer", "KYCGranted", account="0xalice")
        store_event("lender", "LiquidityProvided", user="0xlp", asset="0xusdc", amount="5", timestamp=1)
        index("issuer")
        index("lender")

        processor_registry.get("lender").reset()

        assert KycGrant.objects.count() == 1
        assert ProvidedLiquidity.objects.count() == 0
        assert ProcessorAppliedEvent.objects.filter(contract="issuer").count() == 1


class TestAmountText:

    @pytest.mark.parametrize("value, text", [
        (Decimal("1E+3"), "1000"),
        (Decimal("2.50"), "2.50"),
        (Decimal(2 ** 256 - 1), str(2 ** 256 - 1)),
    ])
    def test_positional_text(self, value, text):
        assert amount_text(value) == text

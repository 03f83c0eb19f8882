# projections/lender.py
"""
Lender contract processor.

Maintains lending reserves, loans and what happens to them (liquidation,
repayment), plus liquidity provided to and withdrawn from the pools.

Liquidations and repayments refer to a loan only by borrower and collateral
token; the most recent matching loan is used. When no loan matches, the
event is logged and acknowledged without a row.
"""

import logging
from typing import Optional

from events.types import (
    AssetLendingReserveCreated,
    Contracts,
    LiquidityProvided,
    LiquidityWithdrawn,
    LoanLiquidated,
    LoanRecorded,
    LoanRepaid,
    UnrecognizedEvent,
)
from projections.base import BaseProcessor, generate_id, processor_registry
from projections.models import (
    LendingReserve,
    Liquidation,
    Loan,
    LoanRepayment,
    ProvidedLiquidity,
    WithdrawnLiquidity,
    amount_text,
)


logger = logging.getLogger(__name__)


def _find_loan(account: str, collateral_asset: str) -> Optional[Loan]:
    return (
        Loan.objects.filter(account=account, collateral_asset=collateral_asset)
        .order_by("-timestamp", "-id")
        .first()
    )


class LenderProcessor(BaseProcessor):

    @property
    def contract(self) -> str:
        return Contracts.LENDER

    def handlers(self):
        return {
            AssetLendingReserveCreated: self.handle_reserve_created,
            LoanRecorded: self.handle_loan_recorded,
            LoanLiquidated: self.handle_loan_liquidated,
            LoanRepaid: self.handle_loan_repaid,
            LiquidityProvided: self.handle_liquidity_provided,
            LiquidityWithdrawn: self.handle_liquidity_withdrawn,
            UnrecognizedEvent: self.handle_unrecognized,
        }

    def handle_reserve_created(self, event: AssetLendingReserveCreated, record) -> None:
        LendingReserve.objects.create(
            token=event.token,
            asset=event.asset,
            name=event.name,
            # Older reserve events carry no symbol.
            symbol=event.symbol or event.name,
            timestamp=event.timestamp,
        )

    def handle_loan_recorded(self, event: LoanRecorded, record) -> None:
        Loan.objects.create(
            id=generate_id("loan"),
            account=event.borrower,
            collateral_asset=event.token,
            collateral_amount=amount_text(event.collateral_amount),
            liquidation_price=amount_text(event.liquidation_price),
            loan_amount_usdc=amount_text(event.loan_amount_usdc),
            repayment_amount=amount_text(event.repayment_amount),
            timestamp=event.timestamp,
        )

    def handle_loan_liquidated(self, event: LoanLiquidated, record) -> None:
        loan = _find_loan(event.borrower, event.token)
        if loan is None:
            logger.warning(
                f"No loan of {event.borrower} against {event.token} to liquidate",
                extra={"contract": self.contract, "key": record.key},
            )
            return

        Liquidation.objects.create(
            id=generate_id("liquidation"),
            account=event.borrower,
            loan=loan,
            timestamp=event.timestamp,
        )

    def handle_loan_repaid(self, event: LoanRepaid, record) -> None:
        loan = _find_loan(event.borrower, event.token)
        if loan is None:
            logger.warning(
                f"No loan of {event.borrower} against {event.token} to repay",
                extra={"contract": self.contract, "key": record.key},
            )
            return

        LoanRepayment.objects.create(
            id=generate_id("repayment"),
            account=event.borrower,
            loan=loan,
            token=event.token,
            timestamp=event.timestamp,
        )

    def handle_liquidity_provided(self, event: LiquidityProvided, record) -> None:
        ProvidedLiquidity.objects.create(
            id=generate_id("liquidity"),
            account=event.user,
            asset=event.asset,
            amount=amount_text(event.amount),
            timestamp=event.timestamp,
        )

    def handle_liquidity_withdrawn(self, event: LiquidityWithdrawn, record) -> None:
        WithdrawnLiquidity.objects.create(
            id=generate_id("withdrawal"),
            account=event.user,
            asset=event.asset,
            amount=amount_text(event.amount),
            timestamp=event.timestamp,
        )

    def _clear_projected_data(self) -> None:
        Liquidation.objects.all().delete()
        LoanRepayment.objects.all().delete()
        Loan.objects.all().delete()
        LendingReserve.objects.all().delete()
        ProvidedLiquidity.objects.all().delete()
        WithdrawnLiquidity.objects.all().delete()


processor_registry.register(LenderProcessor())

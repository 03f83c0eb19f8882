# projections/issuer.py
"""
Issuer contract processor.

Maintains assets, KYC grants and buy/sell transactions. Mint and burn events
carry nothing the read models track; they are logged and acknowledged.
"""

import logging

from events.types import (
    AssetBurned,
    AssetCreated,
    AssetMinted,
    AssetPurchased,
    AssetSold,
    Contracts,
    KYCGranted,
    UnrecognizedEvent,
)
from projections.base import BaseProcessor, processor_registry
from projections.models import Asset, KycGrant, Transaction, amount_text


logger = logging.getLogger(__name__)


class IssuerProcessor(BaseProcessor):

    @property
    def contract(self) -> str:
        return Contracts.ISSUER

    def handlers(self):
        return {
            AssetMinted: self.handle_asset_minted,
            AssetBurned: self.handle_asset_burned,
            KYCGranted: self.handle_kyc_granted,
            AssetPurchased: self.handle_asset_purchased,
            AssetSold: self.handle_asset_sold,
            AssetCreated: self.handle_asset_created,
            UnrecognizedEvent: self.handle_unrecognized,
        }

    def handle_asset_minted(self, event: AssetMinted, record) -> None:
        logger.info(
            f"Asset minted: {event.amount} {event.token} to {event.account}",
            extra={"contract": self.contract, "key": record.key},
        )

    def handle_asset_burned(self, event: AssetBurned, record) -> None:
        logger.info(
            f"Asset burned: {event.amount} {event.token} from {event.account}",
            extra={"contract": self.contract, "key": record.key},
        )

    def handle_kyc_granted(self, event: KYCGranted, record) -> None:
        if KycGrant.objects.filter(account=event.account).exists():
            logger.info(f"KYC already granted for {event.account}")
            return

        KycGrant.objects.create(
            account=event.account,
            token=event.token or "",
        )

    def handle_asset_purchased(self, event: AssetPurchased, record) -> None:
        Transaction.objects.create(
            hash=event.hash,
            account=event.buyer,
            token=event.asset,
            amount=amount_text(event.amount),
            type=Transaction.Type.BUY,
            timestamp=event.timestamp,
        )

    def handle_asset_sold(self, event: AssetSold, record) -> None:
        Transaction.objects.create(
            hash=event.hash,
            account=event.seller,
            token=event.asset,
            amount=amount_text(event.amount),
            type=Transaction.Type.SELL,
            timestamp=event.timestamp,
        )

    def handle_asset_created(self, event: AssetCreated, record) -> None:
        Asset.objects.update_or_create(
            token=event.token,
            defaults={
                "name": event.name,
                "symbol": event.symbol,
                "timestamp": event.timestamp,
            },
        )

    def _clear_projected_data(self) -> None:
        Transaction.objects.all().delete()
        KycGrant.objects.all().delete()
        Asset.objects.all().delete()


processor_registry.register(IssuerProcessor())

# events/types.py
"""
Event type definitions for the issuer and lender contracts.

This module defines the closed set of event shapes each contract emits.
Every known shape is a frozen dataclass; anything else (an event type we do
not know, or a known type with a payload we cannot read) becomes an
``UnrecognizedEvent``. Processors handle every variant of their contract
explicitly, so a new shape cannot be silently dropped by a default branch.

Upstream field names are camelCase contract argument names. Dataclass
fields are snake_case; a field's ``metadata["source"]`` names the upstream
key when the two differ.

IMPORTANT: Events are a STABLE API
============================================
- Adding optional fields with defaults is safe
- Removing or renaming fields breaks processors (and replays)
"""

from dataclasses import dataclass, field, fields as dataclass_fields, MISSING
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Type, Union, get_args, get_origin, get_type_hints


# =============================================================================
# Event Validation
# =============================================================================

class InvalidEventPayload(Exception):
    """
    Raised when an event payload cannot be read as its declared type.
    """
    def __init__(self, event_type: str, errors: List[str]):
        self.event_type = event_type
        self.errors = errors
        error_list = "\n  - ".join(errors)
        super().__init__(
            f"Invalid payload for event '{event_type}':\n  - {error_list}"
        )


def _get_inner_type(type_hint):
    """Get the inner type from Optional[X]."""
    if get_origin(type_hint) is Union:
        non_none_args = [a for a in get_args(type_hint) if a is not type(None)]
        if len(non_none_args) == 1:
            return non_none_args[0]
    return type_hint


def _coerce(value: Any, type_hint) -> Any:
    """Convert a raw JSON value to the declared field type."""
    if value is None:
        return None
    target = _get_inner_type(type_hint)
    if target is Decimal:
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"expected a number, got {value!r}")
    if target is int:
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        if isinstance(value, int):
            return value
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"expected an integer, got {value!r}")
        if number != number.to_integral_value():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(number)
    if target is str:
        if isinstance(value, (dict, list)):
            raise ValueError(f"expected a string, got {type(value).__name__}")
        return str(value)
    return value


# =============================================================================
# Base Event Classes
# =============================================================================

@dataclass(frozen=True)
class BaseEventData:
    """Base class for all known event shapes."""

    event_type: ClassVar[str] = ""

    @classmethod
    def from_fields(cls, data: Mapping[str, Any]) -> "BaseEventData":
        """
        Build the event from upstream fields.

        Raises:
            InvalidEventPayload: required fields missing or of the wrong type
        """
        hints = get_type_hints(cls)
        errors = []
        kwargs = {}

        for f in dataclass_fields(cls):
            source = f.metadata.get("source", f.name)
            if source not in data or data[source] is None:
                if f.default is MISSING:
                    errors.append(f"Missing required field: {source}")
                continue
            try:
                kwargs[f.name] = _coerce(data[source], hints[f.name])
            except ValueError as e:
                errors.append(f"Field '{source}': {e}")

        if errors:
            raise InvalidEventPayload(cls.event_type, errors)
        return cls(**kwargs)


@dataclass(frozen=True)
class UnrecognizedEvent:
    """
    An event the contract's processor has no shape for.

    Covers both unknown event types and known types whose payload failed to
    parse. Processors log it and move on; it never blocks the stream.
    """

    event_type: str
    fields: Dict[str, Any]
    reason: str = "unknown event type"


def _from(source: str) -> dict:
    return {"source": source}


# =============================================================================
# Issuer Events
# =============================================================================

@dataclass(frozen=True)
class AssetMinted(BaseEventData):
    event_type: ClassVar[str] = "AssetMinted"

    token: Optional[str] = None
    account: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class AssetBurned(BaseEventData):
    event_type: ClassVar[str] = "AssetBurned"

    token: Optional[str] = None
    account: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class KYCGranted(BaseEventData):
    event_type: ClassVar[str] = "KYCGranted"

    account: str
    token: Optional[str] = None


@dataclass(frozen=True)
class AssetPurchased(BaseEventData):
    event_type: ClassVar[str] = "AssetPurchased"

    hash: str
    buyer: str
    asset: str
    amount: Decimal
    timestamp: int


@dataclass(frozen=True)
class AssetSold(BaseEventData):
    event_type: ClassVar[str] = "AssetSold"

    hash: str
    seller: str
    asset: str
    amount: Decimal
    timestamp: int


@dataclass(frozen=True)
class AssetCreated(BaseEventData):
    event_type: ClassVar[str] = "AssetCreated"

    token: str
    name: str
    symbol: str
    timestamp: int


# =============================================================================
# Lender Events
# =============================================================================

@dataclass(frozen=True)
class AssetLendingReserveCreated(BaseEventData):
    event_type: ClassVar[str] = "AssetLendingReserveCreated"

    token: str
    asset: str
    name: str
    timestamp: int
    symbol: Optional[str] = None


@dataclass(frozen=True)
class LoanRecorded(BaseEventData):
    event_type: ClassVar[str] = "LoanRecorded"

    borrower: str
    token: str
    collateral_amount: Decimal = field(metadata=_from("collateralAmountAsset"))
    liquidation_price: Decimal = field(metadata=_from("liquidationUSDCPrice"))
    loan_amount_usdc: Decimal = field(metadata=_from("loanAmountUSDC"))
    repayment_amount: Decimal = field(metadata=_from("repayAmount"))
    timestamp: int = field(metadata=_from("timestamp"))


@dataclass(frozen=True)
class LoanLiquidated(BaseEventData):
    event_type: ClassVar[str] = "LoanLiquidated"

    borrower: str
    token: str
    timestamp: int


@dataclass(frozen=True)
class LoanRepaid(BaseEventData):
    event_type: ClassVar[str] = "LoanRepaid"

    borrower: str
    token: str
    timestamp: int


@dataclass(frozen=True)
class LiquidityProvided(BaseEventData):
    event_type: ClassVar[str] = "LiquidityProvided"

    user: str
    asset: str
    amount: Decimal
    timestamp: int


@dataclass(frozen=True)
class LiquidityWithdrawn(BaseEventData):
    event_type: ClassVar[str] = "LiquidityWithdrawn"

    user: str
    asset: str
    amount: Decimal
    timestamp: int


# =============================================================================
# Registries
# =============================================================================

class Contracts:
    """Known contract streams."""

    ISSUER = "issuer"
    LENDER = "lender"


CONTRACT_EVENTS: Dict[str, Tuple[Type[BaseEventData], ...]] = {
    Contracts.ISSUER: (
        AssetMinted,
        AssetBurned,
        KYCGranted,
        AssetPurchased,
        AssetSold,
        AssetCreated,
    ),
    Contracts.LENDER: (
        AssetLendingReserveCreated,
        LoanRecorded,
        LoanLiquidated,
        LoanRepaid,
        LiquidityProvided,
        LiquidityWithdrawn,
    ),
}

EVENT_DATA_CLASSES: Dict[str, Dict[str, Type[BaseEventData]]] = {
    contract: {cls.event_type: cls for cls in classes}
    for contract, classes in CONTRACT_EVENTS.items()
}


def parse_event(contract: str, event_type: str, data: Mapping[str, Any]) -> Union[BaseEventData, UnrecognizedEvent]:
    """
    Resolve a raw event into its typed variant.

    Never raises for bad input: unknown types and unreadable payloads come
    back as ``UnrecognizedEvent`` with the reason attached.
    """
    data_class = EVENT_DATA_CLASSES.get(contract, {}).get(event_type)
    if data_class is None:
        return UnrecognizedEvent(event_type=event_type, fields=dict(data))
    try:
        return data_class.from_fields(data)
    except InvalidEventPayload as e:
        return UnrecognizedEvent(
            event_type=event_type,
            fields=dict(data),
            reason="; ".join(e.errors),
        )

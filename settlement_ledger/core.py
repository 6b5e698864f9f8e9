"""
Core types and pure functions for the settlement ledger.

This module provides the foundational data structures for the ledger:
1. Exceptions: LedgerError and the settlement error taxonomy
2. Direction: the sign convention applied to a transaction's deltas
3. Request values: LedgerAddress, DenominationMovement, TenderMovement, Transaction
4. Snapshot values: TenderInfo, Tender, Till (the read-path result)
5. Decimal helpers used by both the write and the read path

Nothing in this module touches the key-value store. LedgerEngine
(ledger.py) is the only place where state is read or written.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances are accumulated by the store, but every value that crosses the
# package boundary is a Decimal. Precision and rounding are fixed here so that
# sign application and reconciliation sums are deterministic.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Separator used by the key schema. Identifiers may not contain it, otherwise
# two different logical addresses could map to the same storage key.
KEY_DELIMITER = ":"

# Field names of a denomination record.
COUNT_FIELD = "count"
AMOUNT_FIELD = "amount"

ZERO = Decimal("0")

# Default tolerance for reconciliation checks. The store accumulates with
# binary floating point, so sums of decimal fractions can drift in the last
# few digits.
RECONCILIATION_TOLERANCE = Decimal("1e-9")


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all settlement-ledger errors."""
    pass


class InvalidDirectionError(LedgerError):
    """Raised when a transaction's direction is neither forward nor reverse."""

    def __init__(self, direction: Any):
        self.direction = direction
        super().__init__(f"invalid direction {direction!r}")


class StoreError(LedgerError):
    """
    Raised when a key-value store operation fails.

    Attributes:
        operation: Store command that failed (e.g. "HINCRBYFLOAT")
        key: Storage key the command addressed
    """

    def __init__(self, message: str, operation: Optional[str] = None, key: Optional[str] = None):
        self.operation = operation
        self.key = key
        super().__init__(message)


class DeadlineExceeded(StoreError):
    """Raised when a caller-supplied deadline passes before a store call is issued."""
    pass


class ParseError(LedgerError):
    """
    Raised when a stored value cannot be parsed as its expected numeric type.

    Attributes:
        key: Storage key holding the bad value
        field: Record field name, or None for scalar keys
        value: The raw stored value
    """

    def __init__(self, key: str, field: Optional[str], value: Any):
        self.key = key
        self.field = field
        self.value = value
        location = f"{key} [{field}]" if field else key
        super().__init__(f"cannot parse {value!r} stored at {location}")


# ============================================================================
# DIRECTION
# ============================================================================

class Direction(Enum):
    """
    Sign convention of a transaction.

    FORWARD: value moves from source to destination.
    REVERSE: the transfer is undone; value moves from destination to source.
    """
    FORWARD = ">"
    REVERSE = "<"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.FORWARD else -1

    @classmethod
    def parse(cls, value: Union[Direction, str]) -> Direction:
        """
        Resolve a Direction or its wire symbol (">" or "<").

        Raises:
            InvalidDirectionError: If value is anything else
        """
        if isinstance(value, Direction):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidDirectionError(value) from None


# ============================================================================
# HELPERS
# ============================================================================

def to_decimal(value: Any, what: str = "amount") -> Decimal:
    """
    Convert a number to a finite Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError(f"{what} must be numeric, got {value!r}")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"{what} must be numeric, got {value!r}") from None
    if not value.is_finite():
        raise ValueError(f"{what} must be finite, got {value}")
    return value


def format_decimal(d: Decimal) -> str:
    """
    Render a Decimal the way it is sent to the store.

    Equal values render identically ("1.50" and "1.5" both become "1.5",
    negative zero becomes "0") and scientific notation is never produced.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _check_identifier(value: Any, what: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} cannot be empty")
    if KEY_DELIMITER in value:
        raise ValueError(f"{what} cannot contain {KEY_DELIMITER!r}: {value!r}")


def _check_count(value: Any, what: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{what} must be an integer, got {type(value).__name__}")


# ============================================================================
# REQUEST VALUES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LedgerAddress:
    """
    Scope of one ledger: organization, enterprise unit and settlement document.

    Every storage key is derived from an address (see keys.py).
    """
    organization: str
    enterprise_unit: str
    settlement_doc_id: str

    def __post_init__(self):
        _check_identifier(self.organization, "LedgerAddress organization")
        _check_identifier(self.enterprise_unit, "LedgerAddress enterprise_unit")
        _check_identifier(self.settlement_doc_id, "LedgerAddress settlement_doc_id")

    def __repr__(self) -> str:
        return f"LedgerAddress({self.organization}/{self.enterprise_unit}/{self.settlement_doc_id})"


@dataclass(frozen=True, slots=True)
class DenominationMovement:
    """
    Change to one denomination of a tender, e.g. two quarters worth 0.50.

    Attributes:
        name: Denomination name ("quarter", "$5 bill")
        count: Signed number of pieces moved
        amount: Signed value moved (coerced to Decimal)
    """
    name: str
    count: int
    amount: Decimal

    def __post_init__(self):
        _check_identifier(self.name, "Denomination name")
        _check_count(self.count, "Denomination count")
        object.__setattr__(self, 'amount', to_decimal(self.amount, "Denomination amount"))


@dataclass(frozen=True, slots=True)
class TenderMovement:
    """
    Change to one tender of a till.

    The scalar amount and the denomination amounts are applied independently;
    nothing requires the denominations to add up to the amount.
    """
    tender_id: str
    amount: Decimal
    denominations: Tuple[DenominationMovement, ...] = ()

    def __post_init__(self):
        _check_identifier(self.tender_id, "Tender id")
        object.__setattr__(self, 'amount', to_decimal(self.amount, "Tender amount"))
        denominations = tuple(self.denominations)
        for d in denominations:
            if not isinstance(d, DenominationMovement):
                raise ValueError(f"Tender denominations must be DenominationMovement, got {type(d).__name__}")
        object.__setattr__(self, 'denominations', denominations)


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    Request to move tenders from a source till to a destination till.

    A Transaction is transient: only its effect on balances is persisted
    (plus an audit record when the engine runs with audit=True).

    The direction is kept as given. It is resolved by
    LedgerEngine.process_transaction, which rejects unknown values with
    InvalidDirectionError before touching the store.

    Attributes:
        address: Ledger the transfer belongs to
        source: Till debited by a forward transfer
        destination: Till credited by a forward transfer
        direction: Direction.FORWARD / ">" or Direction.REVERSE / "<"
        tenders: Tender movements, applied in order
    """
    address: LedgerAddress
    source: str
    destination: str
    direction: Union[Direction, str] = Direction.FORWARD
    tenders: Tuple[TenderMovement, ...] = ()

    def __post_init__(self):
        if not isinstance(self.address, LedgerAddress):
            raise ValueError(f"Transaction address must be LedgerAddress, got {type(self.address).__name__}")
        _check_identifier(self.source, "Transaction source")
        _check_identifier(self.destination, "Transaction destination")
        tenders = tuple(self.tenders)
        for t in tenders:
            if not isinstance(t, TenderMovement):
                raise ValueError(f"Transaction tenders must be TenderMovement, got {type(t).__name__}")
        object.__setattr__(self, 'tenders', tenders)

    def reversed(self) -> Transaction:
        """Return the same transfer with the opposite direction."""
        direction = Direction.parse(self.direction)
        flipped = Direction.REVERSE if direction is Direction.FORWARD else Direction.FORWARD
        return Transaction(self.address, self.source, self.destination, flipped, self.tenders)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form used by the audit log. Amounts are decimal strings."""
        return {
            'organization': self.address.organization,
            'enterprise_unit': self.address.enterprise_unit,
            'settlement_doc_id': self.address.settlement_doc_id,
            'source': self.source,
            'destination': self.destination,
            'direction': Direction.parse(self.direction).value,
            'tenders': [
                {
                    'id': t.tender_id,
                    'amount': format_decimal(t.amount),
                    'denominations': [
                        {'name': d.name, 'count': d.count, 'amount': format_decimal(d.amount)}
                        for d in t.denominations
                    ],
                }
                for t in self.tenders
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Transaction:
        address = LedgerAddress(
            data['organization'], data['enterprise_unit'], data['settlement_doc_id']
        )
        tenders = tuple(
            TenderMovement(
                t['id'],
                to_decimal(t['amount'], "Tender amount"),
                tuple(
                    DenominationMovement(d['name'], d['count'], to_decimal(d['amount'], "Denomination amount"))
                    for d in t['denominations']
                ),
            )
            for t in data['tenders']
        )
        return cls(
            address, data['source'], data['destination'],
            Direction.parse(data['direction']), tenders,
        )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        direction = self.direction.value if isinstance(self.direction, Direction) else str(self.direction)
        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.source + ' ' + direction + ' ' + self.destination)}│",
            f"├{bar}┤",
            f"│{pad('   organization   : ' + self.address.organization)}│",
            f"│{pad('   enterprise_unit: ' + self.address.enterprise_unit)}│",
            f"│{pad('   settlement_id  : ' + self.address.settlement_doc_id)}│",
            f"├{bar}┤",
            f"│{pad(' Tenders (' + str(len(self.tenders)) + '):')}│",
        ]
        for i, tender in enumerate(self.tenders):
            lines.append(f"│{pad(f'   [{i}] {tender.tender_id}: {format_decimal(tender.amount)}')}│")
            for d in tender.denominations:
                lines.append(f"│{pad(f'       {d.name}: {d.count} x = {format_decimal(d.amount)}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# SNAPSHOT VALUES (read path)
# ============================================================================

@dataclass(frozen=True, slots=True)
class TenderInfo:
    """Denomination breakdown of a tender: running count and amount."""
    name: str
    count: int
    amount: Decimal

    def __post_init__(self):
        _check_count(self.count, "TenderInfo count")
        object.__setattr__(self, 'amount', to_decimal(self.amount, "TenderInfo amount"))


@dataclass(frozen=True, slots=True)
class Tender:
    """
    Balance of one tender held by a till.

    amount is the scalar running balance. tender_breakdowns are tracked
    separately and may not sum to it; see divergence.
    """
    id: str
    amount: Decimal
    tender_breakdowns: Tuple[TenderInfo, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount, "Tender amount"))
        object.__setattr__(self, 'tender_breakdowns', tuple(self.tender_breakdowns))

    @property
    def denomination_total(self) -> Decimal:
        return sum((d.amount for d in self.tender_breakdowns), ZERO)

    @property
    def divergence(self) -> Decimal:
        """Scalar amount minus the sum of denomination amounts."""
        return self.amount - self.denomination_total

    def get_denomination(self, name: str) -> Optional[TenderInfo]:
        for d in self.tender_breakdowns:
            if d.name == name:
                return d
        return None


@dataclass(frozen=True, slots=True)
class Till:
    """A till and every tender it has ever held."""
    id: str
    tenders: Tuple[Tender, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'tenders', tuple(self.tenders))

    def get_tender(self, tender_id: str) -> Optional[Tender]:
        for t in self.tenders:
            if t.id == tender_id:
                return t
        return None


def find_divergent_tenders(
    tills: Iterable[Till],
    tolerance: Decimal = RECONCILIATION_TOLERANCE,
) -> List[Tuple[str, str, Decimal]]:
    """
    List tenders whose scalar amount differs from their denomination total.

    Tenders without any denomination breakdown are skipped; their amount is
    simply not broken down. Divergence is a monitoring signal, not an error.

    Returns:
        (till_id, tender_id, divergence) for each divergent tender
    """
    divergent = []
    for till in tills:
        for tender in till.tenders:
            if not tender.tender_breakdowns:
                continue
            if abs(tender.divergence) > tolerance:
                divergent.append((till.id, tender.id, tender.divergence))
    return divergent

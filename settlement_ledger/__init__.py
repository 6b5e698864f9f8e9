"""
settlement_ledger - Till Settlement Ledger

Tracks how much of each tender (and its denomination breakdown) every till
holds within an organization / enterprise unit / settlement document, using a
key-value store (Redis) as the system of record.

Usage:
    from decimal import Decimal
    from settlement_ledger import (
        LedgerEngine, RedisStore, LedgerAddress, Transaction,
        TenderMovement, DenominationMovement, Direction,
    )

    engine = LedgerEngine(RedisStore.from_url("redis://localhost:6379/0"))
    address = LedgerAddress("test-org", "test-eu", "settlement-id-1")

    # Move $1.50 in cash from till-1 to till-2
    engine.process_transaction(Transaction(
        address, "till-1", "till-2", Direction.FORWARD,
        [TenderMovement("cash", Decimal("1.5"), [
            DenominationMovement("dollar bill", 1, Decimal("1")),
            DenominationMovement("quarter", 2, Decimal("0.5")),
        ])],
    ))

    for till in engine.get_ledger_state(address):
        print(till.id, [(t.id, t.amount) for t in till.tenders])
"""

# Core types
from .core import (
    LedgerAddress,
    Direction,
    DenominationMovement,
    TenderMovement,
    Transaction,
    TenderInfo,
    Tender,
    Till,
    find_divergent_tenders,
    LedgerError,
    InvalidDirectionError,
    StoreError,
    DeadlineExceeded,
    ParseError,
    KEY_DELIMITER,
    COUNT_FIELD,
    AMOUNT_FIELD,
    format_decimal,
)

# Key schema
from .keys import (
    base_key,
    tills_set_key,
    tenders_set_key,
    tender_key,
    denominations_set_key,
    denomination_key,
    transaction_sequence_key,
    transaction_key,
)

# Store adapter
from .store import (
    KVStore,
    WriteBatch,
    RedisStore,
    RedisWriteBatch,
    DEFAULT_REDIS_URL,
)

# Engine
from .ledger import LedgerEngine, encode_transaction, decode_transaction

__all__ = [
    # Core
    'LedgerAddress', 'Direction', 'DenominationMovement', 'TenderMovement',
    'Transaction', 'TenderInfo', 'Tender', 'Till', 'find_divergent_tenders',
    'LedgerError', 'InvalidDirectionError', 'StoreError', 'DeadlineExceeded',
    'ParseError', 'KEY_DELIMITER', 'COUNT_FIELD', 'AMOUNT_FIELD', 'format_decimal',
    # Keys
    'base_key', 'tills_set_key', 'tenders_set_key', 'tender_key',
    'denominations_set_key', 'denomination_key',
    'transaction_sequence_key', 'transaction_key',
    # Store
    'KVStore', 'WriteBatch', 'RedisStore', 'RedisWriteBatch', 'DEFAULT_REDIS_URL',
    # Engine
    'LedgerEngine', 'encode_transaction', 'decode_transaction',
]

__version__ = '1.0.0'

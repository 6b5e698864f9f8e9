"""
ledger.py - Settlement ledger engine

LedgerEngine implements the write path (process_transaction) and the read
path (get_ledger_state) of the settlement ledger. It owns no state: every
call goes to the KVStore, and nothing read in one call is reused in the next.

Key responsibilities:
    - Applies tender transfers between tills as per-field increments
    - Registers tills, tenders and denominations in their membership sets
    - Assembles Till -> Tender -> Denomination snapshots, sorted by id
    - Optionally commits each transfer as one batch (atomic=True)
    - Optionally appends each applied transfer to an audit log (audit=True)

Consistency:
    With atomic=False (the default) a transfer is an ordered sequence of
    individually atomic store calls. A failure or an expired deadline aborts
    the remaining calls; the calls already issued stay applied, and a
    concurrent reader can observe the destination credited before the source
    is debited. atomic=True queues the identical sequence in a WriteBatch so
    that the transfer becomes visible all at once.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal, InvalidOperation
import json
import time
from typing import Any, Callable, Dict, List, Optional, Union

from .core import (
    # Types
    LedgerAddress, Transaction, Direction,
    TenderInfo, Tender, Till,
    # Constants
    COUNT_FIELD, AMOUNT_FIELD, ZERO, RECONCILIATION_TOLERANCE,
    # Exceptions
    InvalidDirectionError, DeadlineExceeded, ParseError,
)
from .keys import (
    tills_set_key, tenders_set_key, tender_key,
    denominations_set_key, denomination_key,
    transaction_sequence_key, transaction_key,
)
from .store import KVStore, WriteBatch


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceeded("deadline exceeded before store call", "DEADLINE")


def _parse_amount(raw: Optional[str], key: str, field: Optional[str]) -> Decimal:
    try:
        value = Decimal(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise ParseError(key, field, raw) from None
    if not value.is_finite():
        raise ParseError(key, field, raw)
    return value


def _parse_count(raw: Optional[str], key: str, field: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ParseError(key, field, raw) from None


def encode_transaction(tx: Transaction) -> str:
    """Serialize a transaction for the audit log (stable key order)."""
    return json.dumps(tx.to_dict(), sort_keys=True, separators=(",", ":"))


def decode_transaction(payload: str) -> Transaction:
    return Transaction.from_dict(json.loads(payload))


class LedgerEngine:
    """
    Tender ledger over a key-value store.

    Thread Safety:
        The engine holds only configuration, so one instance can be shared.
        Concurrent transfers are safe at the field level because every
        balance change is an increment. With atomic=False a transfer is not
        isolated as a whole.

    Example:
        engine = LedgerEngine(RedisStore.from_url())
        address = LedgerAddress("test-org", "test-eu", "settlement-id-1")

        engine.process_transaction(Transaction(
            address, "till-1", "till-2", Direction.FORWARD,
            [TenderMovement("cash", Decimal("1.5"), [
                DenominationMovement("dollar bill", 1, Decimal("1")),
                DenominationMovement("quarter", 2, Decimal("0.5")),
            ])],
        ))
        tills = engine.get_ledger_state(address)
    """

    def __init__(
        self,
        store: KVStore,
        atomic: bool = False,
        audit: bool = False,
        verbose: bool = False,
    ):
        """
        Create an engine.

        Args:
            store: Key-value store holding the ledger
            atomic: Commit each transfer as a single batch (default: False,
                    which issues the unguarded call sequence)
            audit: Append every applied transfer to the audit log
            verbose: Print each applied or rejected transfer
        """
        self.store = store
        self.atomic = atomic
        self.audit = audit
        self.verbose = verbose

    # ========================================================================
    # WRITE PATH
    # ========================================================================

    def process_transaction(self, tx: Transaction, deadline: Optional[float] = None) -> None:
        """
        Apply a transfer of tenders from tx.source to tx.destination.

        For every tender, in order: the destination's denomination records
        are credited and the source's debited (amount, then count), the
        denomination names are registered for both tills, then the scalar
        tender balances are moved. Tender ids are then registered for both
        tills, and finally both tills are registered in the ledger. A
        reverse transfer applies the same sequence with every delta negated.

        Args:
            tx: The transfer to apply
            deadline: time.monotonic() instant after which no further store
                      call is issued

        Raises:
            InvalidDirectionError: Unknown direction; nothing was written
            StoreError: A store call failed; earlier calls stay applied
                        unless the engine is atomic
            DeadlineExceeded: deadline passed; same caveat as StoreError
        """
        try:
            direction = Direction.parse(tx.direction)
        except InvalidDirectionError as e:
            if self.verbose:
                self._print_tx_result(tx, f"REJECTED: {e}", "✗")
            raise

        if not self.atomic:
            self._write_transfer(self.store, tx, direction.sign, deadline)
            if self.audit:
                self._append_audit_record(self.store, tx, deadline)
        else:
            batch = self.store.batch()
            try:
                self._write_transfer(batch, tx, direction.sign, deadline)
                if self.audit:
                    self._append_audit_record(batch, tx, deadline)
                _check_deadline(deadline)
                batch.execute()
            finally:
                batch.discard()

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")

    def _write_transfer(
        self, writer: Union[KVStore, WriteBatch], tx: Transaction, sign: int, deadline: Optional[float],
    ) -> None:
        address = tx.address
        src, dst = tx.source, tx.destination

        def issue(operation: Callable[..., Any], *args) -> None:
            _check_deadline(deadline)
            operation(*args)

        tender_ids: List[str] = []
        for tender in tx.tenders:
            names: List[str] = []
            for d in tender.denominations:
                dst_key = denomination_key(address, dst, tender.tender_id, d.name)
                src_key = denomination_key(address, src, tender.tender_id, d.name)
                issue(writer.increment_record_field_decimal, dst_key, AMOUNT_FIELD, sign * d.amount)
                issue(writer.increment_record_field_integer, dst_key, COUNT_FIELD, sign * d.count)
                issue(writer.increment_record_field_decimal, src_key, AMOUNT_FIELD, sign * -d.amount)
                issue(writer.increment_record_field_integer, src_key, COUNT_FIELD, sign * -d.count)
                names.append(d.name)

            if names:
                issue(writer.add_to_set, denominations_set_key(address, src, tender.tender_id), *names)
                issue(writer.add_to_set, denominations_set_key(address, dst, tender.tender_id), *names)

            issue(writer.increment_scalar_decimal, tender_key(address, dst, tender.tender_id), sign * tender.amount)
            issue(writer.increment_scalar_decimal, tender_key(address, src, tender.tender_id), sign * -tender.amount)
            tender_ids.append(tender.tender_id)

        if tender_ids:
            issue(writer.add_to_set, tenders_set_key(address, src), *tender_ids)
            issue(writer.add_to_set, tenders_set_key(address, dst), *tender_ids)

        issue(writer.add_to_set, tills_set_key(address), src, dst)

    def _append_audit_record(
        self, writer: Union[KVStore, WriteBatch], tx: Transaction, deadline: Optional[float],
    ) -> None:
        # The sequence number is taken outside the batch; an aborted batch
        # leaves a gap that get_transaction_log skips.
        _check_deadline(deadline)
        sequence = self.store.increment_scalar_integer(transaction_sequence_key(tx.address), 1)
        _check_deadline(deadline)
        writer.set_scalar(transaction_key(tx.address, sequence), encode_transaction(tx))

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """
        Print transaction details and result.

        Uses Transaction.__repr__ and appends a result line.
        """
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w
        text = ' ' + icon + ' ' + result
        text = text[:w-3] + "..." if len(text) > w else text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{text}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    # ========================================================================
    # READ PATH
    # ========================================================================

    def get_ledger_state(self, address: LedgerAddress, deadline: Optional[float] = None) -> List[Till]:
        """
        Read every till of a ledger with its tenders and denominations.

        Tills, tenders and denominations are returned sorted by id; the
        store's set order carries no meaning.

        Args:
            address: Ledger to read
            deadline: time.monotonic() instant after which no further store
                      call is issued

        Returns:
            List of Till snapshots (empty if the ledger has no tills)

        Raises:
            ParseError: A stored count or amount is missing or not numeric.
                        No partial result is returned.
            StoreError: A store call failed
        """
        def read(operation: Callable[..., Any], *args):
            _check_deadline(deadline)
            return operation(*args)

        tills = []
        for till_id in sorted(read(self.store.read_set_members, tills_set_key(address))):
            tenders = []
            for tender_id in sorted(read(self.store.read_set_members, tenders_set_key(address, till_id))):
                breakdowns = []
                names = read(self.store.read_set_members, denominations_set_key(address, till_id, tender_id))
                for name in sorted(names):
                    key = denomination_key(address, till_id, tender_id, name)
                    record = read(self.store.read_record, key)
                    breakdowns.append(TenderInfo(
                        name=name,
                        count=_parse_count(record.get(COUNT_FIELD), key, COUNT_FIELD),
                        amount=_parse_amount(record.get(AMOUNT_FIELD), key, AMOUNT_FIELD),
                    ))

                key = tender_key(address, till_id, tender_id)
                amount = _parse_amount(read(self.store.read_scalar, key), key, None)
                tenders.append(Tender(id=tender_id, amount=amount, tender_breakdowns=tuple(breakdowns)))
            tills.append(Till(id=till_id, tenders=tuple(tenders)))
        return tills

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    def verify_conservation(
        self,
        address: LedgerAddress,
        tolerance: Decimal = RECONCILIATION_TOLERANCE,
    ) -> Dict[str, Any]:
        """
        Verify that transfers have neither created nor destroyed value.

        Every transfer credits one till exactly what it debits another, so
        for every tender the balances summed across all tills are zero, and
        so are the counts and amounts of every denomination.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every total is within tolerance of zero
            - 'totals': {tender_id: {'amount': Decimal,
                                     'denominations': {name: {'count': int, 'amount': Decimal}}}}
            - 'discrepancies': List of {'tender', 'denomination', 'field', 'total'}

        Example:
            result = engine.verify_conservation(address)
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        totals: Dict[str, Dict[str, Any]] = {}
        for till in self.get_ledger_state(address):
            for tender in till.tenders:
                entry = totals.setdefault(tender.id, {'amount': ZERO, 'denominations': {}})
                entry['amount'] += tender.amount
                for d in tender.tender_breakdowns:
                    denom = entry['denominations'].setdefault(d.name, {'count': 0, 'amount': ZERO})
                    denom['count'] += d.count
                    denom['amount'] += d.amount

        discrepancies = []
        for tender_id in sorted(totals):
            entry = totals[tender_id]
            if abs(entry['amount']) > tolerance:
                discrepancies.append({
                    'tender': tender_id, 'denomination': None,
                    'field': AMOUNT_FIELD, 'total': entry['amount'],
                })
            for name in sorted(entry['denominations']):
                denom = entry['denominations'][name]
                if denom['count'] != 0:
                    discrepancies.append({
                        'tender': tender_id, 'denomination': name,
                        'field': COUNT_FIELD, 'total': denom['count'],
                    })
                if abs(denom['amount']) > tolerance:
                    discrepancies.append({
                        'tender': tender_id, 'denomination': name,
                        'field': AMOUNT_FIELD, 'total': denom['amount'],
                    })

        return {
            'valid': len(discrepancies) == 0,
            'totals': totals,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # AUDIT LOG
    # ========================================================================

    def get_transaction_log(self, address: LedgerAddress) -> List[Transaction]:
        """
        Read the audit log of a ledger in sequence order.

        Sequence numbers whose record is missing (a batch that failed after
        the number was taken) are skipped.

        Raises:
            ParseError: The sequence counter or a record cannot be decoded
        """
        seq_key = transaction_sequence_key(address)
        raw = self.store.read_scalar(seq_key)
        if raw == "":
            return []
        last = _parse_count(raw, seq_key, None)

        log = []
        for sequence in range(1, last + 1):
            key = transaction_key(address, sequence)
            payload = self.store.read_scalar(key)
            if payload == "":
                continue
            try:
                log.append(decode_transaction(payload))
            except (ValueError, KeyError, TypeError, InvalidOperation, InvalidDirectionError):
                raise ParseError(key, None, payload) from None
        return log

    def replay(
        self,
        address: LedgerAddress,
        target: Optional[LedgerEngine] = None,
        target_address: Optional[LedgerAddress] = None,
    ) -> int:
        """
        Re-apply the audit log of a ledger to another engine or address.

        Used for reconciliation: replaying into an empty ledger must
        reproduce the balances of the source ledger.

        Args:
            address: Ledger whose log is replayed
            target: Engine to apply to (default: this engine)
            target_address: Ledger to apply to (default: address)

        Returns:
            Number of transactions replayed

        Raises:
            ValueError: If target and target_address both resolve to the
                        ledger being replayed (same store, same address)
        """
        target = target or self
        target_address = target_address or address
        if target.store is self.store and target_address == address:
            raise ValueError("Replay target must differ from the ledger being replayed")

        log = self.get_transaction_log(address)
        for tx in log:
            target.process_transaction(replace(tx, address=target_address))
        return len(log)

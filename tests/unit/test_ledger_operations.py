"""
test_ledger_operations.py - Unit tests for LedgerEngine write and read paths

Tests:
- Exact order of store mutations issued by process_transaction
- Direction validation before any mutation
- Failure and deadline behavior (partial application vs. atomic batches)
- get_ledger_state assembly, sorting and parse errors
- verbose output
"""

import itertools
import time
from decimal import Decimal

import pytest

from settlement_ledger import (
    LedgerEngine, LedgerAddress, Transaction,
    InvalidDirectionError, StoreError, DeadlineExceeded, ParseError,
    tills_set_key, tenders_set_key, tender_key,
    denominations_set_key, denomination_key,
)

from tests.fake_store import FakeStore
from tests.ledger_helpers import (
    ADDRESS, cash, tender, transfer, reference_transfer, balance,
)


def _den(till, name, tender_id="cash"):
    return denomination_key(ADDRESS, till, tender_id, name)


class TestWriteOrder:
    """process_transaction issues its mutations in a fixed order."""

    def test_reference_transfer_mutation_sequence(self, store, engine):
        engine.process_transaction(reference_transfer())

        assert store.mutations == [
            ("HINCRBYFLOAT", _den("till-2", "dollar bill")),
            ("HINCRBY", _den("till-2", "dollar bill")),
            ("HINCRBYFLOAT", _den("till-1", "dollar bill")),
            ("HINCRBY", _den("till-1", "dollar bill")),
            ("HINCRBYFLOAT", _den("till-2", "quarter")),
            ("HINCRBY", _den("till-2", "quarter")),
            ("HINCRBYFLOAT", _den("till-1", "quarter")),
            ("HINCRBY", _den("till-1", "quarter")),
            ("SADD", denominations_set_key(ADDRESS, "till-1", "cash")),
            ("SADD", denominations_set_key(ADDRESS, "till-2", "cash")),
            ("INCRBYFLOAT", tender_key(ADDRESS, "till-2", "cash")),
            ("INCRBYFLOAT", tender_key(ADDRESS, "till-1", "cash")),
            ("SADD", tenders_set_key(ADDRESS, "till-1")),
            ("SADD", tenders_set_key(ADDRESS, "till-2")),
            ("SADD", tills_set_key(ADDRESS)),
        ]

    def test_tenders_processed_in_input_order(self, store, engine):
        engine.process_transaction(transfer("till-1", "till-2", tender("check", "20"), tender("cash", "5")))
        balance_writes = [key for op, key in store.mutations if op == "INCRBYFLOAT"]
        assert balance_writes == [
            tender_key(ADDRESS, "till-2", "check"),
            tender_key(ADDRESS, "till-1", "check"),
            tender_key(ADDRESS, "till-2", "cash"),
            tender_key(ADDRESS, "till-1", "cash"),
        ]

    def test_tender_without_denominations_skips_denomination_sets(self, store, engine):
        engine.process_transaction(transfer("till-1", "till-2", tender("check", "20")))
        assert not any(key.endswith(":denominations") for _, key in store.mutations)
        assert store.sets[tenders_set_key(ADDRESS, "till-1")] == {"check"}

    def test_empty_tender_list_registers_tills_only(self, store, engine):
        engine.process_transaction(Transaction(ADDRESS, "till-1", "till-2", ">"))
        assert store.mutations == [("SADD", tills_set_key(ADDRESS))]
        assert store.sets[tills_set_key(ADDRESS)] == {"till-1", "till-2"}

    def test_string_direction_symbols(self, store, engine):
        engine.process_transaction(reference_transfer(direction=">"))
        engine.process_transaction(reference_transfer(direction="<"))
        tills = engine.get_ledger_state(ADDRESS)
        assert balance(tills, "till-1") == Decimal("0")
        assert balance(tills, "till-2") == Decimal("0")

    def test_both_tills_record_every_denomination(self, store, engine):
        engine.process_transaction(reference_transfer())
        for till in ("till-1", "till-2"):
            assert store.sets[denominations_set_key(ADDRESS, till, "cash")] == {"dollar bill", "quarter"}


class TestDirectionValidation:
    """Invalid directions are rejected before any store call."""

    @pytest.mark.parametrize("direction", ["x", "", "forward", None])
    def test_invalid_direction_writes_nothing(self, store, engine, direction):
        with pytest.raises(InvalidDirectionError):
            engine.process_transaction(reference_transfer(direction=direction))
        assert store.mutations == []
        assert store.reads == []

    def test_invalid_direction_in_atomic_mode(self, store, atomic_engine):
        with pytest.raises(InvalidDirectionError):
            atomic_engine.process_transaction(reference_transfer(direction="x"))
        assert store.mutations == []


class TestFailures:
    """Store failures abort the transfer; nothing is retried or undone."""

    def test_failure_leaves_partial_state(self):
        store = FakeStore(fail_at=3)
        engine = LedgerEngine(store)
        with pytest.raises(StoreError) as exc_info:
            engine.process_transaction(reference_transfer())

        assert exc_info.value.key == _den("till-1", "dollar bill")
        # Destination's dollar bill record was written, nothing after it
        assert store.hashes == {_den("till-2", "dollar bill"): {"amount": "1", "count": "1"}}
        assert store.sets == {}

    def test_failure_on_last_step_keeps_balances(self):
        store = FakeStore(fail_at=15)
        engine = LedgerEngine(store)
        with pytest.raises(StoreError):
            engine.process_transaction(reference_transfer())
        assert store.strings[tender_key(ADDRESS, "till-2", "cash")] == "1.5"
        assert tills_set_key(ADDRESS) not in store.sets

    def test_atomic_failure_leaves_nothing(self):
        store = FakeStore(fail_at=1)
        engine = LedgerEngine(store, atomic=True)
        with pytest.raises(StoreError) as exc_info:
            engine.process_transaction(reference_transfer())
        assert exc_info.value.operation == "EXEC"
        assert store.snapshot() == ({}, {}, {})

    def test_atomic_success_matches_compat_result(self):
        compat, atomic = FakeStore(), FakeStore()
        LedgerEngine(compat).process_transaction(reference_transfer())
        LedgerEngine(atomic, atomic=True).process_transaction(reference_transfer())
        assert compat.snapshot() == atomic.snapshot()
        assert compat.mutations == atomic.mutations


class TestDeadline:
    """An expired deadline stops further store calls."""

    def test_expired_deadline_before_start(self, store, engine):
        with pytest.raises(DeadlineExceeded):
            engine.process_transaction(reference_transfer(), deadline=time.monotonic() - 1)
        assert store.mutations == []

    def test_deadline_is_a_store_error(self):
        assert issubclass(DeadlineExceeded, StoreError)

    def test_deadline_expiring_mid_transfer(self, store, engine, monkeypatch):
        clock = itertools.count()
        monkeypatch.setattr(time, "monotonic", lambda: next(clock))
        # Calls 0..4 are before the deadline; the sixth check fails
        with pytest.raises(DeadlineExceeded):
            engine.process_transaction(reference_transfer(), deadline=5)
        assert len(store.mutations) == 5

    def test_atomic_deadline_mid_queue_discards_batch(self, store, monkeypatch):
        clock = itertools.count()
        monkeypatch.setattr(time, "monotonic", lambda: next(clock))
        engine = LedgerEngine(store, atomic=True)
        with pytest.raises(DeadlineExceeded):
            engine.process_transaction(reference_transfer(), deadline=5)
        assert store.snapshot() == ({}, {}, {})
        assert store.mutations == []
        assert store.batches[0].discarded == 5

    def test_generous_deadline(self, store, engine):
        engine.process_transaction(reference_transfer(), deadline=time.monotonic() + 60)
        assert len(store.mutations) == 15

    def test_read_deadline(self, store, engine):
        engine.process_transaction(reference_transfer())
        with pytest.raises(DeadlineExceeded):
            engine.get_ledger_state(ADDRESS, deadline=time.monotonic() - 1)


class TestReadPath:
    """get_ledger_state assembles sorted snapshots."""

    def test_empty_ledger(self, engine):
        assert engine.get_ledger_state(ADDRESS) == []

    def test_sorted_output(self, engine):
        engine.process_transaction(transfer("till-b", "till-a", tender("check", "1"), cash()))
        engine.process_transaction(transfer("till-c", "till-a", cash("0.25", [("quarter", 1, "0.25")])))
        tills = engine.get_ledger_state(ADDRESS)
        assert [t.id for t in tills] == ["till-a", "till-b", "till-c"]
        assert [t.id for t in tills[0].tenders] == ["cash", "check"]
        assert [d.name for d in tills[0].tenders[0].tender_breakdowns] == ["dollar bill", "quarter"]

    def test_parsed_types(self, engine):
        engine.process_transaction(reference_transfer())
        tills = engine.get_ledger_state(ADDRESS)
        quarter = tills[1].get_tender("cash").get_denomination("quarter")
        assert quarter.count == 2 and isinstance(quarter.count, int)
        assert quarter.amount == Decimal("0.5") and isinstance(quarter.amount, Decimal)

    def test_read_only(self, store, engine):
        engine.process_transaction(reference_transfer())
        before = store.snapshot()
        mutations = len(store.mutations)
        engine.get_ledger_state(ADDRESS)
        assert store.snapshot() == before
        assert len(store.mutations) == mutations

    def test_corrupt_count_raises(self, store, engine):
        engine.process_transaction(reference_transfer())
        store.hashes[_den("till-2", "quarter")]["count"] = "two"
        with pytest.raises(ParseError) as exc_info:
            engine.get_ledger_state(ADDRESS)
        assert exc_info.value.key == _den("till-2", "quarter")
        assert exc_info.value.field == "count"
        assert exc_info.value.value == "two"

    def test_corrupt_amount_raises(self, store, engine):
        engine.process_transaction(reference_transfer())
        store.hashes[_den("till-1", "dollar bill")]["amount"] = "1,00"
        with pytest.raises(ParseError, match="amount"):
            engine.get_ledger_state(ADDRESS)

    def test_corrupt_tender_balance_raises(self, store, engine):
        engine.process_transaction(reference_transfer())
        store.strings[tender_key(ADDRESS, "till-1", "cash")] = "NaN"
        with pytest.raises(ParseError) as exc_info:
            engine.get_ledger_state(ADDRESS)
        assert exc_info.value.field is None

    def test_missing_field_raises(self, store, engine):
        engine.process_transaction(reference_transfer())
        del store.hashes[_den("till-1", "quarter")]["count"]
        with pytest.raises(ParseError):
            engine.get_ledger_state(ADDRESS)

    def test_other_addresses_not_visible(self, engine):
        other = LedgerAddress("test-org", "test-eu", "settlement-id-2")
        engine.process_transaction(reference_transfer())
        assert engine.get_ledger_state(other) == []


class TestVerbose:
    """verbose=True prints each transfer with its outcome."""

    def test_applied_printed(self, store, capsys):
        LedgerEngine(store, verbose=True).process_transaction(reference_transfer())
        out = capsys.readouterr().out
        assert "till-1 > till-2" in out
        assert "APPLIED" in out

    def test_rejected_printed(self, store, capsys):
        with pytest.raises(InvalidDirectionError):
            LedgerEngine(store, verbose=True).process_transaction(reference_transfer(direction="x"))
        assert "REJECTED" in capsys.readouterr().out

    def test_quiet_by_default(self, engine, capsys):
        engine.process_transaction(reference_transfer())
        assert capsys.readouterr().out == ""

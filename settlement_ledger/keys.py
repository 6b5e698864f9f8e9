"""
keys.py - Storage key schema

Maps a logical ledger address to the key-value store namespace:

    org:<org>:eu:<eu>:settlement-id:<sid>:tills                                  set of till ids
    org:<org>:eu:<eu>:settlement-id:<sid>:till:<t>:tenders                       set of tender ids
    org:<org>:eu:<eu>:settlement-id:<sid>:till:<t>:tender:<d>                    scalar balance
    org:<org>:eu:<eu>:settlement-id:<sid>:till:<t>:tender:<d>:denominations      set of names
    org:<org>:eu:<eu>:settlement-id:<sid>:till:<t>:tender:<d>:denomination:<n>   hash {count, amount}
    org:<org>:eu:<eu>:settlement-id:<sid>:transactions:seq                       audit sequence
    org:<org>:eu:<eu>:settlement-id:<sid>:transaction:<seq>                      audit record

The layout is shared with existing stored data and must not change.
All functions are pure string formatting.
"""

from __future__ import annotations

from .core import LedgerAddress


def base_key(address: LedgerAddress) -> str:
    return (
        f"org:{address.organization}"
        f":eu:{address.enterprise_unit}"
        f":settlement-id:{address.settlement_doc_id}"
    )


def tills_set_key(address: LedgerAddress) -> str:
    return f"{base_key(address)}:tills"


def tenders_set_key(address: LedgerAddress, till: str) -> str:
    return f"{base_key(address)}:till:{till}:tenders"


def tender_key(address: LedgerAddress, till: str, tender: str) -> str:
    return f"{base_key(address)}:till:{till}:tender:{tender}"


def denominations_set_key(address: LedgerAddress, till: str, tender: str) -> str:
    return f"{tender_key(address, till, tender)}:denominations"


def denomination_key(address: LedgerAddress, till: str, tender: str, denomination: str) -> str:
    return f"{tender_key(address, till, tender)}:denomination:{denomination}"


def transaction_sequence_key(address: LedgerAddress) -> str:
    return f"{base_key(address)}:transactions:seq"


def transaction_key(address: LedgerAddress, sequence: int) -> str:
    return f"{base_key(address)}:transaction:{sequence}"

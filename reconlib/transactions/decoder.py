from typing import Dict, NamedTuple

from reconlib.core.models import Transaction
from reconlib.exceptions import UnrecognizedTypeError


class TxState(NamedTuple):
    is_outgoing: bool
    is_confirmed: bool
    in_tx_pool: bool
    is_relayed: bool
    is_failed: bool
    is_coinbase: bool


# wallet RPC "type" tag -> direction and state flags
TX_TYPES: Dict[str, TxState] = {
    "in": TxState(False, True, False, True, False, False),
    "out": TxState(True, True, False, True, False, False),
    "pool": TxState(False, False, True, True, False, False),
    "pending": TxState(True, False, True, True, False, False),
    "block": TxState(False, True, False, True, False, True),
    "failed": TxState(True, False, False, True, True, False),
}


def decode_tx_type(tx_type: str) -> TxState:
    """Look up the direction and state flags of a type tag"""
    try:
        return TX_TYPES[tx_type]
    except (KeyError, TypeError):
        raise UnrecognizedTypeError(tx_type) from None


def apply_tx_type(tx_type: str, tx: Transaction) -> bool:
    """
    Decode a type tag into the state fields of ``tx``.

    Returns True if the tag denotes an outgoing transaction, False if incoming.
    A tagged transaction is always known to the network, so do_not_relay is False.
    """
    state = decode_tx_type(tx_type)
    tx.is_confirmed = state.is_confirmed
    tx.in_tx_pool = state.in_tx_pool
    tx.is_relayed = state.is_relayed
    tx.do_not_relay = False
    tx.is_failed = state.is_failed
    tx.is_coinbase = state.is_coinbase
    return state.is_outgoing

# reconlib/transactions/filters.py
"""
Query filters

A field left as None matches anything. A transaction filter may hold a
transfer filter (a transaction matches if any of its transfers does), and a
transfer or output filter may hold a transaction filter checked against the
owning transaction. Descent stops after one level: a transaction filter
reached through a transfer filter never evaluates its own transfer filter.
"""

from dataclasses import dataclass, replace
from typing import Callable, Collection, Iterable, List, Optional

from reconlib.core.models import IncomingTransfer, OutgoingTransfer, Output, Transaction

TxLookup = Callable[[object], Optional[Transaction]]


def _flag_matches(expected: Optional[bool], actual) -> bool:
    return expected is None or expected == actual


@dataclass
class TxFilter:
    """Filters transactions"""
    tx_id: Optional[str] = None
    tx_ids: Optional[Collection[str]] = None
    payment_id: Optional[str] = None
    payment_ids: Optional[Collection[str]] = None
    has_payment_id: Optional[bool] = None
    is_confirmed: Optional[bool] = None
    in_tx_pool: Optional[bool] = None
    do_not_relay: Optional[bool] = None
    is_relayed: Optional[bool] = None
    is_failed: Optional[bool] = None
    is_coinbase: Optional[bool] = None
    is_incoming: Optional[bool] = None
    is_outgoing: Optional[bool] = None
    height: Optional[int] = None
    min_height: Optional[int] = None
    max_height: Optional[int] = None
    include_outputs: Optional[bool] = None
    transfer_filter: Optional["TransferFilter"] = None

    def without_transfer_filter(self) -> "TxFilter":
        return replace(self, transfer_filter=None)

    def meets_criteria(self, tx: Optional[Transaction], check_transfers: bool = True) -> bool:
        if tx is None:
            return False

        # filter on tx
        if self.tx_id is not None and self.tx_id != tx.id:
            return False
        if self.payment_id is not None and self.payment_id != tx.payment_id:
            return False
        if not _flag_matches(self.is_confirmed, tx.is_confirmed):
            return False
        if not _flag_matches(self.in_tx_pool, tx.in_tx_pool):
            return False
        if not _flag_matches(self.do_not_relay, tx.do_not_relay):
            return False
        if not _flag_matches(self.is_relayed, tx.is_relayed):
            return False
        if not _flag_matches(self.is_failed, tx.is_failed):
            return False
        if not _flag_matches(self.is_coinbase, tx.is_coinbase):
            return False

        # at least one transfer must meet the transfer filter if defined
        if check_transfers and self.transfer_filter is not None:
            if not any(self.transfer_filter.meets_criteria(transfer, tx) for transfer in tx.get_transfers()):
                return False

        if self.has_payment_id is not None and self.has_payment_id != (tx.payment_id is not None):
            return False
        if not _flag_matches(self.is_incoming, tx.is_incoming):
            return False
        if not _flag_matches(self.is_outgoing, tx.is_outgoing):
            return False

        height = tx.height
        if self.tx_ids is not None and tx.id not in self.tx_ids:
            return False
        if self.payment_ids is not None and tx.payment_id not in self.payment_ids:
            return False
        if self.height is not None and height != self.height:
            return False
        if self.min_height is not None and (height is None or height < self.min_height):
            return False
        if self.max_height is not None and (height is None or height > self.max_height):
            return False
        return True

    def apply(self, txs: Iterable[Transaction]) -> List[Transaction]:
        return [tx for tx in txs if self.meets_criteria(tx)]


@dataclass
class TransferFilter:
    """Filters incoming and outgoing transfers"""
    is_incoming: Optional[bool] = None
    is_outgoing: Optional[bool] = None
    address: Optional[str] = None
    addresses: Optional[Collection[str]] = None
    account_index: Optional[int] = None
    subaddress_index: Optional[int] = None
    subaddress_indices: Optional[Collection[int]] = None
    amount: Optional[int] = None
    has_destinations: Optional[bool] = None
    tx_filter: Optional[TxFilter] = None

    def meets_criteria(self, transfer, tx: Optional[Transaction] = None) -> bool:
        """
        Parameters:
            transfer: IncomingTransfer or OutgoingTransfer
            tx: the transaction owning the transfer, required when tx_filter is set
        """
        if transfer is None:
            return False
        if not _flag_matches(self.is_incoming, transfer.is_incoming):
            return False
        if not _flag_matches(self.is_outgoing, transfer.is_outgoing):
            return False
        if self.amount is not None and self.amount != transfer.amount:
            return False
        if self.account_index is not None and self.account_index != transfer.account_index:
            return False

        if isinstance(transfer, IncomingTransfer):
            if self.has_destinations:
                return False
            if self.address is not None and self.address != transfer.address:
                return False
            if self.addresses is not None and transfer.address not in self.addresses:
                return False
            if self.subaddress_index is not None and self.subaddress_index != transfer.subaddress_index:
                return False
            if self.subaddress_indices is not None and transfer.subaddress_index not in self.subaddress_indices:
                return False
        elif isinstance(transfer, OutgoingTransfer):
            addresses = transfer.addresses or []
            if self.address is not None and self.address not in addresses:
                return False
            if self.addresses is not None and not set(self.addresses) & set(addresses):
                return False
            indices = transfer.subaddress_indices or []
            if self.subaddress_index is not None and self.subaddress_index not in indices:
                return False
            if self.subaddress_indices is not None and not set(self.subaddress_indices) & set(indices):
                return False
            if self.has_destinations is not None and self.has_destinations != (transfer.destinations is not None):
                return False

        # owning tx is checked on its own fields only
        if self.tx_filter is not None and not self.tx_filter.meets_criteria(tx, check_transfers=False):
            return False
        return True

    def apply(self, transfers: Iterable, lookup: Optional[TxLookup] = None) -> List:
        return [t for t in transfers if self.meets_criteria(t, lookup(t) if lookup else None)]


@dataclass
class OutputFilter:
    """Filters wallet outputs"""
    account_index: Optional[int] = None
    subaddress_index: Optional[int] = None
    subaddress_indices: Optional[Collection[int]] = None
    amount: Optional[int] = None
    key_image: Optional[str] = None
    index: Optional[int] = None
    is_spent: Optional[bool] = None
    is_unlocked: Optional[bool] = None
    is_frozen: Optional[bool] = None
    tx_filter: Optional[TxFilter] = None

    def meets_criteria(self, output: Optional[Output], tx: Optional[Transaction] = None) -> bool:
        if output is None:
            return False
        if self.account_index is not None and self.account_index != output.account_index:
            return False
        if self.subaddress_index is not None and self.subaddress_index != output.subaddress_index:
            return False
        if self.subaddress_indices is not None and output.subaddress_index not in self.subaddress_indices:
            return False
        if self.amount is not None and self.amount != output.amount:
            return False
        if self.key_image is not None and self.key_image != output.key_image:
            return False
        if self.index is not None and self.index != output.index:
            return False
        if not _flag_matches(self.is_spent, output.is_spent):
            return False
        if not _flag_matches(self.is_unlocked, output.is_unlocked):
            return False
        if not _flag_matches(self.is_frozen, output.is_frozen):
            return False
        if self.tx_filter is not None and not self.tx_filter.meets_criteria(tx, check_transfers=False):
            return False
        return True

    def apply(self, outputs: Iterable[Output], lookup: Optional[TxLookup] = None) -> List[Output]:
        return [o for o in outputs if self.meets_criteria(o, lookup(o) if lookup else None)]

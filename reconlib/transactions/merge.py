# reconlib/transactions/merge.py
"""
Merge engine

Reconciles partial Transaction records reported by different RPC calls into
one ordered collection with a single record per transaction id and a single
block header per height.
"""

from typing import Dict, Iterator, List, Optional

from reconlib.core.models import (
    BlockHeader,
    Destination,
    IncomingTransfer,
    OutgoingTransfer,
    Output,
    Transaction,
)
from reconlib.exceptions import InconsistencyError
from reconlib.utils.console import print_debug, print_warn

# Transaction fields compared value by value when two records are merged
TX_SCALAR_FIELDS = (
    "fee",
    "size",
    "unlock_time",
    "payment_id",
    "key",
    "full_hex",
    "metadata",
    "note",
    "mixin",
    "ring_size",
    "is_confirmed",
    "in_tx_pool",
    "is_relayed",
    "do_not_relay",
    "is_failed",
    "is_coinbase",
    "is_double_spend",
    "num_confirmations",
    "num_suggested_confirmations",
    "last_relayed_timestamp",
)


def reconcile(current, incoming, field_name: str, tx_id: Optional[str] = None):
    """Return the value set on either side; both sides must agree if both are set"""
    if current is None:
        return incoming
    if incoming is None or current == incoming:
        return current
    raise InconsistencyError(
        f"Conflicting values for {field_name} of tx {tx_id}: {current!r} != {incoming!r}",
        tx_id=tx_id,
        field=field_name,
    )


def link_tx(tx: Transaction) -> None:
    """Point every child record of ``tx`` back at its id"""
    if tx.outgoing_transfer is not None:
        tx.outgoing_transfer.tx_id = tx.id
    for transfer in tx.incoming_transfers or []:
        transfer.tx_id = tx.id
    for output in tx.outputs or []:
        output.tx_id = tx.id
    if tx.block is not None:
        tx.block.add_tx_id(tx.id)


# =========================================================================
# Entity merges
# =========================================================================

def merge_block_headers(target: BlockHeader, source: BlockHeader) -> BlockHeader:
    """Merge ``source`` into ``target``, uniting the transactions they confirm"""
    if target is source:
        return target
    tx_id = source.tx_ids[0] if source.tx_ids else None
    target.height = reconcile(target.height, source.height, "block height", tx_id)
    target.timestamp = reconcile(target.timestamp, source.timestamp, "block timestamp", tx_id)
    for source_id in source.tx_ids:
        target.add_tx_id(source_id)
    return target


def merge_destinations(target: List[Destination], source: List[Destination],
                       tx_id: Optional[str]) -> List[Destination]:
    if len(target) != len(source):
        raise InconsistencyError(
            f"Conflicting destination counts for tx {tx_id}: {len(target)} != {len(source)}",
            tx_id=tx_id,
            field="destinations",
        )
    for mergee, merger in zip(target, source):
        mergee.address = reconcile(mergee.address, merger.address, "destination address", tx_id)
        mergee.amount = reconcile(mergee.amount, merger.amount, "destination amount", tx_id)
    return target


def merge_outgoing_transfers(target: OutgoingTransfer, source: OutgoingTransfer,
                             tx_id: Optional[str]) -> OutgoingTransfer:
    if target is source:
        return target
    target.account_index = reconcile(target.account_index, source.account_index, "account index", tx_id)
    target.subaddress_indices = reconcile(
        target.subaddress_indices, source.subaddress_indices, "subaddress indices", tx_id)
    target.amount = reconcile(target.amount, source.amount, "outgoing amount", tx_id)
    if target.destinations is None:
        target.destinations = source.destinations
    elif source.destinations is not None:
        merge_destinations(target.destinations, source.destinations, tx_id)
    return target


def _same_subaddress(a: IncomingTransfer, b: IncomingTransfer) -> bool:
    if None in (a.account_index, a.subaddress_index, b.account_index, b.subaddress_index):
        return False
    return (a.account_index, a.subaddress_index) == (b.account_index, b.subaddress_index)


def merge_incoming_transfers(target: List[IncomingTransfer], source: List[IncomingTransfer],
                             tx_id: Optional[str]) -> List[IncomingTransfer]:
    """Union incoming transfers, merging those received at the same subaddress.

    Transfers without a known account and subaddress are never merged.
    """
    for merger in source:
        for mergee in target:
            if mergee is merger:
                break
            if _same_subaddress(mergee, merger):
                mergee.amount = reconcile(mergee.amount, merger.amount, "incoming amount", tx_id)
                mergee.address = reconcile(mergee.address, merger.address, "incoming address", tx_id)
                break
        else:
            target.append(merger)
    return target


def _same_output(a: Output, b: Output) -> bool:
    if a.key_image is not None and b.key_image is not None:
        return a.key_image == b.key_image
    return a.index is not None and a.index == b.index


def merge_outputs(target: List[Output], source: List[Output], tx_id: Optional[str]) -> List[Output]:
    """Union outputs, merging those with the same key image (or global index)"""
    for merger in source:
        for mergee in target:
            if mergee is merger:
                break
            if _same_output(mergee, merger):
                for name in ("amount", "key_image", "is_spent", "is_unlocked", "is_frozen",
                             "index", "account_index", "subaddress_index"):
                    setattr(mergee, name, reconcile(getattr(mergee, name), getattr(merger, name),
                                                    f"output {name}", tx_id))
                break
        else:
            target.append(merger)
    return target


def merge_tx_fields(target: Transaction, source: Transaction) -> Transaction:
    """Merge every field except the block header of ``source`` into ``target``"""
    tx_id = target.id
    if source.id != tx_id:
        raise InconsistencyError(f"Cannot merge tx {source.id} into tx {tx_id}", tx_id=tx_id, field="id")
    for name in TX_SCALAR_FIELDS:
        setattr(target, name, reconcile(getattr(target, name), getattr(source, name), name, tx_id))

    if source.outgoing_transfer is not None:
        if target.outgoing_transfer is None:
            target.outgoing_transfer = source.outgoing_transfer
        else:
            merge_outgoing_transfers(target.outgoing_transfer, source.outgoing_transfer, tx_id)

    if source.incoming_transfers is not None:
        if target.incoming_transfers is None:
            target.incoming_transfers = []
        merge_incoming_transfers(target.incoming_transfers, source.incoming_transfers, tx_id)

    if source.outputs is not None:
        if target.outputs is None:
            target.outputs = []
        merge_outputs(target.outputs, source.outputs, tx_id)

    link_tx(target)
    return target


# =========================================================================
# Collection
# =========================================================================

class TransactionCollection:
    """
    Ordered, id-unique set of transactions built during a single query.

    Transactions keep their first-seen order. Block headers are shared: all
    transactions confirmed at one height refer to the same header instance.
    """

    def __init__(self, txs: Optional[List[Transaction]] = None):
        self._txs: Dict[str, Transaction] = {}
        self._blocks: Dict[int, BlockHeader] = {}
        for tx in txs or []:
            self.merge(tx)

    def __len__(self) -> int:
        return len(self._txs)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._txs.values()))

    def __contains__(self, tx_id) -> bool:
        return tx_id in self._txs

    def get(self, tx_id: Optional[str]) -> Optional[Transaction]:
        return self._txs.get(tx_id)

    def get_block(self, height: int) -> Optional[BlockHeader]:
        return self._blocks.get(height)

    def ids(self) -> List[str]:
        return list(self._txs.keys())

    def owner_of(self, entity) -> Optional[Transaction]:
        """Look up the transaction a transfer or output belongs to"""
        return self._txs.get(entity.tx_id)

    def _share_block(self, tx: Transaction) -> None:
        if tx.block is None or tx.block.height is None:
            return
        shared = self._blocks.get(tx.block.height)
        if shared is None:
            self._blocks[tx.block.height] = tx.block
        elif shared is not tx.block:
            merge_block_headers(shared, tx.block)
            tx.block = shared

    def merge(self, tx: Transaction, skip_if_absent: bool = False) -> Optional[Transaction]:
        """
        Merge a transaction into the collection.

        Parameters:
            tx: candidate transaction, which must have an id
            skip_if_absent: drop the candidate instead of adding it when no
                transaction with its id exists yet. The server omits
                incoming transfers between subaddresses of one account from
                get_transfers, so outputs reported for them must not create
                phantom transactions.

        Returns the transaction held by the collection, or None if dropped.
        """
        if tx.id is None:
            raise InconsistencyError("Cannot merge a transaction without an id")

        existing = self._txs.get(tx.id)
        if existing is not None:
            if existing.block is not None or tx.block is not None:
                if existing.block is None:
                    existing.block = BlockHeader(height=tx.height, tx_ids=[existing.id])
                if tx.block is None:
                    tx.block = BlockHeader(height=existing.height, tx_ids=[tx.id])
                merge_block_headers(existing.block, tx.block)
            merge_tx_fields(existing, tx)
            self._share_block(existing)
            return existing

        if skip_if_absent:
            print_warn(f"WARNING: tx does not already exist, skipping: {tx.id}")
            return None

        # cross-link with transactions confirmed in the same block
        self._share_block(tx)
        self._txs[tx.id] = tx
        print_debug(f"DEBUG: added tx {tx.id} ({len(self._txs)} unique)")
        return tx

    def merge_all(self, txs, skip_if_absent: bool = False) -> "TransactionCollection":
        for tx in txs:
            self.merge(tx, skip_if_absent=skip_if_absent)
        return self

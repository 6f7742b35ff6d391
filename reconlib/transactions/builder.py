# reconlib/transactions/builder.py
"""
Record builder

Converts the raw field maps returned by the wallet RPC server into canonical
Transaction records. Each RPC call reports a different subset of a
transaction, so the records built here are partial and are reconciled
afterwards by the merge engine.
"""

from typing import Dict, List, Optional

from reconlib.core.models import (
    DEFAULT_PAYMENT_ID,
    BlockHeader,
    Destination,
    IncomingTransfer,
    OutgoingTransfer,
    Output,
    SendRequest,
    Transaction,
    now_ms,
)
from reconlib.exceptions import AmbiguousDirectionError, InconsistencyError, MalformedRecordError
from reconlib.transactions.decoder import apply_tx_type
from reconlib.transactions.merge import link_tx, merge_block_headers, merge_incoming_transfers, merge_outgoing_transfers
from reconlib.utils.console import print_warn

# raw field -> Transaction attribute
_TX_SCALAR_FIELDS = {
    "txid": "id",
    "tx_hash": "id",
    "fee": "fee",
    "tx_key": "key",
    "tx_size": "size",
    "unlock_time": "unlock_time",
    "tx_blob": "full_hex",
    "tx_metadata": "metadata",
    "double_spend_seen": "is_double_spend",
}

_ABSENT_PAYMENT_IDS = {DEFAULT_PAYMENT_ID, "0" * 64}

# handled elsewhere or intentionally not modelled
_IGNORED_FIELDS = {"type", "multisig_txset", "unsigned_txset"}

# numeric fields coerced to int
_INT_FIELDS = {"fee", "tx_size", "unlock_time"}


def _warn_unexpected(key: str, val, context: str = "transaction") -> None:
    print_warn(f"WARNING: ignoring unexpected {context} field: {key}: {val}")


def _new_transfer(is_outgoing: bool):
    return OutgoingTransfer() if is_outgoing else IncomingTransfer()


def _convert_destinations(rpc_destinations: List[Dict]) -> List[Destination]:
    destinations = []
    for rpc_destination in rpc_destinations:
        destination = Destination()
        for key, val in rpc_destination.items():
            if key == "address":
                destination.address = val
            elif key == "amount":
                destination.amount = int(val)
            else:
                raise MalformedRecordError(f"Unrecognized transaction destination field: {key}", field=key)
        destinations.append(destination)
    return destinations


def _apply_subaddress_indices(transfer, rpc_indices: List[Dict], is_outgoing: bool) -> None:
    if not rpc_indices:
        return
    transfer.account_index = int(rpc_indices[0]["major"])
    if is_outgoing:
        minors = {int(rpc_index["minor"]) for rpc_index in rpc_indices}
        transfer.subaddress_indices = sorted(minors)
    else:
        if len(rpc_indices) != 1:
            raise MalformedRecordError(
                f"Incoming transfer must have exactly one subaddress index, got {len(rpc_indices)}",
                field="subaddr_indices",
            )
        transfer.subaddress_index = int(rpc_indices[0]["minor"])


def build_tx_with_transfer(record: Dict, tx: Optional[Transaction] = None,
                           is_outgoing: Optional[bool] = None) -> Transaction:
    """
    Build or continue populating a transaction from a transfer record.

    Parameters:
        record: raw field map from get_transfers, transfer, sweep_single, ...
        tx: existing transaction to continue populating (optional)
        is_outgoing: direction to use when the record carries no "type" tag
    """
    if tx is None:
        tx = Transaction()

    if "type" in record:
        is_outgoing = apply_tx_type(record["type"], tx)
    elif is_outgoing is None:
        raise AmbiguousDirectionError("Must indicate if tx is outgoing (True) or incoming (False) since type is unknown")

    header: Optional[BlockHeader] = None
    transfer = None
    for key, val in record.items():
        if key in _TX_SCALAR_FIELDS:
            setattr(tx, _TX_SCALAR_FIELDS[key], int(val) if key in _INT_FIELDS and val is not None else val)
        elif key in _IGNORED_FIELDS:
            continue
        elif key == "subaddr_index":
            # subaddr_indices takes precedence when both are present
            if "subaddr_indices" not in record:
                if transfer is None:
                    transfer = _new_transfer(is_outgoing)
                _apply_subaddress_indices(transfer, [val], is_outgoing)
        elif key == "note":
            if val != "":
                tx.note = val
        elif key in ("block_height", "height"):
            if tx.is_confirmed:
                if header is None:
                    header = BlockHeader()
                header.height = int(val)
        elif key == "timestamp":
            # timestamp of an unconfirmed tx is only the time of the request
            if tx.is_confirmed:
                if header is None:
                    header = BlockHeader()
                header.timestamp = int(val)
        elif key == "confirmations":
            tx.num_confirmations = int(val) if tx.is_confirmed else 0
        elif key == "suggested_confirmations_threshold":
            tx.num_suggested_confirmations = int(val) if tx.in_tx_pool else None
        elif key == "amount":
            if transfer is None:
                transfer = _new_transfer(is_outgoing)
            transfer.amount = int(val)
        elif key == "address":
            if not is_outgoing:
                if transfer is None:
                    transfer = IncomingTransfer()
                transfer.address = val
        elif key == "payment_id":
            if val not in _ABSENT_PAYMENT_IDS:
                tx.payment_id = val
        elif key == "subaddr_indices":
            if transfer is None:
                transfer = _new_transfer(is_outgoing)
            _apply_subaddress_indices(transfer, val, is_outgoing)
        elif key == "destinations":
            if not is_outgoing:
                raise MalformedRecordError("Destinations are only valid for outgoing transfers", field=key)
            if transfer is None:
                transfer = OutgoingTransfer()
            transfer.destinations = _convert_destinations(val)
        else:
            _warn_unexpected(key, val)

    if header is not None:
        header.add_tx_id(tx.id)
        if tx.block is None:
            tx.block = header
        else:
            merge_block_headers(tx.block, header)

    if transfer is not None:
        transfer.tx_id = tx.id
        if is_outgoing:
            if tx.outgoing_transfer is not None:
                merge_outgoing_transfers(tx.outgoing_transfer, transfer, tx.id)
            else:
                tx.outgoing_transfer = transfer
        else:
            if tx.incoming_transfers is None:
                tx.incoming_transfers = []
            merge_incoming_transfers(tx.incoming_transfers, [transfer], tx.id)

    link_tx(tx)
    return tx


def repair_outgoing_amount(tx: Transaction) -> None:
    """Replace a zero outgoing amount with the sum of its destinations.

    The server reports self-transfers within one account with amount 0.
    """
    transfer = tx.outgoing_transfer
    if transfer is None or not tx.is_relayed or tx.is_failed:
        return
    if transfer.destinations is None or transfer.amount != 0:
        return
    transfer.amount = sum(dest.amount or 0 for dest in transfer.destinations)


def build_tx_with_output(record: Dict) -> Transaction:
    """Build a transaction owning a single output from an incoming_transfers record"""
    tx = Transaction(is_confirmed=True, in_tx_pool=False, is_relayed=True, do_not_relay=False, is_failed=False)
    output = Output()
    for key, val in record.items():
        if key == "amount":
            output.amount = int(val)
        elif key == "spent":
            output.is_spent = val
        elif key == "key_image":
            output.key_image = val or None
        elif key == "global_index":
            output.index = int(val)
        elif key == "tx_hash":
            tx.id = val
        elif key == "unlocked":
            output.is_unlocked = val
        elif key == "frozen":
            output.is_frozen = val
        elif key == "subaddr_index":
            output.account_index = int(val["major"])
            output.subaddress_index = int(val["minor"])
        elif key == "block_height":
            tx.block = BlockHeader(height=int(val))
        else:
            _warn_unexpected(key, val, "output")
    tx.outputs = [output]
    link_tx(tx)
    return tx


def init_sent_tx(request: SendRequest, tx: Optional[Transaction] = None) -> Transaction:
    """Initialize the fields of a sent transaction that are known from the request"""
    if tx is None:
        tx = Transaction()
    do_not_relay = bool(request.do_not_relay)
    tx.is_confirmed = False
    tx.num_confirmations = 0
    tx.in_tx_pool = not do_not_relay
    tx.do_not_relay = do_not_relay
    tx.is_relayed = not do_not_relay
    tx.is_coinbase = False
    tx.is_failed = False
    tx.mixin = request.mixin
    tx.ring_size = request.ring_size
    transfer = OutgoingTransfer(account_index=request.account_index)
    # source subaddress is only known if exactly one was requested
    if request.subaddress_indices is not None and len(request.subaddress_indices) == 1:
        transfer.subaddress_indices = list(request.subaddress_indices)
    if request.destinations:
        transfer.destinations = [dest.copy() for dest in request.destinations]
    tx.outgoing_transfer = transfer
    tx.payment_id = request.payment_id
    if tx.unlock_time is None:
        tx.unlock_time = 0 if request.unlock_time is None else request.unlock_time
    if not do_not_relay:
        if tx.last_relayed_timestamp is None:
            tx.last_relayed_timestamp = now_ms()
        if tx.is_double_spend is None:
            tx.is_double_spend = False
    return tx


def build_sent_txs(result: Dict, txs: Optional[List[Transaction]] = None) -> List[Transaction]:
    """
    Populate sent transactions from the parallel lists of a multi-tx response.

    Raises InconsistencyError if the lists differ in length.
    """
    ids = result.get("tx_hash_list") or []
    keys = result.get("tx_key_list")
    blobs = result.get("tx_blob_list") or []
    metadatas = result.get("tx_metadata_list") or []
    fees = result.get("fee_list") or []
    amounts = result.get("amount_list") or []

    sizes = {len(ids), len(blobs), len(metadatas), len(fees), len(amounts)}
    if keys is not None:
        sizes.add(len(keys))
    if len(sizes) != 1:
        raise InconsistencyError(
            f"RPC lists are different sizes: ids={len(ids)}, blobs={len(blobs)}, metadata={len(metadatas)}, "
            f"fees={len(fees)}, amounts={len(amounts)}"
        )

    if txs is None:
        txs = [Transaction() for _ in ids]
    elif len(txs) != len(ids):
        raise InconsistencyError(f"Expected {len(txs)} transactions but server returned {len(ids)}")

    for i, tx in enumerate(txs):
        tx.id = ids[i]
        if keys is not None:
            tx.key = keys[i]
        tx.full_hex = blobs[i]
        tx.metadata = metadatas[i]
        tx.fee = int(fees[i])
        if tx.outgoing_transfer is None:
            tx.outgoing_transfer = OutgoingTransfer()
        tx.outgoing_transfer.amount = int(amounts[i])
        link_tx(tx)
    return txs

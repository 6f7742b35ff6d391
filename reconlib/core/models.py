# reconlib/core/models.py
"""
Wallet data model

Canonical transaction, transfer, output and block header records built from
wallet RPC responses. Every entity is created fresh for a single query and
refers to its owning transaction by id rather than by object reference, so
merging partial records never has to reconcile divergent object graphs.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from reconlib.utils.formatting import format_amount

# payment id reported by the server when a transaction has none
DEFAULT_PAYMENT_ID = "0000000000000000"


class TransactionStatus(Enum):
    """Lifecycle state of a wallet transaction"""
    CONFIRMED = "confirmed"
    POOL = "pool"
    FAILED = "failed"
    NOT_RELAYED = "not_relayed"
    UNKNOWN = "unknown"


class SendPriority(Enum):
    """Fee priority understood by the wallet server"""
    DEFAULT = 0
    UNIMPORTANT = 1
    NORMAL = 2
    ELEVATED = 3


@dataclass
class Destination:
    """Recipient address and amount of an outgoing transfer"""
    address: Optional[str] = None
    amount: Optional[int] = None

    def copy(self) -> "Destination":
        return Destination(address=self.address, amount=self.amount)

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "amount": self.amount,
            "amount_display": format_amount(self.amount),
        }


@dataclass
class OutgoingTransfer:
    """Funds leaving one or more subaddresses of a single account"""
    tx_id: Optional[str] = None
    account_index: Optional[int] = None
    subaddress_indices: Optional[List[int]] = None
    amount: Optional[int] = None
    destinations: Optional[List[Destination]] = None

    is_incoming = False
    is_outgoing = True

    @property
    def addresses(self) -> Optional[List[str]]:
        if self.destinations is None:
            return None
        return [dest.address for dest in self.destinations]

    def to_dict(self) -> Dict:
        return {
            "tx_id": self.tx_id,
            "direction": "outgoing",
            "account_index": self.account_index,
            "subaddress_indices": self.subaddress_indices,
            "amount": self.amount,
            "amount_display": format_amount(self.amount),
            "destinations": None if self.destinations is None else [d.to_dict() for d in self.destinations],
        }


@dataclass
class IncomingTransfer:
    """Funds received at a single subaddress"""
    tx_id: Optional[str] = None
    account_index: Optional[int] = None
    subaddress_index: Optional[int] = None
    amount: Optional[int] = None
    address: Optional[str] = None

    is_incoming = True
    is_outgoing = False

    def to_dict(self) -> Dict:
        return {
            "tx_id": self.tx_id,
            "direction": "incoming",
            "account_index": self.account_index,
            "subaddress_index": self.subaddress_index,
            "amount": self.amount,
            "amount_display": format_amount(self.amount),
            "address": self.address,
        }


@dataclass
class Output:
    """A spendable output owned by the wallet"""
    tx_id: Optional[str] = None
    amount: Optional[int] = None
    key_image: Optional[str] = None
    is_spent: Optional[bool] = None
    is_unlocked: Optional[bool] = None
    is_frozen: Optional[bool] = None
    index: Optional[int] = None
    account_index: Optional[int] = None
    subaddress_index: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "tx_id": self.tx_id,
            "amount": self.amount,
            "amount_display": format_amount(self.amount),
            "key_image": self.key_image,
            "is_spent": self.is_spent,
            "is_unlocked": self.is_unlocked,
            "is_frozen": self.is_frozen,
            "index": self.index,
            "account_index": self.account_index,
            "subaddress_index": self.subaddress_index,
        }


@dataclass
class BlockHeader:
    """Block confirming one or more wallet transactions, referenced by id"""
    height: Optional[int] = None
    timestamp: Optional[int] = None
    tx_ids: List[str] = field(default_factory=list)

    def add_tx_id(self, tx_id: Optional[str]) -> None:
        if tx_id is not None and tx_id not in self.tx_ids:
            self.tx_ids.append(tx_id)

    def to_dict(self) -> Dict:
        return {"height": self.height, "timestamp": self.timestamp, "tx_ids": list(self.tx_ids)}


@dataclass
class Transaction:
    """A wallet transaction reconciled from one or more RPC records"""
    id: Optional[str] = None
    fee: Optional[int] = None
    size: Optional[int] = None
    unlock_time: Optional[int] = None
    payment_id: Optional[str] = None
    key: Optional[str] = None
    full_hex: Optional[str] = None
    metadata: Optional[str] = None
    note: Optional[str] = None
    mixin: Optional[int] = None
    ring_size: Optional[int] = None
    is_confirmed: Optional[bool] = None
    in_tx_pool: Optional[bool] = None
    is_relayed: Optional[bool] = None
    do_not_relay: Optional[bool] = None
    is_failed: Optional[bool] = None
    is_coinbase: Optional[bool] = None
    is_double_spend: Optional[bool] = None
    num_confirmations: Optional[int] = None
    num_suggested_confirmations: Optional[int] = None
    last_relayed_timestamp: Optional[int] = None
    block: Optional[BlockHeader] = None
    outgoing_transfer: Optional[OutgoingTransfer] = None
    incoming_transfers: Optional[List[IncomingTransfer]] = None
    outputs: Optional[List[Output]] = None

    @property
    def height(self) -> Optional[int]:
        return None if self.block is None else self.block.height

    @property
    def is_outgoing(self) -> bool:
        return self.outgoing_transfer is not None

    @property
    def is_incoming(self) -> bool:
        return bool(self.incoming_transfers)

    @property
    def outgoing_amount(self) -> Optional[int]:
        return None if self.outgoing_transfer is None else self.outgoing_transfer.amount

    @property
    def incoming_amount(self) -> Optional[int]:
        if not self.incoming_transfers:
            return None
        return sum(transfer.amount or 0 for transfer in self.incoming_transfers)

    @property
    def status(self) -> TransactionStatus:
        if self.is_confirmed:
            return TransactionStatus.CONFIRMED
        if self.is_failed:
            return TransactionStatus.FAILED
        if self.in_tx_pool:
            return TransactionStatus.POOL
        if self.do_not_relay:
            return TransactionStatus.NOT_RELAYED
        return TransactionStatus.UNKNOWN

    def get_transfers(self) -> List:
        """Outgoing transfer first (if any), then incoming transfers"""
        transfers = []
        if self.outgoing_transfer is not None:
            transfers.append(self.outgoing_transfer)
        if self.incoming_transfers:
            transfers.extend(self.incoming_transfers)
        return transfers

    def to_dict(self) -> Dict:
        """Convert transaction to dictionary"""
        return {
            "id": self.id,
            "status": self.status.value,
            "fee": self.fee,
            "fee_display": format_amount(self.fee),
            "size": self.size,
            "unlock_time": self.unlock_time,
            "payment_id": self.payment_id,
            "key": self.key,
            "note": self.note,
            "is_confirmed": self.is_confirmed,
            "in_tx_pool": self.in_tx_pool,
            "is_relayed": self.is_relayed,
            "do_not_relay": self.do_not_relay,
            "is_failed": self.is_failed,
            "is_coinbase": self.is_coinbase,
            "is_double_spend": self.is_double_spend,
            "num_confirmations": self.num_confirmations,
            "num_suggested_confirmations": self.num_suggested_confirmations,
            "block": None if self.block is None else self.block.to_dict(),
            "outgoing_transfer": None if self.outgoing_transfer is None else self.outgoing_transfer.to_dict(),
            "incoming_transfers": None if self.incoming_transfers is None else [t.to_dict() for t in self.incoming_transfers],
            "outputs": None if self.outputs is None else [o.to_dict() for o in self.outputs],
        }


@dataclass
class SendRequest:
    """Parameters of a send or sweep"""
    destinations: List[Destination] = field(default_factory=list)
    account_index: Optional[int] = None
    subaddress_indices: Optional[List[int]] = None
    payment_id: Optional[str] = None
    mixin: Optional[int] = None
    ring_size: Optional[int] = None
    unlock_time: Optional[int] = None
    do_not_relay: Optional[bool] = None
    priority: Optional[SendPriority] = None
    can_split: Optional[bool] = None
    key_image: Optional[str] = None
    below_amount: Optional[int] = None
    sweep_each_subaddress: Optional[bool] = None

    def copy(self) -> "SendRequest":
        return SendRequest(
            destinations=[dest.copy() for dest in self.destinations],
            account_index=self.account_index,
            subaddress_indices=None if self.subaddress_indices is None else list(self.subaddress_indices),
            payment_id=self.payment_id,
            mixin=self.mixin,
            ring_size=self.ring_size,
            unlock_time=self.unlock_time,
            do_not_relay=self.do_not_relay,
            priority=self.priority,
            can_split=self.can_split,
            key_image=self.key_image,
            below_amount=self.below_amount,
            sweep_each_subaddress=self.sweep_each_subaddress,
        )


@dataclass
class Account:
    index: int
    primary_address: Optional[str] = None
    label: Optional[str] = None
    tag: Optional[str] = None
    balance: int = 0
    unlocked_balance: int = 0

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "primary_address": self.primary_address,
            "label": self.label,
            "tag": self.tag,
            "balance": self.balance,
            "balance_display": format_amount(self.balance),
            "unlocked_balance": self.unlocked_balance,
            "unlocked_balance_display": format_amount(self.unlocked_balance),
        }


@dataclass
class Subaddress:
    account_index: int
    index: int
    address: Optional[str] = None
    label: Optional[str] = None
    is_used: Optional[bool] = None
    balance: int = 0
    unlocked_balance: int = 0
    num_unspent_outputs: int = 0

    def to_dict(self) -> Dict:
        return {
            "account_index": self.account_index,
            "index": self.index,
            "address": self.address,
            "label": self.label,
            "is_used": self.is_used,
            "balance": self.balance,
            "balance_display": format_amount(self.balance),
            "unlocked_balance": self.unlocked_balance,
            "unlocked_balance_display": format_amount(self.unlocked_balance),
            "num_unspent_outputs": self.num_unspent_outputs,
        }


@dataclass
class SyncResult:
    num_blocks_fetched: int = 0
    received_money: bool = False

    def to_dict(self) -> Dict:
        return {"num_blocks_fetched": self.num_blocks_fetched, "received_money": self.received_money}


def now_ms() -> int:
    return int(time.time() * 1000)

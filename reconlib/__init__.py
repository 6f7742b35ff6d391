"""
reconlib - transaction reconciliation client for wallet RPC servers
"""
from .config import apply_profile

apply_profile()

from .core.rpc import RpcConnection
from .core.wallet import WalletRpc
from .core.models import (
    Account,
    BlockHeader,
    Destination,
    IncomingTransfer,
    OutgoingTransfer,
    Output,
    SendPriority,
    SendRequest,
    Subaddress,
    Transaction,
)
from .transactions.filters import OutputFilter, TransferFilter, TxFilter
from .transactions.merge import TransactionCollection

__version__ = "1.0.0"
__all__ = [
    'WalletRpc',
    'RpcConnection',
    'TxFilter',
    'TransferFilter',
    'OutputFilter',
    'TransactionCollection',
    'Transaction',
    'BlockHeader',
    'OutgoingTransfer',
    'IncomingTransfer',
    'Output',
    'Destination',
    'SendRequest',
    'SendPriority',
    'Account',
    'Subaddress',
]

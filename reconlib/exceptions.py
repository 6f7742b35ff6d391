"""Error types raised by reconlib."""
from typing import Optional


class WalletError(Exception):
    """Base class for every error raised by the wallet client"""


class RemoteCallError(WalletError):
    """The wallet RPC server (or the transport to it) reported a failure"""

    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.method = method

    def __str__(self):
        text = super().__str__()
        if self.code is not None:
            text = f"{text} (code {self.code})"
        if self.method:
            text = f"{self.method}: {text}"
        return text


class AddressNotFoundError(WalletError):
    def __init__(self, address: str):
        super().__init__(f"Address does not belong to the wallet: {address}")
        self.address = address


class MalformedRecordError(WalletError):
    """A raw record holds a structurally invalid combination of fields"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnrecognizedTypeError(WalletError):
    def __init__(self, tx_type):
        super().__init__(f"Unrecognized transfer type: {tx_type}")
        self.tx_type = tx_type


class AmbiguousDirectionError(WalletError):
    """A record has no type tag and no direction was supplied"""


class InconsistencyError(WalletError):
    """Data returned by the server cannot be reconciled"""

    def __init__(self, message: str, tx_id: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.tx_id = tx_id
        self.field = field


class ValidationError(WalletError):
    """A caller-supplied request or filter is invalid"""


class UnsupportedError(WalletError):
    """Operation is not offered by the wallet RPC server"""

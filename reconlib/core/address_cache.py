from typing import Dict, Optional


class AddressCache:
    """Addresses of a wallet keyed by account index then subaddress index.

    Owned by one wallet connection. Must be cleared whenever the wallet file
    behind the connection changes.
    """

    def __init__(self):
        self._addresses: Dict[int, Dict[int, str]] = {}

    def __len__(self) -> int:
        return sum(len(subaddresses) for subaddresses in self._addresses.values())

    def has_account(self, account_index: int) -> bool:
        return account_index in self._addresses

    def get(self, account_index: int, subaddress_index: int) -> Optional[str]:
        return self._addresses.get(account_index, {}).get(subaddress_index)

    def put(self, account_index: int, subaddress_index: int, address: Optional[str]) -> None:
        if address is None:
            return
        self._addresses.setdefault(account_index, {})[subaddress_index] = address

    def clear(self) -> None:
        self._addresses.clear()

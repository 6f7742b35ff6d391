# reconlib/core/wallet.py
"""
Wallet RPC client

Queries a remote wallet RPC server and reconciles its piecemeal answers into
complete transactions, transfers and outputs. A single query may need several
RPC calls (transfers, outputs, accounts); the results are merged by
transaction id and filtered client side.

Calls are sequential and blocking. A WalletRpc instance is not safe for
concurrent use: queries share the address cache and assume the wallet does
not change between the calls that make up one query.
"""

from typing import Dict, List, Optional, Union

from reconlib.config import get_int
from reconlib.core.address_cache import AddressCache
from reconlib.core.models import (
    Account,
    Destination,
    IncomingTransfer,
    OutgoingTransfer,
    Output,
    SendRequest,
    Subaddress,
    SyncResult,
    Transaction,
)
from reconlib.core.rpc import RpcConnection
from reconlib.exceptions import (
    AddressNotFoundError,
    InconsistencyError,
    RemoteCallError,
    UnsupportedError,
    ValidationError,
)
from reconlib.transactions.builder import (
    build_sent_txs,
    build_tx_with_output,
    build_tx_with_transfer,
    init_sent_tx,
    repair_outgoing_amount,
)
from reconlib.transactions.filters import OutputFilter, TransferFilter, TxFilter
from reconlib.transactions.merge import TransactionCollection
from reconlib.utils.console import print_debug, print_warn

# error code returned by get_address_index for a foreign address
ERROR_ADDRESS_NOT_IN_WALLET = -2

TRANSFER_CATEGORIES = ("in", "out", "pool", "pending", "failed")


def derive_transfer_query(tx_filter: TxFilter, transfer_filter: TransferFilter) -> Dict[str, bool]:
    """
    Decide which get_transfers categories can hold matching transactions.

    Each filter flag is tri-state; a category is only requested when no
    flag rules it out.
    """
    can_be_confirmed = (tx_filter.is_confirmed is not False and tx_filter.in_tx_pool is not True
                        and tx_filter.is_failed is not True and tx_filter.is_relayed is not False)
    can_be_in_pool = (tx_filter.is_confirmed is not True and tx_filter.in_tx_pool is not False
                      and tx_filter.is_failed is not True and tx_filter.is_relayed is not False
                      and tx_filter.height is None and tx_filter.min_height is None)
    can_be_incoming = (transfer_filter.is_incoming is not False and transfer_filter.is_outgoing is not True
                       and transfer_filter.has_destinations is not True)
    can_be_outgoing = transfer_filter.is_outgoing is not False and transfer_filter.is_incoming is not True
    can_be_failed = (tx_filter.is_failed is not False and tx_filter.is_confirmed is not True
                     and tx_filter.in_tx_pool is not True)
    return {
        "in": can_be_incoming and can_be_confirmed,
        "out": can_be_outgoing and can_be_confirmed,
        "pool": can_be_incoming and can_be_in_pool,
        "pending": can_be_outgoing and can_be_in_pool,
        # failed transactions are always outgoing
        "failed": can_be_outgoing and can_be_failed,
    }


def _subaddress_scope(account_index: Optional[int], subaddress_index: Optional[int],
                      subaddress_indices) -> Optional[List[int]]:
    if account_index is None:
        if subaddress_index is not None or subaddress_indices:
            raise ValidationError("Filter specifies a subaddress index but not an account index")
        return None
    indices = set(subaddress_indices or [])
    if subaddress_index is not None:
        indices.add(subaddress_index)
    return sorted(indices) if indices else None


def _requested_ids(tx_filter: TxFilter) -> Optional[List[str]]:
    if tx_filter.tx_ids is not None:
        return list(dict.fromkeys(tx_filter.tx_ids))
    if tx_filter.tx_id is not None:
        return [tx_filter.tx_id]
    return None


class WalletRpc:
    """Client for a wallet managed by a remote wallet RPC server"""

    def __init__(self, rpc: Union[str, RpcConnection], username: Optional[str] = None,
                 password: Optional[str] = None):
        """
        Parameters:
            rpc: RpcConnection (or anything with a compatible ``call``) or a server URI
            username, password: digest auth credentials when ``rpc`` is a URI
        """
        if isinstance(rpc, str):
            rpc = RpcConnection(rpc, username, password)
        self.rpc = rpc
        self.address_cache = AddressCache()

    # =========================================================================
    # Wallet file lifecycle
    # =========================================================================

    def open_wallet(self, filename: str, password: str) -> None:
        if not filename:
            raise ValidationError("Filename is not initialized")
        if not password:
            raise ValidationError("Password is not initialized")
        self.rpc.call("open_wallet", {"filename": filename, "password": password})
        self.address_cache.clear()

    def save(self) -> None:
        self.rpc.call("store")

    def close(self, save: bool = False) -> None:
        if save:
            self.save()
        self.rpc.call("close_wallet")
        self.address_cache.clear()

    # =========================================================================
    # Unsupported by the RPC server
    # =========================================================================

    def get_seed(self) -> str:
        raise UnsupportedError("Wallet RPC does not support getting the wallet seed")

    def get_chain_height(self) -> int:
        raise UnsupportedError("Wallet RPC does not support getting the chain height")

    def sync(self, start_height: Optional[int] = None, end_height: Optional[int] = None,
             listener=None) -> SyncResult:
        """Refresh the wallet from ``start_height``; end heights and progress listeners are unsupported"""
        if end_height is not None:
            raise UnsupportedError("Wallet RPC does not support syncing to an end height")
        if listener is not None:
            raise UnsupportedError("Wallet RPC does not support reporting sync progress")
        result = self.rpc.call("refresh", {"start_height": start_height})
        return SyncResult(int(result.get("blocks_fetched", 0)), bool(result.get("received_money", False)))

    # =========================================================================
    # Accounts and addresses
    # =========================================================================

    def get_accounts(self) -> List[Account]:
        result = self.rpc.call("get_accounts")
        accounts = []
        for rpc_account in result.get("subaddress_accounts", []):
            account = Account(
                index=int(rpc_account["account_index"]),
                primary_address=rpc_account.get("base_address"),
                label=rpc_account.get("label") or None,
                tag=rpc_account.get("tag") or None,
                balance=int(rpc_account.get("balance", 0)),
                unlocked_balance=int(rpc_account.get("unlocked_balance", 0)),
            )
            self.address_cache.put(account.index, 0, account.primary_address)
            accounts.append(account)
        return accounts

    def get_account_indices(self) -> List[int]:
        return [account.index for account in self.get_accounts()]

    def get_subaddresses(self, account_index: int, subaddress_indices: Optional[List[int]] = None) -> List[Subaddress]:
        """Fetch subaddresses of an account (all if no indices given) and cache their addresses"""
        params = {"account_index": account_index}
        if subaddress_indices:
            params["address_index"] = list(subaddress_indices)
        result = self.rpc.call("get_address", params)
        subaddresses = []
        for rpc_subaddress in result.get("addresses", []):
            subaddress = Subaddress(
                account_index=account_index,
                index=int(rpc_subaddress["address_index"]),
                address=rpc_subaddress.get("address"),
                label=rpc_subaddress.get("label") or None,
                is_used=rpc_subaddress.get("used"),
            )
            self.address_cache.put(account_index, subaddress.index, subaddress.address)
            subaddresses.append(subaddress)
        return subaddresses

    def get_subaddress_balances(self, account_index: int) -> List[Subaddress]:
        """Subaddresses of an account that hold or have held a balance, with their balances"""
        result = self.rpc.call("get_balance", {"account_index": account_index})
        subaddresses = []
        for rpc_subaddress in result.get("per_subaddress", []):
            subaddress = Subaddress(
                account_index=account_index,
                index=int(rpc_subaddress["address_index"]),
                address=rpc_subaddress.get("address"),
                label=rpc_subaddress.get("label") or None,
                balance=int(rpc_subaddress.get("balance", 0)),
                unlocked_balance=int(rpc_subaddress.get("unlocked_balance", 0)),
                num_unspent_outputs=int(rpc_subaddress.get("num_unspent_outputs", 0)),
            )
            self.address_cache.put(account_index, subaddress.index, subaddress.address)
            subaddresses.append(subaddress)
        return subaddresses

    def get_address(self, account_index: int, subaddress_index: int) -> Optional[str]:
        """Address of a subaddress, served from the address cache when possible"""
        if not self.address_cache.has_account(account_index):
            self.get_subaddresses(account_index)
            return self.address_cache.get(account_index, subaddress_index)
        address = self.address_cache.get(account_index, subaddress_index)
        if address is None:
            self.get_subaddresses(account_index)
            address = self.address_cache.get(account_index, subaddress_index)
        return address

    def get_address_index(self, address: str) -> Subaddress:
        try:
            result = self.rpc.call("get_address_index", {"address": address})
        except RemoteCallError as e:
            if e.code == ERROR_ADDRESS_NOT_IN_WALLET:
                raise AddressNotFoundError(address) from e
            raise
        rpc_index = result["index"]
        return Subaddress(account_index=int(rpc_index["major"]), index=int(rpc_index["minor"]), address=address)

    # =========================================================================
    # Transactions, transfers and outputs
    # =========================================================================

    def get_txs(self, tx_filter: Optional[TxFilter] = None) -> List[Transaction]:
        """
        Get wallet transactions meeting a filter.

        If the filter names transaction ids, every id must be found and the
        result follows the order of the requested ids.
        """
        tx_filter = tx_filter or TxFilter()
        max_retries = max(0, get_int("RECONLIB_MAX_QUERY_RETRIES", 3))

        attempt = 0
        while True:
            txs = self._query_txs(tx_filter)

            # transfers and outputs come from separate calls, so a block can
            # arrive between them
            unlinked = next((tx for tx in txs if tx.is_confirmed and tx.block is None), None)
            if unlinked is None:
                break
            if attempt >= max_retries:
                raise InconsistencyError(
                    f"Confirmed tx has no block after {attempt + 1} attempts: {unlinked.id}",
                    tx_id=unlinked.id,
                    field="block",
                )
            attempt += 1
            print_warn(f"WARNING: confirmed tx {unlinked.id} has no block, re-fetching ({attempt}/{max_retries})")

        requested = _requested_ids(tx_filter)
        if requested:
            txs_by_id = {tx.id: tx for tx in txs}
            txs = [txs_by_id[tx_id] for tx_id in requested if tx_id in txs_by_id]
        return txs

    def _query_txs(self, tx_filter: TxFilter) -> List[Transaction]:
        transfer_filter = tx_filter.transfer_filter
        if transfer_filter is not None:
            _subaddress_scope(transfer_filter.account_index, transfer_filter.subaddress_index,
                              transfer_filter.subaddress_indices)
        # fetch every leg of matching txs; the transfer filter is applied afterwards
        collection = self._fetch_transfer_txs(tx_filter, TransferFilter())

        if tx_filter.include_outputs:
            # get_transfers omits some incoming transfers, so outputs only
            # extend transactions that are already known
            for output_tx in self._fetch_output_records(OutputFilter()):
                collection.merge(output_tx, skip_if_absent=True)

        txs = tx_filter.apply(collection)

        requested = _requested_ids(tx_filter)
        if requested:
            found = {tx.id for tx in txs}
            for tx_id in requested:
                if tx_id not in found:
                    raise InconsistencyError(f"Tx not found in wallet: {tx_id}", tx_id=tx_id)
        return txs

    def get_transfers(self, transfer_filter: Optional[TransferFilter] = None) -> List:
        """Get incoming and outgoing transfers meeting a filter"""
        transfer_filter = transfer_filter or TransferFilter()
        tx_filter = transfer_filter.tx_filter or TxFilter()
        collection = self._fetch_transfer_txs(tx_filter, transfer_filter)
        transfers: List[Union[OutgoingTransfer, IncomingTransfer]] = []
        for tx in collection:
            transfers.extend(transfer_filter.apply(tx.get_transfers(), collection.owner_of))
        return transfers

    def get_outputs(self, output_filter: Optional[OutputFilter] = None) -> List[Output]:
        """Get wallet outputs meeting a filter"""
        output_filter = output_filter or OutputFilter()
        collection = self._fetch_output_txs(output_filter)
        outputs: List[Output] = []
        for tx in collection:
            outputs.extend(output_filter.apply(tx.outputs or [], collection.owner_of))
        return outputs

    def _fetch_transfer_txs(self, tx_filter: TxFilter, transfer_filter: TransferFilter) -> TransactionCollection:
        params: Dict = dict(derive_transfer_query(tx_filter, transfer_filter))
        subaddress_indices = _subaddress_scope(
            transfer_filter.account_index, transfer_filter.subaddress_index, transfer_filter.subaddress_indices)

        collection = TransactionCollection()
        if not any(params[category] for category in TRANSFER_CATEGORIES):
            print_debug("DEBUG: no transfer category can match, skipping get_transfers")
            return collection

        if tx_filter.min_height is not None:
            # the server treats min_height as exclusive
            params["min_height"] = max(0, tx_filter.min_height - 1)
        if tx_filter.max_height is not None:
            params["max_height"] = tx_filter.max_height
        params["filter_by_height"] = tx_filter.min_height is not None or tx_filter.max_height is not None
        if transfer_filter.account_index is None:
            params["all_accounts"] = True
        else:
            params["account_index"] = transfer_filter.account_index
            params["subaddr_indices"] = subaddress_indices

        result = self.rpc.call("get_transfers", params)
        for category in TRANSFER_CATEGORIES:
            for record in result.get(category) or []:
                tx = build_tx_with_transfer(record)
                repair_outgoing_amount(tx)
                collection.merge(tx)
        return collection

    def _resolve_output_scope(self, output_filter: OutputFilter) -> Dict[int, Optional[List[int]]]:
        subaddress_indices = _subaddress_scope(
            output_filter.account_index, output_filter.subaddress_index, output_filter.subaddress_indices)
        if output_filter.account_index is not None:
            return {output_filter.account_index: subaddress_indices}
        # None fetches from every subaddress of the account
        return {account_index: None for account_index in self.get_account_indices()}

    def _fetch_output_txs(self, output_filter: OutputFilter) -> TransactionCollection:
        return TransactionCollection().merge_all(self._fetch_output_records(output_filter))

    def _fetch_output_records(self, output_filter: OutputFilter) -> List[Transaction]:
        """One unmerged transaction per output reported by incoming_transfers"""
        scope = self._resolve_output_scope(output_filter)
        if output_filter.is_spent is True:
            transfer_type = "unavailable"
        elif output_filter.is_spent is False:
            transfer_type = "available"
        else:
            transfer_type = "all"

        txs: List[Transaction] = []
        for account_index, subaddress_indices in scope.items():
            params = {
                "transfer_type": transfer_type,
                "verbose": True,
                "account_index": account_index,
                "subaddr_indices": subaddress_indices,
            }
            result = self.rpc.call("incoming_transfers", params)
            txs.extend(build_tx_with_output(record) for record in result.get("transfers") or [])
        return txs

    # =========================================================================
    # Sending
    # =========================================================================

    def send(self, request: SendRequest) -> Transaction:
        """Send funds in exactly one transaction"""
        if request.can_split is True:
            raise ValidationError("Send request allows splitting; use send_split()")
        return self._send_common(request, can_split=False)[0]

    def send_split(self, request: SendRequest) -> List[Transaction]:
        """Send funds in as many transactions as the server needs"""
        if request.can_split is False:
            raise ValidationError("Send request forbids splitting; use send()")
        return self._send_common(request, can_split=True)

    def _send_common(self, request: SendRequest, can_split: bool) -> List[Transaction]:
        if not request.destinations:
            raise ValidationError("Must specify destinations to send to")
        if request.sweep_each_subaddress is not None:
            raise ValidationError("Cannot sweep each subaddress when sending")
        if request.below_amount is not None:
            raise ValidationError("Cannot specify below amount when sending")
        if request.account_index is None:
            raise ValidationError("Must specify the account index to send from")
        for destination in request.destinations:
            if destination.address is None:
                raise ValidationError("Destination address is not defined")
            if destination.amount is None:
                raise ValidationError("Destination amount is not defined")

        params = self._send_params(request)
        params["destinations"] = [{"address": d.address, "amount": d.amount} for d in request.destinations]
        if can_split:
            params["get_tx_keys"] = True
        else:
            params["get_tx_key"] = True

        # a plain send always yields exactly one transaction
        txs = [] if can_split else [init_sent_tx(request)]
        result = self.rpc.call("transfer_split" if can_split else "transfer", params)
        if can_split:
            txs = [init_sent_tx(request) for _ in result.get("tx_hash_list") or []]
            if len(txs) > 1:
                # destinations cannot be attributed to individual split txs
                for tx in txs:
                    tx.outgoing_transfer.destinations = None
            build_sent_txs(result, txs)
        else:
            build_tx_with_transfer(result, txs[0], is_outgoing=True)
        return txs

    def sweep_output(self, request: SendRequest) -> Transaction:
        """Sweep a single output identified by its key image"""
        if request.sweep_each_subaddress is not None:
            raise ValidationError("Cannot sweep each subaddress when sweeping an output")
        if request.below_amount is not None:
            raise ValidationError("Cannot specify below amount when sweeping an output")
        if request.can_split is not None:
            raise ValidationError("Splitting is not applicable when sweeping an output")
        if request.key_image is None:
            raise ValidationError("Must specify the key image of the output to sweep")
        self._check_sweep_destination(request)

        params = self._send_params(request)
        params["address"] = request.destinations[0].address
        params["key_image"] = request.key_image
        params["get_tx_key"] = True

        tx = init_sent_tx(request)
        result = self.rpc.call("sweep_single", params)
        build_tx_with_transfer(result, tx, is_outgoing=True)
        tx.outgoing_transfer.destinations[0].amount = tx.outgoing_transfer.amount
        return tx

    def sweep_unlocked(self, request: SendRequest) -> List[Transaction]:
        """
        Sweep all unlocked funds to a single address.

        Sweeps the given account, or every account with an unlocked balance,
        from all subaddresses together or (sweep_each_subaddress) one by one.
        """
        if request.key_image is not None:
            raise ValidationError("Key image defined; use sweep_output() to sweep an output by its key image")
        self._check_sweep_destination(request)
        subaddress_indices = request.subaddress_indices or None
        if request.account_index is None and subaddress_indices is not None:
            raise ValidationError("Must specify account index with subaddress indices")

        scope: Dict[int, List[int]] = {}
        if request.account_index is not None:
            scope[request.account_index] = subaddress_indices or self._unlocked_subaddress_indices(request.account_index)
        else:
            for account in self.get_accounts():
                if account.unlocked_balance > 0:
                    scope[account.index] = self._unlocked_subaddress_indices(account.index)

        txs: List[Transaction] = []
        for account_index, indices in scope.items():
            if not indices:
                continue
            groups = [[index] for index in indices] if request.sweep_each_subaddress else [list(indices)]
            for group in groups:
                sweep_request = request.copy()
                sweep_request.account_index = account_index
                sweep_request.subaddress_indices = group
                txs.extend(self._sweep_all(sweep_request))
        return txs

    def _unlocked_subaddress_indices(self, account_index: int) -> List[int]:
        return [s.index for s in self.get_subaddress_balances(account_index) if s.unlocked_balance > 0]

    def _sweep_all(self, request: SendRequest) -> List[Transaction]:
        params = self._send_params(request)
        params["address"] = request.destinations[0].address
        params["below_amount"] = request.below_amount
        params["get_tx_keys"] = True

        result = self.rpc.call("sweep_all", params)
        txs = [init_sent_tx(request) for _ in result.get("tx_hash_list") or []]
        build_sent_txs(result, txs)
        for tx in txs:
            transfer = tx.outgoing_transfer
            transfer.destinations = [Destination(address=request.destinations[0].address, amount=transfer.amount)]
        return txs

    def sweep_dust(self, do_not_relay: bool = False) -> List[Transaction]:
        """Sweep all unmixable dust outputs"""
        result = self.rpc.call("sweep_dust", {
            "do_not_relay": do_not_relay,
            "get_tx_keys": True,
            "get_tx_hex": True,
            "get_tx_metadata": True,
        })
        if "tx_hash_list" not in result:
            return []  # no dust to sweep
        request = SendRequest(do_not_relay=do_not_relay)
        txs = [init_sent_tx(request) for _ in result["tx_hash_list"]]
        return build_sent_txs(result, txs)

    def relay_txs(self, tx_metadatas: List[str]) -> List[str]:
        """Relay previously created, unrelayed transactions; returns their ids"""
        if not tx_metadatas:
            raise ValidationError("Must provide tx metadata to relay")
        tx_ids = []
        for metadata in tx_metadatas:
            result = self.rpc.call("relay_tx", {"hex": metadata})
            tx_ids.append(result["tx_hash"])
        return tx_ids

    def _check_sweep_destination(self, request: SendRequest) -> None:
        if len(request.destinations) != 1:
            raise ValidationError("Must specify exactly one destination to sweep to")
        if request.destinations[0].address is None:
            raise ValidationError("Must specify destination address to sweep to")
        if request.destinations[0].amount is not None:
            raise ValidationError("Cannot specify amount in sweep request")

    @staticmethod
    def _send_params(request: SendRequest) -> Dict:
        return {
            "account_index": request.account_index,
            "subaddr_indices": request.subaddress_indices,
            "payment_id": request.payment_id,
            "mixin": request.mixin,
            "ring_size": request.ring_size,
            "unlock_time": request.unlock_time,
            "do_not_relay": request.do_not_relay,
            "priority": None if request.priority is None else request.priority.value,
            "get_tx_hex": True,
            "get_tx_metadata": True,
        }

import pytest

from reconlib.core.models import Destination, SendPriority, SendRequest
from reconlib.core.rpc import RpcConnection
from reconlib.core.wallet import WalletRpc, derive_transfer_query
from reconlib.exceptions import (
    AddressNotFoundError,
    InconsistencyError,
    RemoteCallError,
    UnsupportedError,
    ValidationError,
)
from reconlib.transactions.filters import OutputFilter, TransferFilter, TxFilter

from conftest import output_record, transfer_record

ACCOUNTS = {"subaddress_accounts": [
    {"account_index": 0, "base_address": "addr0", "balance": 100, "unlocked_balance": 100, "label": "Primary"},
    {"account_index": 1, "base_address": "addr1", "balance": 0, "unlocked_balance": 0, "label": ""},
]}


def sent_lists(ids, fees=None, amounts=None):
    n = len(ids)
    return {
        "tx_hash_list": list(ids),
        "tx_key_list": ["k"] * n,
        "tx_blob_list": ["blob"] * n,
        "tx_metadata_list": ["meta"] * n,
        "fee_list": fees if fees is not None else [1] * n,
        "amount_list": amounts if amounts is not None else [100] * n,
    }


class TestDeriveTransferQuery:
    def test_unrestricted(self):
        assert derive_transfer_query(TxFilter(), TransferFilter()) == {
            "in": True, "out": True, "pool": True, "pending": True, "failed": True}

    def test_confirmed_only(self):
        query = derive_transfer_query(TxFilter(is_confirmed=True), TransferFilter())
        assert query == {"in": True, "out": True, "pool": False, "pending": False, "failed": False}

    def test_height_rules_out_pool(self):
        query = derive_transfer_query(TxFilter(min_height=10), TransferFilter())
        assert query["pool"] is False and query["pending"] is False
        assert query["in"] is True

    def test_incoming_only(self):
        query = derive_transfer_query(TxFilter(), TransferFilter(is_incoming=True))
        assert query == {"in": True, "out": False, "pool": True, "pending": False, "failed": False}

    def test_destinations_imply_outgoing(self):
        query = derive_transfer_query(TxFilter(), TransferFilter(has_destinations=True))
        assert query["in"] is False and query["pool"] is False
        assert query["out"] is True

    def test_failed_only(self):
        query = derive_transfer_query(TxFilter(is_failed=True), TransferFilter())
        assert query == {"in": False, "out": False, "pool": False, "pending": False, "failed": True}


class TestGetTxs:
    def test_merges_and_filters(self, wallet, fake_rpc, sample_transfers):
        fake_rpc.respond("get_transfers", sample_transfers)
        txs = wallet.get_txs()

        assert [tx.id for tx in txs] == ["A", "B", "C"]
        assert txs[0].block is txs[1].block
        assert txs[2].in_tx_pool is True
        params = fake_rpc.params_of("get_transfers")[0]
        assert params["all_accounts"] is True
        assert params["filter_by_height"] is False

    def test_no_call_when_nothing_can_match(self, wallet, fake_rpc):
        assert wallet.get_txs(TxFilter(is_confirmed=True, in_tx_pool=True)) == []
        assert wallet.get_txs(TxFilter(is_failed=True, is_confirmed=True)) == []
        assert fake_rpc.calls == []

    def test_height_params(self, wallet, fake_rpc):
        wallet.get_txs(TxFilter(min_height=100, max_height=200))
        params = fake_rpc.params_of("get_transfers")[0]

        # server min_height is exclusive
        assert params["min_height"] == 99
        assert params["max_height"] == 200
        assert params["filter_by_height"] is True
        assert params["pool"] is False

    def test_transfer_filter_does_not_narrow_fetch(self, wallet, fake_rpc):
        wallet.get_txs(TxFilter(transfer_filter=TransferFilter(account_index=1, subaddress_indices=[3, 1],
                                                                is_outgoing=True)))
        params = fake_rpc.params_of("get_transfers")[0]
        assert params["all_accounts"] is True
        assert "account_index" not in params
        assert params["in"] is True and params["out"] is True

    def test_subaddress_without_account_rejected(self, wallet, fake_rpc):
        with pytest.raises(ValidationError):
            wallet.get_txs(TxFilter(transfer_filter=TransferFilter(subaddress_index=2)))
        assert fake_rpc.calls == []

    def test_transfer_filter_applies_to_txs(self, wallet, fake_rpc, sample_transfers):
        fake_rpc.respond("get_transfers", sample_transfers)
        txs = wallet.get_txs(TxFilter(transfer_filter=TransferFilter(account_index=0)))
        assert [tx.id for tx in txs] == ["A", "B"]

    @pytest.mark.parametrize("transfer_filter", [
        TransferFilter(is_outgoing=True),
        TransferFilter(account_index=0),
    ])
    def test_matching_tx_keeps_all_legs(self, wallet, fake_rpc, transfer_filter):
        """A transfer from account 0 to account 1 keeps its incoming leg"""
        def scoped_transfers(params):
            def in_scope(account):
                return params.get("all_accounts") or params.get("account_index") == account
            result = {}
            if params.get("out") and in_scope(0):
                result["out"] = [transfer_record("out", "T", amount=60, height=7,
                                                 subaddr_indices=[{"major": 0, "minor": 0}],
                                                 destinations=[{"address": "addr1", "amount": 60}])]
            if params.get("in") and in_scope(1):
                result["in"] = [transfer_record("in", "T", amount=60, height=7, address="addr1",
                                                subaddr_index={"major": 1, "minor": 0})]
            return result

        fake_rpc.respond("get_transfers", scoped_transfers)
        txs = wallet.get_txs(TxFilter(transfer_filter=transfer_filter))

        assert [tx.id for tx in txs] == ["T"]
        assert txs[0].outgoing_amount == 60
        assert [(t.account_index, t.amount) for t in txs[0].incoming_transfers] == [(1, 60)]

    def test_requested_order_preserved(self, wallet, fake_rpc, sample_transfers):
        fake_rpc.respond("get_transfers", sample_transfers)
        txs = wallet.get_txs(TxFilter(tx_ids=["C", "A", "C"]))
        assert [tx.id for tx in txs] == ["C", "A"]

    def test_missing_requested_id(self, wallet, fake_rpc):
        fake_rpc.respond("get_transfers", {"in": [transfer_record("in", "A", height=5)]})
        with pytest.raises(InconsistencyError) as exc_info:
            wallet.get_txs(TxFilter(tx_ids=["Z"]))
        assert exc_info.value.tx_id == "Z"

    def test_refetches_confirmed_tx_without_block(self, wallet, fake_rpc):
        fake_rpc.respond("get_transfers",
                         {"in": [transfer_record("in", "A")]},
                         {"in": [transfer_record("in", "A", height=5)]})
        txs = wallet.get_txs()

        assert txs[0].height == 5
        assert fake_rpc.methods() == ["get_transfers", "get_transfers"]

    def test_retry_is_bounded(self, wallet, fake_rpc, monkeypatch):
        monkeypatch.setenv("RECONLIB_MAX_QUERY_RETRIES", "2")
        fake_rpc.respond("get_transfers", {"in": [transfer_record("in", "A")]})

        with pytest.raises(InconsistencyError) as exc_info:
            wallet.get_txs()
        assert exc_info.value.tx_id == "A"
        assert fake_rpc.methods().count("get_transfers") == 3

    def test_include_outputs(self, wallet, fake_rpc, sample_transfers):
        fake_rpc.respond("get_transfers", sample_transfers)
        fake_rpc.respond("get_accounts", ACCOUNTS)
        fake_rpc.respond("incoming_transfers", lambda params: {"transfers": [
            output_record("A", "kA", amount=500, subaddress=1),
            # not reported by get_transfers, must not become a tx
            output_record("X", "kX", amount=3),
        ]} if params["account_index"] == 0 else {})

        txs = wallet.get_txs(TxFilter(include_outputs=True))

        assert [tx.id for tx in txs] == ["A", "B", "C"]
        assert [o.key_image for o in txs[0].outputs] == ["kA"]
        assert txs[1].outputs is None
        assert [p["account_index"] for p in fake_rpc.params_of("incoming_transfers")] == [0, 1]

    def test_remote_error_propagates(self, wallet, fake_rpc):
        fake_rpc.respond("get_transfers", RemoteCallError("boom", code=-1, method="get_transfers"))
        with pytest.raises(RemoteCallError):
            wallet.get_txs()


class TestGetTransfers:
    def test_account_scope(self, wallet, fake_rpc):
        wallet.get_transfers(TransferFilter(account_index=1, subaddress_indices=[3, 1]))
        params = fake_rpc.params_of("get_transfers")[0]
        assert params["account_index"] == 1
        assert params["subaddr_indices"] == [1, 3]
        assert "all_accounts" not in params

    def test_no_call_when_nothing_can_match(self, wallet, fake_rpc):
        assert wallet.get_transfers(TransferFilter(is_incoming=True, is_outgoing=True)) == []
        assert fake_rpc.calls == []

    def test_filters_transfers(self, wallet, fake_rpc, sample_transfers):
        fake_rpc.respond("get_transfers", sample_transfers)

        transfers = wallet.get_transfers(TransferFilter(is_incoming=True))
        assert [(t.tx_id, t.amount) for t in transfers] == [("A", 500), ("C", 70)]
        params = fake_rpc.params_of("get_transfers")[0]
        assert params["out"] is False and params["pending"] is False

    def test_owning_tx_filter(self, wallet, fake_rpc, sample_transfers):
        fake_rpc.respond("get_transfers", sample_transfers)

        transfers = wallet.get_transfers(TransferFilter(tx_filter=TxFilter(in_tx_pool=True)))
        assert [t.tx_id for t in transfers] == ["C"]
        params = fake_rpc.params_of("get_transfers")[0]
        assert params["in"] is False and params["out"] is False

    def test_repairs_self_transfer_amount(self, wallet, fake_rpc):
        fake_rpc.respond("get_transfers", {"out": [transfer_record(
            "out", "S", amount=0, height=9, destinations=[{"address": "own", "amount": 40}])]})
        transfers = wallet.get_transfers()
        assert transfers[0].amount == 40


class TestGetOutputs:
    def test_all_accounts(self, wallet, fake_rpc):
        fake_rpc.respond("get_accounts", ACCOUNTS)
        fake_rpc.respond("incoming_transfers", lambda params: {"transfers": [
            output_record("T", "k0", global_index=1),
            output_record("T", "k1", global_index=2, subaddress=1, spent=True),
        ]} if params["account_index"] == 0 else {})

        outputs = wallet.get_outputs()

        assert [o.key_image for o in outputs] == ["k0", "k1"]
        assert fake_rpc.methods() == ["get_accounts", "incoming_transfers", "incoming_transfers"]
        assert fake_rpc.params_of("incoming_transfers")[0]["transfer_type"] == "all"
        assert fake_rpc.params_of("incoming_transfers")[0]["verbose"] is True

    def test_explicit_scope(self, wallet, fake_rpc):
        fake_rpc.respond("incoming_transfers", {"transfers": [output_record("T", "k0", account=2, subaddress=4)]})

        outputs = wallet.get_outputs(OutputFilter(account_index=2, subaddress_index=4, is_spent=False))

        assert len(outputs) == 1
        params = fake_rpc.params_of("incoming_transfers")
        assert params == [{"transfer_type": "available", "verbose": True, "account_index": 2, "subaddr_indices": [4]}]

    def test_spent_outputs(self, wallet, fake_rpc):
        wallet.get_outputs(OutputFilter(account_index=0, is_spent=True))
        assert fake_rpc.params_of("incoming_transfers")[0]["transfer_type"] == "unavailable"

    def test_subaddress_without_account_rejected(self, wallet, fake_rpc):
        with pytest.raises(ValidationError):
            wallet.get_outputs(OutputFilter(subaddress_indices=[1]))
        assert fake_rpc.calls == []

    def test_owning_tx_filter(self, wallet, fake_rpc):
        fake_rpc.respond("incoming_transfers", {"transfers": [
            output_record("T1", "k1", height=10),
            output_record("T2", "k2", height=20, global_index=2),
        ]})
        outputs = wallet.get_outputs(OutputFilter(account_index=0, tx_filter=TxFilter(min_height=15)))
        assert [o.tx_id for o in outputs] == ["T2"]


class TestSend:
    def request(self, **kwargs):
        kwargs.setdefault("account_index", 0)
        kwargs.setdefault("destinations", [Destination("dest", 500)])
        return SendRequest(**kwargs)

    def test_send(self, wallet, fake_rpc):
        fake_rpc.respond("transfer", {"tx_hash": "S1", "tx_key": "key", "amount": 500, "fee": 10,
                                      "tx_blob": "blob", "tx_metadata": "meta",
                                      "multisig_txset": "", "unsigned_txset": ""})
        tx = wallet.send(self.request(priority=SendPriority.ELEVATED))

        assert tx.id == "S1"
        assert tx.fee == 10
        assert tx.key == "key"
        assert tx.in_tx_pool is True
        assert tx.outgoing_transfer.amount == 500
        assert tx.outgoing_transfer.account_index == 0
        assert [(d.address, d.amount) for d in tx.outgoing_transfer.destinations] == [("dest", 500)]

        params = fake_rpc.params_of("transfer")[0]
        assert params["destinations"] == [{"address": "dest", "amount": 500}]
        assert params["priority"] == 3
        assert params["get_tx_key"] is True

    def test_send_rejects_split_request(self, wallet, fake_rpc):
        with pytest.raises(ValidationError):
            wallet.send(self.request(can_split=True))
        assert fake_rpc.calls == []

    @pytest.mark.parametrize("kwargs", [
        {"account_index": None},
        {"destinations": []},
        {"destinations": [Destination(None, 5)]},
        {"destinations": [Destination("dest", None)]},
        {"below_amount": 5},
        {"sweep_each_subaddress": True},
    ])
    def test_send_validation(self, wallet, fake_rpc, kwargs):
        with pytest.raises(ValidationError):
            wallet.send_split(self.request(**kwargs))
        assert fake_rpc.calls == []

    def test_send_split(self, wallet, fake_rpc):
        fake_rpc.respond("transfer_split", sent_lists(["S1", "S2"], fees=[1, 2], amounts=[300, 200]))
        txs = wallet.send_split(self.request())

        assert [tx.id for tx in txs] == ["S1", "S2"]
        assert [tx.outgoing_amount for tx in txs] == [300, 200]
        assert all(tx.outgoing_transfer.account_index == 0 for tx in txs)
        assert fake_rpc.params_of("transfer_split")[0]["get_tx_keys"] is True

    def test_send_split_mismatched_lists(self, wallet, fake_rpc):
        fake_rpc.respond("transfer_split", sent_lists(["S1", "S2"], fees=[1]))
        with pytest.raises(InconsistencyError):
            wallet.send_split(self.request())

    def test_relay_txs(self, wallet, fake_rpc):
        fake_rpc.respond("relay_tx", {"tx_hash": "R1"}, {"tx_hash": "R2"})
        assert wallet.relay_txs(["m1", "m2"]) == ["R1", "R2"]
        assert fake_rpc.params_of("relay_tx") == [{"hex": "m1"}, {"hex": "m2"}]


class TestSweep:
    def sweep_request(self, **kwargs):
        kwargs.setdefault("destinations", [Destination("sink")])
        return SendRequest(**kwargs)

    def test_sweep_output(self, wallet, fake_rpc):
        fake_rpc.respond("sweep_single", {"tx_hash": "W", "tx_key": "k", "amount": 300, "fee": 5,
                                          "tx_blob": "b", "tx_metadata": "m"})
        tx = wallet.sweep_output(self.sweep_request(account_index=0, key_image="ki"))

        assert tx.id == "W"
        assert tx.outgoing_transfer.destinations[0].address == "sink"
        assert tx.outgoing_transfer.destinations[0].amount == 300
        assert fake_rpc.params_of("sweep_single")[0]["key_image"] == "ki"

    def test_sweep_output_requires_key_image(self, wallet, fake_rpc):
        with pytest.raises(ValidationError):
            wallet.sweep_output(self.sweep_request(account_index=0))

    def test_sweep_rejects_amount(self, wallet, fake_rpc):
        with pytest.raises(ValidationError):
            wallet.sweep_unlocked(self.sweep_request(destinations=[Destination("sink", 5)]))
        assert fake_rpc.calls == []

    def test_sweep_unlocked_account(self, wallet, fake_rpc):
        fake_rpc.respond("get_balance", {"per_subaddress": [
            {"address_index": 0, "address": "a0", "balance": 10, "unlocked_balance": 10},
            {"address_index": 1, "address": "a1", "balance": 4, "unlocked_balance": 0},
            {"address_index": 2, "address": "a2", "balance": 5, "unlocked_balance": 5},
        ]})
        fake_rpc.respond("sweep_all", sent_lists(["W1"], fees=[1], amounts=[14]))

        txs = wallet.sweep_unlocked(self.sweep_request(account_index=0))

        assert [tx.id for tx in txs] == ["W1"]
        assert [(d.address, d.amount) for d in txs[0].outgoing_transfer.destinations] == [("sink", 14)]
        params = fake_rpc.params_of("sweep_all")
        assert len(params) == 1
        assert params[0]["subaddr_indices"] == [0, 2]
        assert params[0]["address"] == "sink"
        assert wallet.address_cache.get(0, 2) == "a2"

    def test_sweep_each_subaddress(self, wallet, fake_rpc):
        fake_rpc.respond("get_balance", {"per_subaddress": [
            {"address_index": 0, "address": "a0", "unlocked_balance": 10},
            {"address_index": 2, "address": "a2", "unlocked_balance": 5},
        ]})
        fake_rpc.respond("sweep_all", sent_lists(["W1"]), sent_lists(["W2"]))

        txs = wallet.sweep_unlocked(self.sweep_request(account_index=0, sweep_each_subaddress=True))

        assert [tx.id for tx in txs] == ["W1", "W2"]
        assert [p["subaddr_indices"] for p in fake_rpc.params_of("sweep_all")] == [[0], [2]]

    def test_sweep_all_accounts_skips_locked(self, wallet, fake_rpc):
        fake_rpc.respond("get_accounts", ACCOUNTS)
        fake_rpc.respond("get_balance", {"per_subaddress": [{"address_index": 0, "unlocked_balance": 100}]})
        fake_rpc.respond("sweep_all", sent_lists(["W1"]))

        txs = wallet.sweep_unlocked(self.sweep_request())

        assert len(txs) == 1
        assert [p["account_index"] for p in fake_rpc.params_of("get_balance")] == [0]

    def test_sweep_dust_nothing_to_sweep(self, wallet, fake_rpc):
        assert wallet.sweep_dust() == []
        assert fake_rpc.methods() == ["sweep_dust"]

    def test_sweep_dust(self, wallet, fake_rpc):
        fake_rpc.respond("sweep_dust", sent_lists(["D1", "D2"]))
        txs = wallet.sweep_dust(do_not_relay=True)

        assert [tx.id for tx in txs] == ["D1", "D2"]
        assert all(tx.do_not_relay for tx in txs)


class TestWalletLifecycle:
    def test_accepts_uri(self):
        wallet = WalletRpc("http://localhost:38083/", "user", "pass")
        assert isinstance(wallet.rpc, RpcConnection)
        assert wallet.rpc.uri == "http://localhost:38083"

    def test_address_cache(self, wallet, fake_rpc):
        fake_rpc.respond("get_address", {"addresses": [
            {"address_index": 0, "address": "A0", "label": "Primary", "used": True},
            {"address_index": 1, "address": "A1", "label": "", "used": False},
        ]})

        assert wallet.get_address(0, 1) == "A1"
        assert wallet.get_address(0, 0) == "A0"
        assert fake_rpc.methods() == ["get_address"]

    def test_open_and_close_clear_cache(self, wallet, fake_rpc):
        fake_rpc.respond("get_address", {"addresses": [{"address_index": 0, "address": "A0"}]})
        wallet.get_subaddresses(0)
        assert len(wallet.address_cache) == 1

        wallet.open_wallet("other", "secret")
        assert len(wallet.address_cache) == 0

        wallet.get_subaddresses(0)
        wallet.close(save=True)
        assert len(wallet.address_cache) == 0
        assert fake_rpc.methods()[-2:] == ["store", "close_wallet"]

    def test_open_wallet_validation(self, wallet, fake_rpc):
        with pytest.raises(ValidationError):
            wallet.open_wallet("", "secret")
        assert fake_rpc.calls == []

    def test_get_accounts(self, wallet, fake_rpc):
        fake_rpc.respond("get_accounts", ACCOUNTS)
        accounts = wallet.get_accounts()

        assert [a.index for a in accounts] == [0, 1]
        assert accounts[0].label == "Primary"
        assert accounts[1].label is None
        assert wallet.address_cache.get(1, 0) == "addr1"

    def test_get_address_index(self, wallet, fake_rpc):
        fake_rpc.respond("get_address_index", {"index": {"major": 1, "minor": 4}})
        subaddress = wallet.get_address_index("addr")
        assert (subaddress.account_index, subaddress.index) == (1, 4)

    def test_foreign_address(self, wallet, fake_rpc):
        fake_rpc.respond("get_address_index", RemoteCallError("Address doesn't belong to the wallet", code=-2))
        with pytest.raises(AddressNotFoundError) as exc_info:
            wallet.get_address_index("stranger")
        assert exc_info.value.address == "stranger"

    def test_other_address_errors_propagate(self, wallet, fake_rpc):
        fake_rpc.respond("get_address_index", RemoteCallError("Invalid address", code=-1))
        with pytest.raises(RemoteCallError):
            wallet.get_address_index("junk")

    def test_unsupported(self, wallet, fake_rpc):
        with pytest.raises(UnsupportedError):
            wallet.get_seed()
        with pytest.raises(UnsupportedError):
            wallet.get_chain_height()
        with pytest.raises(UnsupportedError):
            wallet.sync(end_height=100)
        with pytest.raises(UnsupportedError):
            wallet.sync(listener=object())
        assert fake_rpc.calls == []

    def test_sync(self, wallet, fake_rpc):
        fake_rpc.respond("refresh", {"blocks_fetched": 12, "received_money": True})
        result = wallet.sync(start_height=50)

        assert result.num_blocks_fetched == 12
        assert result.received_money is True
        assert fake_rpc.params_of("refresh") == [{"start_height": 50}]

    def test_address_refetched_for_unknown_subaddress(self, wallet, fake_rpc):
        fake_rpc.respond("get_accounts", ACCOUNTS)
        fake_rpc.respond("get_address", {"addresses": [
            {"address_index": 0, "address": "addr0"},
            {"address_index": 5, "address": "addr0-5"},
        ]})
        wallet.get_accounts()
        assert wallet.address_cache.has_account(0)

        assert wallet.get_address(0, 0) == "addr0"
        assert fake_rpc.methods() == ["get_accounts"]
        assert wallet.get_address(0, 5) == "addr0-5"
        assert fake_rpc.methods() == ["get_accounts", "get_address"]

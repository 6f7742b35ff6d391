import copy

import pytest

from reconlib.core.wallet import WalletRpc


class FakeRpc:
    """Scripted stand-in for RpcConnection that records every call"""

    def __init__(self):
        self.calls = []
        self.responses = {}

    def respond(self, method, *results):
        """Queue results for a method; the last one is repeated for later calls"""
        self.responses.setdefault(method, []).extend(results)

    def call(self, method, params=None):
        self.calls.append((method, dict(params or {})))
        queue = self.responses.get(method)
        if not queue:
            return {}
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(params or {})
        return copy.deepcopy(result)

    def methods(self):
        return [method for method, _ in self.calls]

    def params_of(self, method):
        return [params for name, params in self.calls if name == method]


@pytest.fixture
def fake_rpc():
    return FakeRpc()


@pytest.fixture
def wallet(fake_rpc):
    """Wallet client wired to the scripted fake gateway"""
    return WalletRpc(fake_rpc)


def transfer_record(tx_type, txid, amount=100, height=None, **fields):
    """Raw get_transfers record"""
    record = {"type": tx_type, "txid": txid, "amount": amount, "fee": 1, "unlock_time": 0,
              "payment_id": "0000000000000000", "note": ""}
    if height is not None:
        record["height"] = height
        record["timestamp"] = 1600000000 + height
    record.update(fields)
    return record


def output_record(txid, key_image, amount=50, account=0, subaddress=0, height=100, spent=False, global_index=1):
    """Raw incoming_transfers record"""
    return {
        "amount": amount,
        "spent": spent,
        "global_index": global_index,
        "tx_hash": txid,
        "subaddr_index": {"major": account, "minor": subaddress},
        "key_image": key_image,
        "block_height": height,
        "unlocked": True,
        "frozen": False,
    }


@pytest.fixture
def sample_transfers():
    """get_transfers response with one incoming, one outgoing and one pool tx"""
    return {
        "in": [transfer_record("in", "A", amount=500, height=100, address="addr0-1",
                               subaddr_index={"major": 0, "minor": 1},
                               subaddr_indices=[{"major": 0, "minor": 1}])],
        "out": [transfer_record("out", "B", amount=200, height=100,
                                subaddr_indices=[{"major": 0, "minor": 0}],
                                destinations=[{"address": "ext1", "amount": 200}])],
        "pool": [transfer_record("pool", "C", amount=70, subaddr_indices=[{"major": 1, "minor": 0}],
                                 address="addr1-0")],
    }

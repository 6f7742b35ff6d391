# reconlib/cli.py
import argparse
import os
import sys

from reconlib import __version__
from reconlib.core.wallet import WalletRpc
from reconlib.exceptions import WalletError
from reconlib.transactions.filters import OutputFilter, TransferFilter, TxFilter
from reconlib.utils.console import print_error, print_info, print_success
from reconlib.utils.formatting import format_amount


def build_parser():
    parser = argparse.ArgumentParser(prog="reconlib-wallet", description="Query a wallet RPC server")
    parser.add_argument('--version', action='store_true', help='Show version')
    parser.add_argument('--url', default=os.getenv("RECONLIB_RPC_URL", "http://localhost:38083"),
                        help='Wallet RPC server URL')
    parser.add_argument('--user', help='RPC digest auth username')
    parser.add_argument('--password', help='RPC digest auth password')

    commands = parser.add_subparsers(dest='command')

    txs = commands.add_parser('txs', help='List transactions')
    txs.add_argument('--id', action='append', dest='ids', help='Transaction id (repeatable)')
    state = txs.add_mutually_exclusive_group()
    state.add_argument('--pending', action='store_true', help='Only unconfirmed transactions')
    state.add_argument('--confirmed', action='store_true', help='Only confirmed transactions')
    txs.add_argument('--outputs', action='store_true', help='Include wallet outputs')

    transfers = commands.add_parser('transfers', help='List transfers')
    transfers.add_argument('--account', type=int, help='Account index')
    direction = transfers.add_mutually_exclusive_group()
    direction.add_argument('--incoming', action='store_true', help='Only incoming transfers')
    direction.add_argument('--outgoing', action='store_true', help='Only outgoing transfers')

    outputs = commands.add_parser('outputs', help='List outputs')
    outputs.add_argument('--account', type=int, help='Account index')
    outputs.add_argument('--unspent', action='store_true', help='Only unspent outputs')
    return parser


def _run_txs(wallet, args):
    tx_filter = TxFilter(tx_ids=args.ids, include_outputs=args.outputs or None)
    if args.pending:
        tx_filter.is_confirmed = False
    elif args.confirmed:
        tx_filter.is_confirmed = True
    txs = wallet.get_txs(tx_filter)
    for tx in txs:
        height = tx.height if tx.height is not None else "-"
        print_info(f"{tx.id}  {tx.status.value:<11}  height={height}  fee={format_amount(tx.fee)}")
    return len(txs)


def _run_transfers(wallet, args):
    transfer_filter = TransferFilter(account_index=args.account)
    if args.incoming:
        transfer_filter.is_incoming = True
    elif args.outgoing:
        transfer_filter.is_outgoing = True
    transfers = wallet.get_transfers(transfer_filter)
    for transfer in transfers:
        direction = "in " if transfer.is_incoming else "out"
        print_info(f"{transfer.tx_id}  {direction}  account={transfer.account_index}  {format_amount(transfer.amount)}")
    return len(transfers)


def _run_outputs(wallet, args):
    output_filter = OutputFilter(account_index=args.account, is_spent=False if args.unspent else None)
    outputs = wallet.get_outputs(output_filter)
    for output in outputs:
        spent = "spent" if output.is_spent else "unspent"
        print_info(f"{output.key_image}  {spent:<7}  {output.account_index}/{output.subaddress_index}  "
                   f"{format_amount(output.amount)}")
    return len(outputs)


COMMANDS = {
    'txs': _run_txs,
    'transfers': _run_transfers,
    'outputs': _run_outputs,
}


def main(argv=None):
    """Command line interface for reconlib"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"reconlib v{__version__}")
        return 0
    if args.command is None:
        print("reconlib - Use 'reconlib-wallet --help' for options")
        return 0

    wallet = WalletRpc(args.url, args.user, args.password)
    try:
        count = COMMANDS[args.command](wallet, args)
    except WalletError as e:
        print_error(f"Error: {e}")
        return 1
    print_success(f"{count} result(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

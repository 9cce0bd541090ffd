"""
tlswap 명령행 도구

    tlswap run                       이벤트 감시 + 스케줄러 (환경 변수 설정)
    tlswap process-order ORDER_ID    주문 하나를 즉시 처리
    tlswap status                    라운드와 주문 통계
    tlswap create-chain ...          중첩 타임락 주문 체인 생성 (JSON 출력)
    tlswap serve [--devnet]          HTTP API
"""

import argparse
import asyncio
import json
import logging
import sys

from tlswap.errors import TlswapError, ConfigError
from tlswap.chain.builder import build_order_chain
from tlswap.chain.order import OrderChunk, OperationType, hash_to_hex
from tlswap.relayer.config import RelayerConfig
from tlswap.relayer.service import RelayerService
from tlswap.timelock.beacon import BeaconInfo, LocalBeacon
from tlswap.timelock.cipher import TimelockCipher

logger = logging.getLogger("tlswap")


def _service_from_env(require_chain=True):
    config = RelayerConfig.from_env(require_chain=require_chain)
    logger.info("Relayer %s", config.address)
    return RelayerService.from_config(config)


def cmd_run(args):
    service = _service_from_env()
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Shutting down")
        service.stop()


def cmd_process_order(args):
    service = _service_from_env()
    service.watcher.replay_history()
    receipts = service.process_order(args.order_id)
    order = service.store.get_order(args.order_id)
    print(json.dumps({
        "order": order.summary() if order else None,
        "receipts": [r.to_dict() for r in receipts or []],
    }, indent=2))
    return 0 if receipts else 1


def cmd_status(args):
    service = _service_from_env(require_chain=False)
    print(json.dumps(service.status(), indent=2))


def _parse_shares(text):
    try:
        shares = [int(s) for s in text.split(",") if s.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"정수 목록이 필요합니다: {text!r}") from None
    if not shares:
        raise argparse.ArgumentTypeError("지분이 하나 이상 필요합니다")
    return shares


def cmd_create_chain(args):
    if args.local_seed is not None:
        info = LocalBeacon.generate(seed=args.local_seed, genesis_time=args.genesis_time).info
    else:
        info = BeaconInfo.evmnet()
    cipher = TimelockCipher(info)

    start_round = args.start_round
    if start_round is None:
        start_round = info.current_round() + args.round_step
    chunks = [
        OrderChunk(
            shares_amount=shares,
            amount_out_min=args.amount_out_min,
            slippage_bps=args.slippage_bps,
            deadline=args.deadline,
            recipient=args.recipient,
            token_out=args.token_out,
            execution_fee_bps=args.execution_fee_bps,
        )
        for shares in args.shares
    ]
    chain = build_order_chain(
        cipher, chunks, args.user_key, args.previous_nonce,
        start_round=start_round, round_step=args.round_step,
        total_shares=args.total_shares, operation_type=args.operation,
    )
    print(json.dumps({
        "ciphertext": chain.head.decode("utf-8"),
        "chunk_commitments": [hash_to_hex(c) for c in chain.commitments],
        "rounds": chain.rounds,
        "hash_chain": [hash_to_hex(h) for h in chain.hash_chain],
        "token_in": args.token_in,
        "operation_type": chain.operation_type.value,
    }, indent=2))


def cmd_serve(args):
    from app import create_app

    if args.devnet:
        service = RelayerService.devnet(seed=args.seed)
    else:
        service = _service_from_env(require_chain=False)
    app = create_app(service)
    app.run(host=args.host, port=args.port)


def build_parser():
    parser = argparse.ArgumentParser(prog="tlswap", description="Timelock-encrypted order relayer")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("run", help="Watch registrations and execute orders")

    process_parser = subparsers.add_parser("process-order", help="Process one order now")
    process_parser.add_argument("order_id", help="Registered order id (0x…)")

    subparsers.add_parser("status", help="Show current round and order stats")

    chain_parser = subparsers.add_parser("create-chain", help="Build a nested order chain")
    chain_parser.add_argument("--shares", type=_parse_shares, required=True,
                              help="Comma-separated chunk shares, e.g. 30,20,50")
    chain_parser.add_argument("--total-shares", type=int)
    chain_parser.add_argument("--user-key", type=int, required=True)
    chain_parser.add_argument("--previous-nonce", type=int, default=0)
    chain_parser.add_argument("--start-round", type=int)
    chain_parser.add_argument("--round-step", type=int, default=1000)
    chain_parser.add_argument("--recipient", required=True)
    chain_parser.add_argument("--token-in", required=True)
    chain_parser.add_argument("--token-out", required=True)
    chain_parser.add_argument("--amount-out-min", type=int, default=0)
    chain_parser.add_argument("--slippage-bps", type=int, default=50)
    chain_parser.add_argument("--deadline", type=int, required=True)
    chain_parser.add_argument("--execution-fee-bps", type=int, default=0)
    chain_parser.add_argument("--operation", default=OperationType.SWAP.value,
                              choices=[t.value for t in OperationType])
    chain_parser.add_argument("--local-seed", type=int,
                              help="Encrypt to a local beacon instead of evmnet")
    chain_parser.add_argument("--genesis-time", type=int, default=0)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=5000)
    serve_parser.add_argument("--devnet", action="store_true",
                              help="Local beacon, in-memory ledger and simulated vault/DEX")
    serve_parser.add_argument("--seed", type=int)
    return parser


COMMANDS = {
    "run": cmd_run,
    "process-order": cmd_process_order,
    "status": cmd_status,
    "create-chain": cmd_create_chain,
    "serve": cmd_serve,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return handler(args) or 0
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except TlswapError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

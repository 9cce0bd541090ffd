"""
등록 이벤트 감시 (EventWatcher)
================================

1. 과거 이벤트 재생: start_block부터 최신 블록까지 batch_size(기본 1000) 블록씩
   EncryptedOrderRegistered 이벤트를 읽는다. 한 배치에서 오류가 나면
   기록하고 그 배치를 건너뛴다.
2. 실시간 감시: poll_interval마다 새 블록을 확인하여 같은 처리를 한다.

이벤트마다 암호문 헤더에서 목표 라운드("round" 또는 "timelock.targetRound")를
읽어 PendingOrder로 저장한다 (같은 주문은 한 번만 저장).
이벤트에 청크 커밋먼트가 실려 있으면 원장에도 등록한다 (멱등).

**이벤트 소스**:
  - RegistryEventSource: 같은 프로세스의 OrderRegistry
  - Web3EventSource: web3로 컨트랙트 로그를 읽고, getOrder로 커밋먼트를 조회한다
"""

import asyncio
import logging

from web3 import Web3

from tlswap.errors import TlswapError
from tlswap.chain.order import OperationType
from tlswap.relayer.store import PendingOrder
from tlswap.timelock.wire import peek_target_round

logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 1000
DEFAULT_POLL_INTERVAL = 12.0


# ─────────────────────────────────────────────────────────────────────
# 이벤트 소스
# ─────────────────────────────────────────────────────────────────────

class RegistryEventSource:
    """OrderRegistry에서 이벤트를 읽는다."""

    def __init__(self, registry):
        self.registry = registry

    def latest_block(self):
        return self.registry.latest_block()

    def get_events(self, from_block, to_block):
        return self.registry.events(from_block, to_block)

    def get_ciphertext(self, order_id):
        return self.registry.get(order_id)


REGISTRY_ABI = [
    {
        "type": "event",
        "name": "EncryptedOrderRegistered",
        "inputs": [
            {"name": "orderId", "type": "bytes32", "indexed": True},
            {"name": "ciphertextIpfs", "type": "bytes", "indexed": False},
        ],
        "anonymous": False,
    },
    {
        "type": "function",
        "name": "getEncryptedOrder",
        "inputs": [{"name": "orderId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bytes"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getOrder",
        "inputs": [{"name": "orderId", "type": "bytes32"}],
        "outputs": [
            {"name": "chunkCommitments", "type": "bytes32[]"},
            {"name": "tokenIn", "type": "address"},
            {"name": "operationType", "type": "uint8"},
        ],
        "stateMutability": "view",
    },
]

# getOrder의 operationType (uint8)
OPERATION_TYPES = (OperationType.SWAP, OperationType.LIQUIDITY)

ORDER_REGISTERED_TOPIC = Web3.to_hex(Web3.keccak(text="EncryptedOrderRegistered(bytes32,bytes)"))


class Web3EventSource:
    """컨트랙트의 EncryptedOrderRegistered 로그를 읽는다.

    Args:
        rpc_url: JSON-RPC 주소 (w3를 주면 무시)
        contract_address: 등록 컨트랙트 주소
        w3: Web3 인스턴스 (테스트에서 교체)
    """

    def __init__(self, rpc_url, contract_address, w3=None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.address, abi=REGISTRY_ABI)

    def latest_block(self):
        return self.w3.eth.block_number

    def get_events(self, from_block, to_block):
        logs = self.w3.eth.get_logs({
            "address": self.address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [ORDER_REGISTERED_TOPIC],
        })
        events = []
        for entry in logs:
            decoded = self.contract.events.EncryptedOrderRegistered().process_log(entry)
            order_id = Web3.to_hex(decoded["args"]["orderId"])
            event = {
                "event": "EncryptedOrderRegistered",
                "order_id": order_id,
                "ciphertext": bytes(decoded["args"]["ciphertextIpfs"]),
                "block_number": decoded["blockNumber"],
            }
            event.update(self.get_order_info(order_id))
            events.append(event)
        return events

    def get_order_info(self, order_id):
        """주문의 청크 커밋먼트, 입력 토큰, 작업 유형."""
        commitments, token_in, operation_type = self.contract.functions.getOrder(
            Web3.to_bytes(hexstr=order_id)
        ).call()
        return {
            "chunk_commitments": [Web3.to_hex(c) for c in commitments],
            "token_in": token_in,
            "operation_type": OPERATION_TYPES[operation_type],
        }

    def get_ciphertext(self, order_id):
        raw = self.contract.functions.getEncryptedOrder(Web3.to_bytes(hexstr=order_id)).call()
        return bytes(raw)


# ─────────────────────────────────────────────────────────────────────
# EventWatcher
# ─────────────────────────────────────────────────────────────────────

class EventWatcher:
    """등록 이벤트를 PendingOrderStore로 옮긴다.

    Args:
        source: 이벤트 소스 (latest_block, get_events)
        store: PendingOrderStore
        ledger: HashChainLedger (있으면 이벤트의 커밋먼트를 등록한다)
        start_block: 과거 이벤트 재생 시작 블록
        batch_size: 한 번에 조회할 블록 수
        poll_interval: 새 블록 확인 간격 (초)
    """

    def __init__(self, source, store, start_block=0, batch_size=DEFAULT_BATCH_SIZE,
                 poll_interval=DEFAULT_POLL_INTERVAL, ledger=None):
        if batch_size <= 0:
            raise ValueError(f"batch_size는 양수여야 합니다: {batch_size}")
        self.source = source
        self.store = store
        self.ledger = ledger
        self.start_block = start_block
        self.next_block = start_block
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self._running = False

    def handle_event(self, event):
        """이벤트 하나를 PendingOrder로 저장한다. 저장했으면 True."""
        order_id = event["order_id"]
        try:
            target_round = peek_target_round(event["ciphertext"])
        except TlswapError as e:
            logger.error("Order %s: no target round in ciphertext (%s)", order_id, e)
            return False
        if self.ledger is not None and event.get("chunk_commitments"):
            try:
                self.ledger.register_order(
                    order_id, event["chunk_commitments"], event["token_in"],
                    event.get("operation_type", OperationType.SWAP),
                )
            except (TlswapError, ValueError) as e:
                logger.error("Order %s: commitments not registered (%s)", order_id, e)
                return False
        order = PendingOrder(
            order_id, event["ciphertext"], target_round,
            registered_at=event.get("registered_at"),
            block_number=event.get("block_number", 0),
        )
        return self.store.add_order(order)

    def scan(self, from_block, to_block):
        """[from_block, to_block]을 배치 단위로 읽는다. 저장한 주문 수를 반환한다."""
        stored = 0
        start = from_block
        while start <= to_block:
            end = min(start + self.batch_size - 1, to_block)
            try:
                events = self.source.get_events(start, end)
            except Exception:
                logger.exception("Error reading blocks %d-%d, skipping batch", start, end)
                start = end + 1
                continue
            if events:
                logger.info("Found %d events in blocks %d-%d", len(events), start, end)
            for event in events:
                if self.handle_event(event):
                    stored += 1
            start = end + 1
        return stored

    def replay_history(self):
        """start_block부터 최신 블록까지 재생한다."""
        latest = self.source.latest_block()
        if self.next_block > latest:
            logger.info("No historical events (start block %d > latest %d)",
                        self.next_block, latest)
            return 0
        logger.info("Scanning blocks %d to %d", self.next_block, latest)
        stored = self.scan(self.next_block, latest)
        self.next_block = latest + 1
        return stored

    def poll_once(self):
        """마지막으로 읽은 블록 이후의 새 블록을 읽는다."""
        latest = self.source.latest_block()
        if latest < self.next_block:
            return 0
        stored = self.scan(self.next_block, latest)
        self.next_block = latest + 1
        return stored

    async def run(self):
        """과거 이벤트를 재생한 뒤 stop()이 호출될 때까지 새 블록을 감시한다."""
        loop = asyncio.get_running_loop()
        self._running = True
        logger.info("Event watcher started (start block %d, poll interval %ss)",
                    self.start_block, self.poll_interval)
        await loop.run_in_executor(None, self.replay_history)
        while self._running:
            await asyncio.sleep(self.poll_interval)
            if not self._running:
                break
            try:
                await loop.run_in_executor(None, self.poll_once)
            except Exception:
                logger.exception("Error polling for new blocks")
        logger.info("Event watcher stopped")

    def stop(self):
        self._running = False

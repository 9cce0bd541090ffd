"""
릴레이어 서비스 (RelayerService)
=================================

구성 요소를 묶어 두 개의 asyncio 작업으로 실행한다:

    EventWatcher ──▶ PendingOrderStore ◀── RoundScheduler ──▶ OrderProcessor
                                                                  │
                                   BeaconClient ◀─────────────────┤
                                   SettlementEngine ◀─────────────┘
                                     ├── HashChainLedger
                                     └── OrderExecutor (vault, dex)

실행 기반(볼트, DEX)은 주입된다. devnet()과 from_config()는
메모리 내 협력자(SimulatedVault, SimulatedDex)를 연결한다.
"""

import asyncio
import logging
import time

from tlswap.chain.executor import OrderExecutor
from tlswap.chain.ledger import HashChainLedger, open_db
from tlswap.chain.registry import OrderRegistry
from tlswap.chain.settlement import SettlementEngine
from tlswap.chain.simulated import TokenBook, SimulatedVault, SimulatedDex
from tlswap.relayer.beacon_client import BeaconClient, LocalBeaconClient
from tlswap.relayer.processor import OrderProcessor
from tlswap.relayer.scheduler import RoundScheduler, DEFAULT_CHECK_INTERVAL
from tlswap.relayer.store import PendingOrder, PendingOrderStore
from tlswap.relayer.watcher import (
    EventWatcher, RegistryEventSource, Web3EventSource, DEFAULT_POLL_INTERVAL,
)
from tlswap.timelock.beacon import BeaconInfo, LocalBeacon
from tlswap.timelock.cipher import TimelockCipher
from tlswap.timelock.wire import peek_target_round

logger = logging.getLogger(__name__)


SETTLEMENT_ACCOUNT = "0x" + "5e" * 20
DEVNET_CALLER = "0x" + "ca" * 20


class RelayerService:
    """릴레이어 구성 요소 묶음.

    속성:
        beacon, cipher, ledger, registry, executor, settlement,
        store, processor, scheduler, watcher, source
        book, vault, dex (메모리 내 협력자를 쓸 때)
    """

    def __init__(self, beacon, cipher, ledger, registry, executor, settlement, store,
                 processor, scheduler, watcher, source, book=None, vault=None, dex=None):
        self.beacon = beacon
        self.cipher = cipher
        self.ledger = ledger
        self.registry = registry
        self.executor = executor
        self.settlement = settlement
        self.store = store
        self.processor = processor
        self.scheduler = scheduler
        self.watcher = watcher
        self.source = source
        self.book = book
        self.vault = vault
        self.dex = dex

    @classmethod
    def assemble(cls, beacon, caller, ledger_db=None, store_db=None, source=None,
                 protocol_fee_bps=0, treasury=None, start_block=0,
                 check_interval=DEFAULT_CHECK_INTERVAL, poll_interval=DEFAULT_POLL_INTERVAL,
                 batch_size=1000, verify_pre_round=True, wait_for_rounds=False):
        """비콘 클라이언트와 저장소로 전체 구성을 만든다."""
        cipher = TimelockCipher(beacon.info)
        ledger = HashChainLedger(ledger_db)
        registry = OrderRegistry(ledger, cipher=cipher, verify_pre_round=verify_pre_round,
                                 db=ledger.db)

        book = TokenBook()
        vault = SimulatedVault(book, SETTLEMENT_ACCOUNT)
        dex = SimulatedDex(book, SETTLEMENT_ACCOUNT)
        executor = OrderExecutor(vault, dex, book, SETTLEMENT_ACCOUNT,
                                 protocol_fee_bps=protocol_fee_bps, treasury=treasury,
                                 clock=beacon.clock)
        settlement = SettlementEngine(ledger, executor, beacon.info, clock=beacon.clock)

        store = PendingOrderStore(store_db)
        processor = OrderProcessor(cipher, beacon, settlement, store, caller,
                                   wait_for_rounds=wait_for_rounds)
        scheduler = RoundScheduler(store, processor, beacon, check_interval=check_interval)
        if source is None:
            source = RegistryEventSource(registry)
        watcher = EventWatcher(source, store, start_block=start_block,
                               batch_size=batch_size, poll_interval=poll_interval,
                               ledger=ledger)
        return cls(beacon, cipher, ledger, registry, executor, settlement, store,
                   processor, scheduler, watcher, source, book, vault, dex)

    @classmethod
    def devnet(cls, seed=None, genesis_time=None, period=3, clock=time.time, caller=DEVNET_CALLER,
               **kwargs):
        """LocalBeacon과 메모리 DB를 쓰는 개발넷 구성."""
        if genesis_time is None:
            genesis_time = int(clock())
        local = LocalBeacon.generate(seed=seed, genesis_time=genesis_time, period=period)
        beacon = LocalBeaconClient(local, clock=clock)
        return cls.assemble(beacon, caller, **kwargs)

    @classmethod
    def from_config(cls, config):
        """RelayerConfig로 구성한다 (drand HTTP 비콘, TinyDB 파일)."""
        info = BeaconInfo.evmnet()
        info.chain_id = config.beacon_chain_id
        beacon = BeaconClient(info, base_url=config.beacon_url)
        source = None
        if config.rpc_url and config.contract_address:
            source = Web3EventSource(config.rpc_url, config.contract_address)
        return cls.assemble(
            beacon, config.address,
            ledger_db=open_db(config.ledger_file),
            store_db=open_db(config.storage_file),
            source=source,
            protocol_fee_bps=config.protocol_fee_bps,
            treasury=config.treasury,
            start_block=config.start_block,
            check_interval=config.scheduler_interval,
            poll_interval=config.poll_interval,
            batch_size=config.batch_size,
        )

    # ─── 실행 ───

    async def run(self):
        """이벤트 감시와 스케줄러를 함께 실행한다."""
        logger.info("Relayer started (current round %d)", self.beacon.current_round())
        await asyncio.gather(self.watcher.run(), self.scheduler.run())

    def stop(self):
        self.watcher.stop()
        self.scheduler.stop()

    def sync(self):
        """새 이벤트를 한 번 읽는다."""
        return self.watcher.poll_once()

    def process_order(self, order_id):
        """주문 하나를 즉시 처리한다. 저장소에 없으면 이벤트 소스에서 암호문을 가져온다.

        Returns:
            list[Receipt] 또는 None (실패, 저장소에 기록됨)
        """
        order = self.store.get_order(order_id)
        if order is None:
            ciphertext = self.source.get_ciphertext(order_id)
            order = PendingOrder(order_id, ciphertext, peek_target_round(ciphertext))
            self.store.add_order(order)
        if order.processed:
            logger.info("Order %s already processed", order_id)
            return None
        return self.scheduler.process_one(order)

    def status(self):
        return {
            "chain_id": self.beacon.info.chain_id,
            "current_round": self.beacon.current_round(),
            "orders": self.store.stats(),
            "latest_block": self.source.latest_block(),
            "next_block": self.watcher.next_block,
        }

"""
라운드 스케줄러 (RoundScheduler)
=================================

check_interval(기본 30초)마다:
  - 이전 틱이 아직 실행 중이면 건너뛴다
  - 현재 라운드 = floor((now - genesis) / period)
  - 준비된 주문(target_round <= 현재 라운드)을 라운드 순으로 하나씩 처리한다
  - 결과를 저장소에 기록한다. 주문 하나의 실패가 틱을 중단시키지 않는다.

주문 처리(페어링, 실행)는 블로킹 연산이므로 스레드 풀에서 돌린다.
"""

import asyncio
import logging

from tlswap.relayer.processor import record_failure

logger = logging.getLogger(__name__)


DEFAULT_CHECK_INTERVAL = 30.0


class RoundScheduler:
    """준비된 주문을 주기적으로 처리한다.

    Args:
        store: PendingOrderStore
        processor: OrderProcessor
        beacon: BeaconClient (현재 라운드)
        check_interval: 틱 간격 (초)
    """

    def __init__(self, store, processor, beacon, check_interval=DEFAULT_CHECK_INTERVAL):
        self.store = store
        self.processor = processor
        self.beacon = beacon
        self.check_interval = check_interval
        self.is_processing = False
        self._running = False

    def process_one(self, order):
        """주문 하나를 처리하고 결과를 기록한다. 성공하면 영수증 목록, 실패하면 None."""
        try:
            receipts = self.processor.process_order(order)
        except Exception as e:
            record_failure(self.store, order.order_id, e)
            return None
        self.store.mark_processed(order.order_id, tx_hash=receipts[0].tx_hash)
        logger.info("Order %s executed (tx %s)", order.order_id, receipts[0].tx_hash)
        return receipts

    def process_ready(self, current_round):
        """준비된 주문을 순서대로 처리한다. (성공, 실패) 개수를 반환한다."""
        succeeded = failed = 0
        for order in self.store.ready_orders(current_round):
            # 앞 주문의 중첩 청크 처리로 이미 끝났을 수 있다
            latest = self.store.get_order(order.order_id)
            if latest is None or latest.processed:
                continue
            if self.process_one(latest) is None:
                failed += 1
            else:
                succeeded += 1
        return succeeded, failed

    async def tick(self):
        """한 번 확인한다. 이전 틱이 실행 중이면 None을 반환한다."""
        if self.is_processing:
            logger.debug("Previous tick still running, skipping")
            return None
        self.is_processing = True
        try:
            current_round = self.beacon.current_round()
            ready = self.store.ready_orders(current_round)
            if not ready:
                stats = self.store.stats()
                logger.info("No ready orders (current round: %d, pending: %d)",
                            current_round, stats["pending"])
                return 0, 0
            logger.info("Found %d ready order(s) (current round: %d)",
                        len(ready), current_round)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.process_ready, current_round)
        finally:
            self.is_processing = False

    async def run(self):
        """stop()이 호출될 때까지 check_interval마다 tick을 실행한다."""
        self._running = True
        logger.info("Starting scheduler (check interval: %ss)", self.check_interval)
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in scheduler tick")
            await asyncio.sleep(self.check_interval)
        logger.info("Scheduler stopped")

    def stop(self):
        self._running = False

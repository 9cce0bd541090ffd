"""
Tests for the order processor and the round scheduler.

Covers:
- Error classification: retryable domain errors and foreign exceptions stay pending,
  structural errors are recorded as processed with an error
- process_chunk round gate and nested PendingOrder derivation
- Nested chunk scheduling: stored for a future round, failure recorded on the nested order
- Scheduler tick: re-entrancy guard, nothing ready, ready orders processed in a thread
- Resume after a chunk was settled but not recorded; orders from an external event source
"""

import asyncio

import pytest

from tlswap.errors import (
    InvalidRound, SwapFailed, InvalidOrderHash, BeaconUnavailable, IntentNotExpired,
)
from tlswap.chain.hashchain import chunk_commitment
from tlswap.chain.ledger import HashChainLedger
from tlswap.chain.registry import OrderRegistry, order_id_for
from tlswap.relayer.processor import is_retryable, record_failure, describe
from tlswap.relayer.store import PendingOrder, PendingOrderStore
from tlswap.relayer.watcher import RegistryEventSource
from tlswap.timelock.wire import peek_target_round


# ─────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def service(make_service, order_chain, addrs):
    """첫 암호문만 등록하고 감시자로 저장소에 옮긴 서비스."""
    service = make_service()
    service.registry.register(order_chain.head, order_chain.commitments, addrs.token_in)
    service.sync()
    return service


@pytest.fixture
def head_id(order_chain):
    return order_id_for(order_chain.head)


# ─────────────────────────────────────────────────────────────────────
# Error classification
# ─────────────────────────────────────────────────────────────────────

class TestErrorClassification:
    """오류 분류와 기록 테스트."""

    @pytest.mark.parametrize("exc,retryable", [
        (InvalidRound("early"), True),
        (BeaconUnavailable("down"), True),
        (SwapFailed("pool"), True),
        (IntentNotExpired("later"), True),
        (InvalidOrderHash("mismatch"), False),
        (ConnectionError("rpc"), True),
    ])
    def test_is_retryable(self, exc, retryable):
        assert is_retryable(exc) is retryable

    def test_describe(self):
        assert describe(SwapFailed("pool")) == "SwapFailed: pool"

    def test_transient_recorded(self):
        store = PendingOrderStore()
        store.add_order(PendingOrder("0x01", b"{}", 1))
        assert record_failure(store, "0x01", BeaconUnavailable("down"))
        order = store.get_order("0x01")
        assert not order.processed
        assert order.attempts == 1
        assert order.error == "BeaconUnavailable: down"

    def test_structural_recorded(self):
        store = PendingOrderStore()
        store.add_order(PendingOrder("0x01", b"{}", 1))
        assert not record_failure(store, "0x01", InvalidOrderHash("mismatch"))
        order = store.get_order("0x01")
        assert order.processed
        assert order.error == "InvalidOrderHash: mismatch"
        assert store.stats()["failed"] == 1


# ─────────────────────────────────────────────────────────────────────
# OrderProcessor
# ─────────────────────────────────────────────────────────────────────

class TestOrderProcessor:
    """복호화 + 실행 + 중첩 청크 추적 테스트."""

    def test_round_not_reached(self, service, head_id, clock, local_beacon):
        clock.at_round(local_beacon.info, 99)
        with pytest.raises(InvalidRound):
            service.processor.process_chunk(service.store.get_order(head_id))

    def test_first_chunk_schedules_next(self, service, order_chain, head_id):
        """At round 100 only chunk 0 runs; chunk 1 waits for round 110."""
        receipts = service.processor.process_order(service.store.get_order(head_id))

        assert [r.chunk_index for r in receipts] == [0]
        assert receipts[0].order_id == head_id
        nested = service.store.get_order(order_id_for(order_chain.ciphertexts[1]))
        assert nested is not None
        assert nested.registry_order_id == head_id
        assert nested.chunk_index == 1
        assert nested.target_round == 110
        assert not nested.processed
        assert service.ledger.used_nullifiers() == {order_chain.hash_chain[0]}

    def test_nested_chunks_run_when_ready(self, service, order_chain, head_id, clock,
                                          local_beacon, addrs):
        clock.at_round(local_beacon.info, 120)
        receipts = service.processor.process_order(service.store.get_order(head_id))

        assert [r.chunk_index for r in receipts] == [0, 1, 2]
        for ct in order_chain.ciphertexts[1:]:
            nested = service.store.get_order(order_id_for(ct))
            assert nested.processed and nested.tx_hash is not None
        assert service.ledger.used_nullifiers() == set(order_chain.hash_chain[:3])
        assert service.vault.escrow[addrs.token_in] == 0

    def test_nested_failure_recorded_on_nested_order(self, make_service, order_chain,
                                                     head_id, clock, local_beacon, addrs):
        """Chunk 1 needs 20 shares but only 10 remain: InsufficientFunds is structural."""
        service = make_service(escrow=40)
        service.registry.register(order_chain.head, order_chain.commitments, addrs.token_in)
        service.sync()
        clock.at_round(local_beacon.info, 120)

        receipts = service.processor.process_order(service.store.get_order(head_id))
        assert len(receipts) == 1
        nested = service.store.get_order(order_id_for(order_chain.ciphertexts[1]))
        assert nested.processed
        assert nested.error.startswith("InsufficientFunds")
        assert service.store.get_order(order_id_for(order_chain.ciphertexts[2])) is None
        assert not service.ledger.is_used(order_chain.hash_chain[1])


# ─────────────────────────────────────────────────────────────────────
# RoundScheduler
# ─────────────────────────────────────────────────────────────────────

class TestRoundScheduler:
    """스케줄러 틱 테스트."""

    def test_skips_when_busy(self, service):
        service.scheduler.is_processing = True
        assert asyncio.run(service.scheduler.tick()) is None

    def test_nothing_ready(self, service, clock, local_beacon):
        clock.at_round(local_beacon.info, 50)
        assert asyncio.run(service.scheduler.tick()) == (0, 0)
        assert not service.scheduler.is_processing

    def test_tick_processes_ready(self, service, head_id):
        assert asyncio.run(service.scheduler.tick()) == (1, 0)
        order = service.store.get_order(head_id)
        assert order.processed
        assert order.tx_hash.startswith("0x")
        assert not service.scheduler.is_processing

    def test_transient_failure_retried(self, service, head_id):
        service.dex.halted = True
        assert service.scheduler.process_ready(100) == (0, 1)
        order = service.store.get_order(head_id)
        assert not order.processed
        assert order.attempts == 1
        assert order.error.startswith("SwapFailed")

        service.dex.halted = False
        assert service.scheduler.process_ready(100) == (1, 0)
        order = service.store.get_order(head_id)
        assert order.processed
        assert order.error is None

    def test_structural_failure_not_retried(self, make_service, order_chain, head_id, addrs):
        """Commitments bound to other rounds never match the decrypted chunk."""
        service = make_service()
        wrong = [chunk_commitment(c, r + 1) for c, r in zip(order_chain.chunks, order_chain.rounds)]
        service.registry.register(order_chain.head, wrong, addrs.token_in)
        service.sync()

        assert service.scheduler.process_ready(100) == (0, 1)
        order = service.store.get_order(head_id)
        assert order.processed
        assert order.error.startswith("InvalidOrderHash")
        assert service.scheduler.process_ready(100) == (0, 0)

    def test_processed_orders_skipped(self, service, head_id):
        service.store.mark_processed(head_id, tx_hash="0xdone")
        assert service.scheduler.process_ready(100) == (0, 0)

    def test_settled_chunk_still_schedules_next(self, service, order_chain, head_id, clock,
                                                local_beacon, addrs):
        """Chunk 0 settled before the store was updated: chunk 1 is still tracked."""
        service.settlement.execute_chunk(head_id, 0, order_chain.chunks[0], 100, addrs.caller)

        assert asyncio.run(service.scheduler.tick()) == (0, 1)
        head = service.store.get_order(head_id)
        assert head.processed
        assert head.error.startswith("HashChainNodeAlreadyUsed")
        nested = service.store.get_order(order_id_for(order_chain.ciphertexts[1]))
        assert nested.target_round == 110
        assert not nested.processed

        clock.at_round(local_beacon.info, 110)
        assert service.scheduler.process_ready(110) == (1, 0)
        assert service.ledger.used_nullifiers() == set(order_chain.hash_chain[:2])

    def test_orders_from_external_source(self, make_service, order_chain, head_id, addrs):
        """Commitments arrive with the event; the local ledger learns them from the watcher."""
        external = OrderRegistry(HashChainLedger())
        external.register(order_chain.head, order_chain.commitments, addrs.token_in)
        service = make_service(source=RegistryEventSource(external))
        service.sync()

        assert service.ledger.get_order(head_id).chunk_commitments == order_chain.commitments
        assert asyncio.run(service.scheduler.tick()) == (1, 0)
        order = service.store.get_order(head_id)
        assert order.processed
        assert order.error is None


class TestNestedOrderIds:
    """중첩 청크 ID는 암호문의 keccak256이다."""

    def test_nested_order_shape(self, order_chain):
        ct = order_chain.ciphertexts[1]
        order = PendingOrder(order_id_for(ct), ct, peek_target_round(ct),
                             registry_order_id=order_id_for(order_chain.head), chunk_index=1)
        assert order.order_id != order.registry_order_id
        assert order.target_round == order_chain.rounds[1]

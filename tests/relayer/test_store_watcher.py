"""
Tests for the relayer's pending-order store, beacon client and event watcher.

Covers:
- PendingOrderStore: idempotent add, ordering, ready filter, status transitions, stats
- PendingOrder document round trip and summary
- One lock per TinyDB instance, concurrent readers and a writer on a file DB
- BeaconClient over a stub HTTP session (success, HTTP error, bad JSON, no signature)
- LocalBeaconClient: unpublished rounds, wait_for_round
- EventWatcher: batching, failing batch skipped, duplicate events, bad ciphertext,
  chunk commitments registered in the ledger
- Web3EventSource: getOrder result mapped to event fields
"""

import json
import threading
from types import SimpleNamespace

import pytest
import requests

from tlswap.errors import BeaconUnavailable
from tlswap.chain.ledger import HashChainLedger, open_db
from tlswap.chain.order import OperationType
from tlswap.chain.registry import OrderRegistry
from tlswap.relayer.beacon_client import BeaconClient, LocalBeaconClient
from tlswap.relayer.store import PendingOrder, PendingOrderStore
from tlswap.relayer.watcher import (
    EventWatcher, Web3EventSource, ORDER_REGISTERED_TOPIC, OPERATION_TYPES,
)
from tlswap.timelock.beacon import parse_signature


TOKEN = "0x" + "11" * 20


def _ct(round_number):
    return json.dumps({"round": round_number}).encode()


# ─────────────────────────────────────────────────────────────────────
# PendingOrderStore
# ─────────────────────────────────────────────────────────────────────

class TestPendingOrderStore:
    """대기 주문 저장소 테스트."""

    @pytest.fixture
    def store(self):
        return PendingOrderStore()

    def test_add_is_idempotent(self, store):
        assert store.add_order(PendingOrder("0x01", _ct(5), 5))
        assert not store.add_order(PendingOrder("0x01", _ct(9), 9))
        assert store.get_order("0x01").target_round == 5
        assert len(store.all_orders()) == 1

    def test_doc_roundtrip(self, store):
        order = PendingOrder("0x01", _ct(5), 5, block_number=3, chunk_index=1,
                             registry_order_id="0xparent")
        store.add_order(order)
        loaded = store.get_order("0x01")
        assert loaded.ciphertext == _ct(5)
        assert loaded.block_number == 3
        assert loaded.chunk_index == 1
        assert loaded.registry_order_id == "0xparent"

    def test_registry_id_defaults_to_order_id(self):
        assert PendingOrder("0x01", _ct(5), 5).registry_order_id == "0x01"

    def test_pending_sorted_by_round_then_block(self, store):
        store.add_order(PendingOrder("0xc", _ct(20), 20, block_number=1))
        store.add_order(PendingOrder("0xb", _ct(10), 10, block_number=2))
        store.add_order(PendingOrder("0xa", _ct(10), 10, block_number=1))
        assert [o.order_id for o in store.pending_orders()] == ["0xa", "0xb", "0xc"]

    def test_ready_orders(self, store):
        store.add_order(PendingOrder("0x01", _ct(10), 10))
        store.add_order(PendingOrder("0x02", _ct(20), 20))
        assert [o.order_id for o in store.ready_orders(15)] == ["0x01"]
        assert [o.order_id for o in store.ready_orders(20)] == ["0x01", "0x02"]

    def test_mark_processed(self, store):
        store.add_order(PendingOrder("0x01", _ct(10), 10))
        assert store.mark_processed("0x01", tx_hash="0xtx")
        order = store.get_order("0x01")
        assert order.processed
        assert order.tx_hash == "0xtx"
        assert order.executed_at is not None
        assert store.pending_orders() == []

    def test_success_clears_transient_error(self, store):
        store.add_order(PendingOrder("0x01", _ct(10), 10))
        store.record_transient_error("0x01", "BeaconUnavailable: timeout")
        store.mark_processed("0x01", tx_hash="0xtx")
        assert store.get_order("0x01").error is None

    def test_transient_error(self, store):
        store.add_order(PendingOrder("0x01", _ct(10), 10))
        store.record_transient_error("0x01", "first")
        store.record_transient_error("0x01", "second")
        order = store.get_order("0x01")
        assert not order.processed
        assert order.attempts == 2
        assert order.error == "second"

    def test_missing_order(self, store):
        assert not store.mark_processed("0xmissing")
        assert not store.record_transient_error("0xmissing", "x")

    def test_stats(self, store):
        for i in range(4):
            store.add_order(PendingOrder(f"0x0{i}", _ct(10), 10))
        store.mark_processed("0x00", tx_hash="0xtx")
        store.mark_processed("0x01", error="InvalidOrderHash: mismatch")
        assert store.stats() == {"total": 4, "pending": 2, "processed": 2, "failed": 1}

    def test_summary_drops_ciphertext(self):
        summary = PendingOrder("0x01", _ct(10), 10).summary()
        assert "ciphertext" not in summary
        assert summary["ciphertext_size"] == len(_ct(10))


class TestStoreThreads:
    """감시자, 스케줄러, HTTP 스레드가 같은 파일 DB를 공유한다."""

    def test_shared_lock_per_db(self):
        db = open_db()
        ledger = HashChainLedger(db)
        registry = OrderRegistry(ledger, db=db)
        store = PendingOrderStore(db)
        assert ledger._lock is registry._lock is store._lock
        assert PendingOrderStore()._lock is not store._lock

    def test_concurrent_reads_and_writes(self, tmp_path):
        path = str(tmp_path / "orders.json")
        db = open_db(path)
        store = PendingOrderStore(db)
        errors = []
        done = threading.Event()

        def writer():
            try:
                for i in range(200):
                    store.add_order(PendingOrder(f"0x{i:04x}", _ct(i), i))
                    if i % 3 == 0:
                        store.mark_processed(f"0x{i:04x}", tx_hash="0xtx")
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        def reader():
            try:
                while not done.is_set():
                    store.pending_orders()
                    store.stats()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        db.close()

        assert errors == []
        reopened = open_db(path)
        stats = PendingOrderStore(reopened).stats()
        reopened.close()
        assert stats["total"] == 200
        assert stats["processed"] == 67


# ─────────────────────────────────────────────────────────────────────
# Beacon clients
# ─────────────────────────────────────────────────────────────────────

class StubResponse:
    def __init__(self, payload=None, status=200, text=None):
        self.payload = payload
        self.status = status
        self.text = text

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.exceptions.HTTPError(f"{self.status} error")

    def json(self):
        if self.text is not None:
            return json.loads(self.text)
        return self.payload


class StubSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.exc is not None:
            raise self.exc
        return self.response


class TestBeaconClient:
    """drand HTTP 클라이언트 테스트."""

    def test_url(self, local_beacon):
        client = BeaconClient(local_beacon.info, base_url="https://beacon.test/v2/",
                              session=StubSession())
        assert client.url_for(42) == "https://beacon.test/v2/beacons/local/rounds/42"

    def test_get_signature(self, local_beacon):
        session = StubSession(StubResponse({"round": 42, "signature": local_beacon.signature_hex(42)}))
        client = BeaconClient(local_beacon.info, session=session)
        assert client.get_signature(42) == local_beacon.sign(42)
        assert session.urls[0].endswith("/rounds/42")

    def test_network_error(self, local_beacon):
        session = StubSession(exc=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(BeaconUnavailable):
            BeaconClient(local_beacon.info, session=session).fetch_signature(42)

    def test_http_error(self, local_beacon):
        session = StubSession(StubResponse(status=425))
        with pytest.raises(BeaconUnavailable):
            BeaconClient(local_beacon.info, session=session).fetch_signature(42)

    def test_bad_json(self, local_beacon):
        session = StubSession(StubResponse(text="<html>"))
        with pytest.raises(BeaconUnavailable):
            BeaconClient(local_beacon.info, session=session).fetch_signature(42)

    def test_missing_signature(self, local_beacon):
        session = StubSession(StubResponse({"round": 42}))
        with pytest.raises(BeaconUnavailable):
            BeaconClient(local_beacon.info, session=session).fetch_signature(42)

    def test_retryable(self):
        assert BeaconUnavailable.retryable


class TestLocalBeaconClient:
    """로컬 비콘 클라이언트 테스트."""

    def test_unpublished_round(self, local_beacon, clock):
        client = LocalBeaconClient(local_beacon, clock=clock)
        assert client.current_round() == 100
        with pytest.raises(BeaconUnavailable):
            client.fetch_signature(101)

    def test_published_round(self, local_beacon, clock):
        client = LocalBeaconClient(local_beacon, clock=clock)
        assert parse_signature(client.fetch_signature(100)) == local_beacon.sign(100)

    def test_wait_for_round(self, local_beacon, clock):
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            clock.now += local_beacon.info.period

        client = LocalBeaconClient(local_beacon, clock=clock, sleep=sleep, poll_interval=0.5)
        client.wait_for_round(103)
        assert client.is_round_available(103)
        assert sleeps == [0.5, 0.5, 0.5]


# ─────────────────────────────────────────────────────────────────────
# EventWatcher
# ─────────────────────────────────────────────────────────────────────

class FakeSource:
    """블록 번호 → 이벤트. failing 블록이 포함된 조회는 실패한다."""

    def __init__(self, events, latest, failing=()):
        self.events = events
        self.latest = latest
        self.failing = set(failing)
        self.calls = []

    def latest_block(self):
        return self.latest

    def get_events(self, from_block, to_block):
        self.calls.append((from_block, to_block))
        if any(from_block <= b <= to_block for b in self.failing):
            raise ConnectionError("rpc down")
        return [e for e in self.events if from_block <= e["block_number"] <= to_block]


def _event(order_id, block, round_number):
    return {"order_id": order_id, "ciphertext": _ct(round_number), "block_number": block}


class TestEventWatcher:
    """등록 이벤트 감시 테스트."""

    def test_batches(self):
        source = FakeSource([_event("0x01", 3, 10), _event("0x02", 12, 20)], latest=25)
        watcher = EventWatcher(source, PendingOrderStore(), start_block=0, batch_size=10)
        assert watcher.replay_history() == 2
        assert source.calls == [(0, 9), (10, 19), (20, 25)]
        assert watcher.next_block == 26

    def test_failing_batch_skipped(self):
        source = FakeSource([_event("0x01", 3, 10), _event("0x02", 12, 20)],
                            latest=19, failing=[15])
        store = PendingOrderStore()
        watcher = EventWatcher(source, store, batch_size=10)
        assert watcher.replay_history() == 1
        assert store.get_order("0x01") is not None
        assert store.get_order("0x02") is None

    def test_stored_fields(self):
        store = PendingOrderStore()
        watcher = EventWatcher(FakeSource([_event("0x01", 3, 10)], latest=3), store)
        watcher.replay_history()
        order = store.get_order("0x01")
        assert order.target_round == 10
        assert order.block_number == 3
        assert not order.processed

    def test_target_round_fallback(self):
        store = PendingOrderStore()
        event = {"order_id": "0x01", "block_number": 1,
                 "ciphertext": json.dumps({"timelock": {"targetRound": 33}}).encode()}
        EventWatcher(FakeSource([event], latest=1), store).replay_history()
        assert store.get_order("0x01").target_round == 33

    def test_bad_ciphertext_skipped(self):
        store = PendingOrderStore()
        events = [{"order_id": "0x01", "block_number": 1, "ciphertext": b"garbage"},
                  _event("0x02", 1, 10)]
        assert EventWatcher(FakeSource(events, latest=1), store).replay_history() == 1
        assert store.get_order("0x01") is None

    def test_duplicate_event(self):
        store = PendingOrderStore()
        watcher = EventWatcher(FakeSource([_event("0x01", 1, 10)], latest=1), store)
        assert watcher.scan(0, 1) == 1
        assert watcher.scan(0, 1) == 0

    def test_poll_once(self):
        source = FakeSource([_event("0x01", 1, 10)], latest=1)
        watcher = EventWatcher(source, PendingOrderStore())
        watcher.replay_history()
        assert watcher.poll_once() == 0

        source.events.append(_event("0x02", 2, 11))
        source.latest = 2
        assert watcher.poll_once() == 1
        assert source.calls[-1] == (2, 2)

    def test_start_block_beyond_latest(self):
        watcher = EventWatcher(FakeSource([], latest=5), PendingOrderStore(), start_block=10)
        assert watcher.replay_history() == 0
        assert watcher.next_block == 10

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            EventWatcher(FakeSource([], latest=0), PendingOrderStore(), batch_size=0)

    def test_event_topic(self):
        assert ORDER_REGISTERED_TOPIC.startswith("0x")
        assert len(ORDER_REGISTERED_TOPIC) == 66

    def test_registers_commitments(self):
        ledger = HashChainLedger()
        event = dict(_event("0x01", 1, 10), chunk_commitments=[hex(5), hex(6)],
                     token_in=TOKEN, operation_type="liquidity")
        store = PendingOrderStore()
        assert EventWatcher(FakeSource([event], latest=1), store, ledger=ledger).replay_history() == 1
        registered = ledger.get_order("0x01")
        assert registered.chunk_commitments == [5, 6]
        assert registered.operation_type is OperationType.LIQUIDITY
        assert store.get_order("0x01") is not None

    def test_conflicting_commitments_not_stored(self):
        ledger = HashChainLedger()
        ledger.register_order("0x01", [5], TOKEN)
        event = dict(_event("0x01", 1, 10), chunk_commitments=[hex(6)], token_in=TOKEN)
        store = PendingOrderStore()
        assert EventWatcher(FakeSource([event], latest=1), store, ledger=ledger).replay_history() == 0
        assert store.get_order("0x01") is None
        assert ledger.get_order("0x01").chunk_commitments == [5]


class StubCall:
    def __init__(self, value):
        self.value = value

    def call(self):
        return self.value


class StubContract:
    """getOrder(orderId) → (chunkCommitments, tokenIn, operationType)."""

    def __init__(self, order):
        self.order = order
        self.requested = []
        self.functions = SimpleNamespace(getOrder=self.get_order)

    def get_order(self, order_id):
        self.requested.append(order_id)
        return StubCall(self.order)


class TestWeb3EventSource:
    """컨트랙트 조회 결과를 이벤트 필드로 바꾼다."""

    def test_order_info(self):
        contract = StubContract(([(7).to_bytes(32, "big")], TOKEN, 1))
        w3 = SimpleNamespace(eth=SimpleNamespace(contract=lambda address, abi: contract))
        source = Web3EventSource(None, "0x" + "ab" * 20, w3=w3)

        info = source.get_order_info("0x" + "01" * 32)
        assert contract.requested == [bytes([1]) * 32]
        assert info == {
            "chunk_commitments": ["0x" + "00" * 31 + "07"],
            "token_in": TOKEN,
            "operation_type": OperationType.LIQUIDITY,
        }
        assert OPERATION_TYPES[0] is OperationType.SWAP

"""
해시 체인 원장 (HashChainLedger)
=================================

주문별 청크 커밋먼트와 소비된 nullifier(prevHash)의 권위 있는 저장소.

**verify_and_consume** (청크 하나의 실행 검증):
  1. Poseidon2(청크 파라미터, round) == chunkCommitments[chunkIndex]
     → 불일치: InvalidOrderHash, 주문/인덱스 없음: OrderChunkNotFound
  2. prevHash가 이미 소비되지 않았는가 → HashChainNodeAlreadyUsed
  3. Poseidon2(prevHash, sharesAmount) == nextHash → InvalidHashChain
  4. execute 콜백 실행 (같은 락 안에서). 예외가 나면 아무것도 기록하지 않는다.
  5. prevHash를 소비된 것으로 기록

**동시성**:
  단일 writer. 모든 읽기와 변경은 DB에 묶인 하나의 RLock (db_lock) 아래에서
  일어나므로 같은 prevHash에 대한 동시 소비는 정확히 하나만 성공한다.

**저장소**:
  TinyDB 테이블 두 개 ("orders", "nullifiers").
  파일 저장소를 쓰면 재시작 후에도 상태가 유지된다.
  큰 정수는 "0x" hex 문자열로 저장한다.
"""

import logging
import threading
import time

from tinydb import TinyDB, Query
from tinydb.storages import MemoryStorage

from tlswap.errors import (
    InvalidOrder, InvalidOrderHash, HashChainNodeAlreadyUsed,
    InvalidHashChain, OrderChunkNotFound,
)
from tlswap.chain.hashchain import chunk_commitment, next_link
from tlswap.chain.order import OperationType, hash_to_hex, normalize_address

logger = logging.getLogger(__name__)

DATA = Query()


def open_db(path=None):
    """path가 None이면 메모리 DB, 아니면 JSON 파일 DB."""
    if path is None:
        return TinyDB(storage=MemoryStorage)
    return TinyDB(path)


_locks_guard = threading.Lock()


def db_lock(db):
    """TinyDB 인스턴스에 묶인 RLock.

    TinyDB는 스레드 안전하지 않다. 같은 DB를 쓰는 모든 객체(원장, 등록소,
    대기 주문 저장소)는 읽기와 쓰기 모두 이 락 아래에서 수행한다.
    """
    with _locks_guard:
        lock = getattr(db, "_tlswap_lock", None)
        if lock is None:
            lock = threading.RLock()
            db._tlswap_lock = lock
        return lock


class LedgerOrder:
    """원장에 등록된 주문."""

    def __init__(self, order_id, chunk_commitments, token_in, operation_type,
                 registered_at):
        self.order_id = order_id
        self.chunk_commitments = chunk_commitments
        self.token_in = token_in
        self.operation_type = operation_type
        self.registered_at = registered_at

    def to_doc(self):
        return {
            "order_id": self.order_id,
            "chunk_commitments": [hash_to_hex(c) for c in self.chunk_commitments],
            "token_in": self.token_in,
            "operation_type": self.operation_type.value,
            "registered_at": self.registered_at,
        }

    @classmethod
    def from_doc(cls, doc):
        return cls(
            doc["order_id"],
            [int(c, 16) for c in doc["chunk_commitments"]],
            doc["token_in"],
            OperationType(doc["operation_type"]),
            doc["registered_at"],
        )


class HashChainLedger:
    """청크 커밋먼트와 nullifier 저장소.

    Args:
        db: TinyDB 인스턴스 (None이면 메모리 DB)
    """

    def __init__(self, db=None):
        self.db = db if db is not None else open_db()
        self.orders = self.db.table("orders")
        self.nullifiers = self.db.table("nullifiers")
        self._lock = db_lock(self.db)

    # ─── 등록 ───

    def register_order(self, order_id, chunk_commitments, token_in,
                       operation_type=OperationType.SWAP):
        """주문의 청크 커밋먼트를 등록한다.

        같은 내용으로 다시 등록하면 아무 일도 하지 않는다.

        Raises:
            InvalidOrder: 커밋먼트가 비었거나, 다른 내용으로 이미 등록된 주문
        """
        commitments = [int(c, 16) if isinstance(c, str) else int(c)
                       for c in chunk_commitments]
        if not commitments:
            raise InvalidOrder(f"주문 {order_id}: 청크 커밋먼트가 없습니다")
        order = LedgerOrder(
            order_id, commitments, normalize_address(token_in),
            OperationType.parse(operation_type), int(time.time()),
        )

        with self._lock:
            existing = self.get_order(order_id)
            if existing is not None:
                if (existing.chunk_commitments != order.chunk_commitments
                        or existing.token_in != order.token_in
                        or existing.operation_type is not order.operation_type):
                    raise InvalidOrder(f"주문 {order_id}이(가) 이미 다른 내용으로 등록되어 있습니다")
                return existing
            self.orders.insert(order.to_doc())

        logger.info("Registered order %s (%d chunks, %s)",
                    order_id, len(commitments), order.operation_type.value)
        return order

    def get_order(self, order_id):
        with self._lock:
            docs = self.orders.search(DATA.order_id == order_id)
        if not docs:
            return None
        return LedgerOrder.from_doc(docs[0])

    # ─── nullifier ───

    def is_used(self, nullifier):
        with self._lock:
            return self.nullifiers.contains(DATA.nullifier == hash_to_hex(nullifier))

    def used_nullifiers(self):
        with self._lock:
            docs = self.nullifiers.all()
        return {int(doc["nullifier"], 16) for doc in docs}

    def _mark_used(self, nullifier, order_id, chunk_index):
        self.nullifiers.insert({
            "nullifier": hash_to_hex(nullifier),
            "order_id": order_id,
            "chunk_index": chunk_index,
            "used_at": int(time.time()),
        })

    # ─── 검증 + 소비 ───

    def verify_chunk(self, order_id, chunk_index, chunk, round_number,
                     prev_hash=None, next_hash=None):
        """상태를 바꾸지 않고 검사 1~3만 수행한다. 주문 레코드를 반환한다."""
        prev_hash = chunk.prev_hash if prev_hash is None else int(prev_hash)
        next_hash = chunk.next_hash if next_hash is None else int(next_hash)

        order = self.get_order(order_id)
        if order is None:
            raise OrderChunkNotFound(f"등록되지 않은 주문입니다: {order_id}")
        if not 0 <= chunk_index < len(order.chunk_commitments):
            raise OrderChunkNotFound(
                f"주문 {order_id}에 청크 {chunk_index}이(가) 없습니다 "
                f"(청크 {len(order.chunk_commitments)}개)"
            )

        expected = order.chunk_commitments[chunk_index]
        if chunk_commitment(chunk, round_number, order.operation_type) != expected:
            raise InvalidOrderHash(
                f"주문 {order_id} 청크 {chunk_index}: 커밋먼트 불일치"
            )

        if self.is_used(prev_hash):
            raise HashChainNodeAlreadyUsed(
                f"해시 체인 노드 {hash_to_hex(prev_hash)}는 이미 사용되었습니다"
            )

        if next_link(prev_hash, chunk.shares_amount) != next_hash:
            raise InvalidHashChain(
                f"주문 {order_id} 청크 {chunk_index}: H(prevHash, shares) != nextHash"
            )
        return order

    def verify_and_consume(self, order_id, chunk_index, chunk, round_number,
                           prev_hash=None, next_hash=None, execute=None):
        """청크를 검증하고 nullifier를 소비한다.

        Args:
            order_id: 주문 ID
            chunk_index: 청크 인덱스 (0부터)
            chunk: 복호화된 OrderChunk
            round_number: 청크의 목표 라운드
            prev_hash, next_hash: 기본값은 chunk의 값
            execute: execute(order)를 락 안에서 호출한다. 예외가 나면 소비하지 않는다.

        Returns:
            execute의 반환값 (없으면 None)
        """
        prev_hash = chunk.prev_hash if prev_hash is None else int(prev_hash)
        with self._lock:
            order = self.verify_chunk(order_id, chunk_index, chunk, round_number,
                                      prev_hash, next_hash)
            result = execute(order) if execute is not None else None
            self._mark_used(prev_hash, order_id, chunk_index)

        logger.info("Consumed nullifier %s (order %s, chunk %d)",
                    hash_to_hex(prev_hash)[:18], order_id, chunk_index)
        return result

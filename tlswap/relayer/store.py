"""
대기 주문 저장소 (PendingOrderStore)
=====================================

릴레이어가 관찰한 주문(또는 중첩 청크)을 실행될 때까지 보관한다.
TinyDB 문서 하나가 주문 하나이며, 파일 저장소를 쓰면 재시작 후에도
처리 상태가 유지된다. 이벤트 감시자, 스케줄러, HTTP 요청이 서로 다른
스레드에서 같은 DB를 쓰므로 모든 접근은 db_lock 아래에서 일어난다.

상태 전이:

    add_order ──▶ processed=False ──▶ mark_processed(tx_hash)   (실행 완료)
                        │         └──▶ mark_processed(error=…)  (구조적 실패)
                        └──▶ record_transient_error             (재시도 대기)
"""

import logging
import time

from tinydb import Query

from tlswap.chain.ledger import open_db, db_lock

logger = logging.getLogger(__name__)

DATA = Query()


class PendingOrder:
    """릴레이어가 추적하는 주문 또는 중첩 청크.

    속성:
        order_id: 저장소 키 (등록 주문은 등록 ID, 중첩 청크는 keccak256(암호문))
        ciphertext: 와이어 암호문 바이트열
        target_round: 복호화 가능 라운드
        registered_at: 관찰 시각 (유닉스 초)
        block_number: 등록 이벤트의 블록 번호
        processed: 더 이상 처리하지 않음
        tx_hash: 정산 식별자
        error: 마지막 오류 메시지
        registry_order_id: 원장/등록소의 주문 ID
        chunk_index: 청크 인덱스
        executed_at: 처리 완료 시각
        attempts: 일시적 실패 횟수
    """

    def __init__(self, order_id, ciphertext, target_round, registered_at=None,
                 block_number=0, processed=False, tx_hash=None, error=None,
                 registry_order_id=None, chunk_index=0, executed_at=None, attempts=0):
        if isinstance(ciphertext, str):
            ciphertext = ciphertext.encode("utf-8")
        self.order_id = order_id
        self.ciphertext = ciphertext
        self.target_round = int(target_round)
        self.registered_at = int(time.time()) if registered_at is None else registered_at
        self.block_number = block_number
        self.processed = processed
        self.tx_hash = tx_hash
        self.error = error
        self.registry_order_id = registry_order_id or order_id
        self.chunk_index = chunk_index
        self.executed_at = executed_at
        self.attempts = attempts

    def to_doc(self):
        return {
            "order_id": self.order_id,
            "ciphertext": self.ciphertext.hex(),
            "target_round": self.target_round,
            "registered_at": self.registered_at,
            "block_number": self.block_number,
            "processed": self.processed,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "registry_order_id": self.registry_order_id,
            "chunk_index": self.chunk_index,
            "executed_at": self.executed_at,
            "attempts": self.attempts,
        }

    @classmethod
    def from_doc(cls, doc):
        fields = dict(doc)
        fields["ciphertext"] = bytes.fromhex(fields["ciphertext"])
        return cls(**fields)

    def summary(self):
        """API 응답용 (암호문 제외)."""
        doc = self.to_doc()
        doc.pop("ciphertext")
        doc["ciphertext_size"] = len(self.ciphertext)
        return doc

    def __repr__(self):
        return (f"PendingOrder({self.order_id[:18]}, round={self.target_round}, "
                f"processed={self.processed})")


class PendingOrderStore:
    """TinyDB 기반 대기 주문 저장소.

    Args:
        db: TinyDB 인스턴스 (None이면 메모리 DB)
    """

    def __init__(self, db=None):
        self.db = db if db is not None else open_db()
        self.table = self.db.table("pending_orders")
        self._lock = db_lock(self.db)

    def add_order(self, order):
        """주문을 저장한다. 이미 있으면 기존 주문을 그대로 두고 False를 반환한다."""
        with self._lock:
            if self.table.contains(DATA.order_id == order.order_id):
                return False
            self.table.insert(order.to_doc())
        logger.info("Stored order %s (target round: %d)", order.order_id, order.target_round)
        return True

    def get_order(self, order_id):
        with self._lock:
            docs = self.table.search(DATA.order_id == order_id)
        if not docs:
            return None
        return PendingOrder.from_doc(docs[0])

    def all_orders(self):
        with self._lock:
            docs = self.table.all()
        return [PendingOrder.from_doc(doc) for doc in docs]

    def pending_orders(self):
        """처리되지 않은 주문 (라운드, 블록 순)."""
        with self._lock:
            docs = self.table.search(DATA.processed == False)  # noqa: E712
        orders = [PendingOrder.from_doc(doc) for doc in docs]
        orders.sort(key=lambda o: (o.target_round, o.block_number, o.chunk_index))
        return orders

    def ready_orders(self, current_round):
        return [o for o in self.pending_orders() if o.target_round <= current_round]

    def _update(self, order_id, fields):
        with self._lock:
            updated = self.table.update(fields, DATA.order_id == order_id)
        if not updated:
            logger.warning("Order %s not found in store", order_id)
        return bool(updated)

    def mark_processed(self, order_id, tx_hash=None, error=None):
        fields = {"processed": True, "executed_at": int(time.time()), "error": error}
        if tx_hash is not None:
            fields["tx_hash"] = tx_hash
        return self._update(order_id, fields)

    def record_transient_error(self, order_id, error):
        """일시적 실패: processed=False를 유지하고 오류와 시도 횟수를 기록한다."""
        with self._lock:
            order = self.get_order(order_id)
            if order is None:
                logger.warning("Order %s not found in store", order_id)
                return False
            return self._update(order_id, {"error": error, "attempts": order.attempts + 1})

    def stats(self):
        orders = self.all_orders()
        processed = [o for o in orders if o.processed]
        return {
            "total": len(orders),
            "pending": len(orders) - len(processed),
            "processed": len(processed),
            "failed": len([o for o in processed if o.error]),
        }

"""
주문 등록소 (OrderRegistry)
============================

orderId를 첫 번째 암호문과 청크 커밋먼트에 묶는다.

**register(ciphertext, chunk_hashes, token_in, operation_type)**:
  1. 와이어 암호문을 엄격히 파싱한다 (InvalidCiphertext)
  2. 라운드 전 일관성 검증 (cipher가 있으면 기본으로 수행) e(V, G2)·e(-H, C1) == 1
  3. 커밋먼트를 원장에 등록한다
  4. 레코드를 저장하고 블록 번호가 단조 증가하는 등록 이벤트를 남긴다

orderId를 주지 않으면 keccak256(ciphertext)를 사용한다.

이벤트 감시자(EventWatcher)는 events(from_block, to_block)으로
등록 이벤트를 블록 범위 단위로 읽는다 (EncryptedOrderRegistered 로그와 같은 모양).
"""

import logging
import time

from web3 import Web3
from tinydb import Query

from tlswap.errors import InvalidCiphertext, InvalidOrder
from tlswap.chain.ledger import open_db, db_lock
from tlswap.chain.order import OperationType, normalize_address
from tlswap.timelock.wire import decode_ciphertext

logger = logging.getLogger(__name__)

DATA = Query()


def keccak_hex(data):
    """keccak256 → "0x" + 64 hex."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return "0x" + bytes(Web3.keccak(data)).hex()


def order_id_for(ciphertext):
    """암호문 바이트열의 keccak256을 주문 ID로 사용한다."""
    return keccak_hex(ciphertext)


class OrderRecord:
    """등록된 주문.

    속성:
        order_id, chunk_commitments, token_in, operation_type,
        ciphertext (bytes), block_number, registered_at, sender
    """

    def __init__(self, order_id, chunk_commitments, token_in, operation_type,
                 ciphertext, block_number, registered_at, sender=None):
        self.order_id = order_id
        self.chunk_commitments = chunk_commitments
        self.token_in = token_in
        self.operation_type = operation_type
        self.ciphertext = ciphertext
        self.block_number = block_number
        self.registered_at = registered_at
        self.sender = sender

    def to_doc(self):
        return {
            "order_id": self.order_id,
            "chunk_commitments": ["0x" + int(c).to_bytes(32, "big").hex()
                                  for c in self.chunk_commitments],
            "token_in": self.token_in,
            "operation_type": self.operation_type.value,
            "ciphertext": self.ciphertext.decode("utf-8"),
            "block_number": self.block_number,
            "registered_at": self.registered_at,
            "sender": self.sender,
        }

    @classmethod
    def from_doc(cls, doc):
        return cls(
            doc["order_id"],
            [int(c, 16) for c in doc["chunk_commitments"]],
            doc["token_in"],
            OperationType(doc["operation_type"]),
            doc["ciphertext"].encode("utf-8"),
            doc["block_number"],
            doc["registered_at"],
            doc.get("sender"),
        )


class OrderRegistry:
    """주문 등록소.

    Args:
        ledger: HashChainLedger
        cipher: TimelockCipher (verify_pre_round에 필요)
        verify_pre_round: True이면 등록 시 라운드 전 일관성을 검증한다
            (None이면 cipher가 있을 때 검증한다)
        db: TinyDB 인스턴스 (None이면 메모리 DB)
    """

    def __init__(self, ledger, cipher=None, verify_pre_round=None, db=None):
        if verify_pre_round is None:
            verify_pre_round = cipher is not None
        if verify_pre_round and cipher is None:
            raise ValueError("verify_pre_round에는 cipher가 필요합니다")
        self.ledger = ledger
        self.cipher = cipher
        self.verify_pre_round = verify_pre_round
        self.db = db if db is not None else open_db()
        self.records = self.db.table("registry")
        self._lock = db_lock(self.db)

    def latest_block(self):
        with self._lock:
            blocks = [doc["block_number"] for doc in self.records.all()]
        return max(blocks, default=0)

    def register(self, ciphertext, chunk_hashes, token_in,
                 operation_type=OperationType.SWAP, order_id=None, sender=None):
        """암호화된 주문을 등록한다.

        Args:
            ciphertext: 와이어 암호문 (bytes 또는 str)
            chunk_hashes: 청크별 커밋먼트 (int 또는 hex 문자열)
            token_in: 입력 토큰 주소
            operation_type: SWAP 또는 LIQUIDITY
            order_id: 주문 ID (기본값 keccak256(ciphertext))
            sender: 등록자 주소 (기록용)

        Returns:
            str: order_id

        Raises:
            InvalidCiphertext: 암호문 형식 오류 또는 라운드 전 검증 실패
            InvalidOrder: 커밋먼트 없음, 중복 주문 ID
        """
        if isinstance(ciphertext, str):
            ciphertext = ciphertext.encode("utf-8")
        if not ciphertext:
            raise InvalidCiphertext("빈 암호문")

        ct = decode_ciphertext(ciphertext)
        if self.verify_pre_round and not self.cipher.verify_pre_round(ct):
            raise InvalidCiphertext("라운드 전 일관성 검증 실패 (V, C1)")

        operation_type = OperationType.parse(operation_type)
        token_in = normalize_address(token_in)
        commitments = [int(c, 16) if isinstance(c, str) else int(c)
                       for c in chunk_hashes]
        if not commitments:
            raise InvalidOrder("청크 커밋먼트가 없습니다")
        if order_id is None:
            order_id = order_id_for(ciphertext)

        with self._lock:
            if self.records.contains(DATA.order_id == order_id):
                raise InvalidOrder(f"이미 등록된 주문입니다: {order_id}")
            self.ledger.register_order(order_id, commitments, token_in, operation_type)
            record = OrderRecord(
                order_id, commitments, token_in, operation_type, ciphertext,
                self.latest_block() + 1, int(time.time()), sender,
            )
            self.records.insert(record.to_doc())

        logger.info("EncryptedOrderRegistered %s (round %d, block %d)",
                    order_id, ct.target_round, record.block_number)
        return order_id

    def get_record(self, order_id):
        with self._lock:
            docs = self.records.search(DATA.order_id == order_id)
        if not docs:
            return None
        return OrderRecord.from_doc(docs[0])

    def get(self, order_id):
        """주문의 암호문 바이트열.

        Raises:
            InvalidOrder: 등록되지 않은 주문
        """
        record = self.get_record(order_id)
        if record is None:
            raise InvalidOrder(f"등록되지 않은 주문입니다: {order_id}")
        return record.ciphertext

    def events(self, from_block, to_block=None):
        """[from_block, to_block] 범위의 등록 이벤트 (블록 순)."""
        if to_block is None:
            to_block = self.latest_block()
        with self._lock:
            docs = self.records.search(
                (DATA.block_number >= from_block) & (DATA.block_number <= to_block)
            )
        docs.sort(key=lambda d: d["block_number"])
        return [
            {
                "event": "EncryptedOrderRegistered",
                "order_id": doc["order_id"],
                "ciphertext": doc["ciphertext"].encode("utf-8"),
                "block_number": doc["block_number"],
                "registered_at": doc["registered_at"],
                "sender": doc.get("sender"),
                "chunk_commitments": doc["chunk_commitments"],
                "token_in": doc["token_in"],
                "operation_type": doc["operation_type"],
            }
            for doc in docs
        ]

"""
주문 처리기 (OrderProcessor)
=============================

대기 주문 하나를 복호화하고 실행한 뒤, 평문에 중첩된 다음 청크를 따라간다.

    current = 등록된 첫 암호문
    loop:
      1. 비콘 서명 σ(round) 조회
      2. 복호화 → OrderChunk
      3. SettlementEngine.execute_chunk (라운드 게이트, 원장, 실행)
         이미 소비된 nullifier이면 다음 청크를 저장한 뒤 오류를 전파한다
      4. nextCiphertext가 없으면 종료
      5. 다음 청크를 PendingOrder(keccak256(암호문))로 저장
         라운드 미도달이면 종료 (스케줄러가 나중에 처리)
         wait_for_rounds=True이면 라운드까지 블로킹
      6. current = 다음 청크

**오류 기록** (record_failure):
  retryable 오류 (비콘/네트워크, InvalidRound, 시장 의존 실행 실패)
    → processed=False, error/attempts 갱신, 다음 틱에 재시도
  그 외 (형식, 복호화, 원장 검증, 만료)
    → processed=True, error 기록
"""

import logging

from tlswap.errors import TlswapError, InvalidRound, HashChainNodeAlreadyUsed
from tlswap.chain.order import OrderChunk
from tlswap.chain.registry import order_id_for
from tlswap.relayer.store import PendingOrder
from tlswap.timelock.wire import decode_ciphertext, peek_target_round

logger = logging.getLogger(__name__)


def is_retryable(exc):
    """도메인 오류는 retryable 속성을 따르고, 그 밖의 예외(RPC, 네트워크)는 일시적이다."""
    if isinstance(exc, TlswapError):
        return exc.retryable
    return True


def describe(exc):
    return f"{type(exc).__name__}: {exc}"


def record_failure(store, order_id, exc):
    """처리 실패를 저장소에 기록한다. 재시도 대상이면 True."""
    message = describe(exc)
    if is_retryable(exc):
        logger.warning("Order %s failed (will retry): %s", order_id, message)
        store.record_transient_error(order_id, message)
        return True
    logger.error("Order %s failed permanently: %s", order_id, message)
    store.mark_processed(order_id, error=message)
    return False


class OrderProcessor:
    """주문 복호화 + 실행 + 중첩 청크 추적.

    Args:
        cipher: TimelockCipher
        beacon: BeaconClient
        settlement: SettlementEngine
        store: PendingOrderStore
        caller: 실행 수수료를 받는 릴레이어 주소
        wait_for_rounds: True이면 다음 청크의 라운드까지 블로킹한다
        verify_signatures: True이면 복호화 전에 비콘 서명을 BLS 검증한다
    """

    def __init__(self, cipher, beacon, settlement, store, caller,
                 wait_for_rounds=False, verify_signatures=False):
        self.cipher = cipher
        self.beacon = beacon
        self.settlement = settlement
        self.store = store
        self.caller = caller
        self.wait_for_rounds = wait_for_rounds
        self.verify_signatures = verify_signatures

    def decrypt(self, ciphertext):
        """와이어 암호문을 복호화하여 (OrderChunk, round)를 반환한다."""
        ct = decode_ciphertext(ciphertext)
        signature = self.beacon.get_signature(ct.target_round)
        plaintext = self.cipher.decrypt(ct, signature, verify=self.verify_signatures)
        return OrderChunk.from_plaintext(plaintext), ct.target_round

    def _ensure_round(self, round_number):
        if self.beacon.is_round_available(round_number):
            return True
        if self.wait_for_rounds:
            self.beacon.wait_for_round(round_number)
            return True
        return False

    def process_chunk(self, order):
        """청크 하나를 처리한다. (Receipt, 다음 PendingOrder 또는 None)을 반환한다."""
        logger.info("Processing order %s chunk %d (target round %d)",
                    order.registry_order_id, order.chunk_index, order.target_round)
        if not self._ensure_round(order.target_round):
            raise InvalidRound(
                f"라운드 {order.target_round}에 아직 도달하지 않았습니다 "
                f"(현재 {self.beacon.current_round()})"
            )

        chunk, round_number = self.decrypt(order.ciphertext)
        logger.info("Decrypted chunk: shares=%d tokenOut=%s nested=%s",
                    chunk.shares_amount, chunk.token_out, chunk.next_ciphertext is not None)

        next_order = None
        if chunk.next_ciphertext is not None:
            next_order = PendingOrder(
                order_id_for(chunk.next_ciphertext),
                chunk.next_ciphertext,
                peek_target_round(chunk.next_ciphertext),
                block_number=order.block_number,
                registry_order_id=order.registry_order_id,
                chunk_index=order.chunk_index + 1,
            )

        try:
            receipt = self.settlement.execute_chunk(
                order.registry_order_id, order.chunk_index, chunk, round_number, self.caller,
            )
        except HashChainNodeAlreadyUsed:
            # 이미 정산된 청크 (저장소 갱신 전 중단 등): 다음 청크는 계속 추적한다
            if next_order is not None and self.store.add_order(next_order):
                logger.warning("Chunk %d of order %s was already settled, tracking chunk %d",
                               order.chunk_index, order.registry_order_id,
                               next_order.chunk_index)
            raise
        return receipt, next_order

    def process_order(self, order):
        """주문과 그 뒤의 중첩 청크를 가능한 데까지 처리한다.

        첫 청크의 오류는 호출자에게 전파한다. 중첩 청크의 결과는
        그 청크의 PendingOrder에 직접 기록한다.

        Returns:
            list[Receipt]: 실행된 청크의 영수증 (첫 번째가 order의 것)
        """
        receipt, next_order = self.process_chunk(order)
        receipts = [receipt]

        while next_order is not None:
            existing = self.store.get_order(next_order.order_id)
            if existing is not None and existing.processed:
                break
            self.store.add_order(next_order)
            if not self._ensure_round(next_order.target_round):
                logger.info("Nested chunk %d of order %s scheduled for round %d",
                            next_order.chunk_index, next_order.registry_order_id,
                            next_order.target_round)
                break

            current = next_order
            try:
                receipt, next_order = self.process_chunk(current)
            except Exception as e:
                record_failure(self.store, current.order_id, e)
                break
            self.store.mark_processed(current.order_id, tx_hash=receipt.tx_hash)
            receipts.append(receipt)

        return receipts

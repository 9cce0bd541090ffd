"""
청크 정산 (SettlementEngine)
=============================

릴레이어가 호출하는 실행 진입점. 하나의 직렬화된 단위로:

  1. 라운드 게이트: round > beacon.current_round(now) 이면 InvalidRound
  2. 원장 verify_and_consume (커밋먼트, nullifier, 해시 링크)
  3. 같은 락 안에서 OrderExecutor.execute
     실행이 실패하면 nullifier는 소비되지 않고 청크는 재시도할 수 있다.

**만료 청크 회수** (reclaim_expired_chunk):
  deadline이 지나 더 이상 실행할 수 없는 청크의 지분을 되돌린다.
  커밋먼트와 해시 링크가 유효해야 하고, nullifier를 소비하므로
  같은 청크를 나중에 실행하거나 두 번 회수할 수 없다.
"""

import logging
import time

from web3 import Web3

from tlswap.errors import InvalidRound, IntentNotExpired
from tlswap.chain.order import hash_to_hex, normalize_address

logger = logging.getLogger(__name__)


class Receipt:
    """정산 결과.

    속성:
        tx_hash: 정산 식별자 (keccak256)
        order_id, chunk_index, round
        result: ExecutionResult (회수이면 None)
        reclaimed: 만료 회수 여부
        settled_at: 유닉스 시각
    """

    def __init__(self, tx_hash, order_id, chunk_index, round_number, result=None,
                 reclaimed=False, settled_at=None):
        self.tx_hash = tx_hash
        self.order_id = order_id
        self.chunk_index = chunk_index
        self.round = round_number
        self.result = result
        self.reclaimed = reclaimed
        self.settled_at = settled_at

    @property
    def amount_out(self):
        return self.result.amount_out if self.result is not None else 0

    def to_dict(self):
        return {
            "tx_hash": self.tx_hash,
            "order_id": self.order_id,
            "chunk_index": self.chunk_index,
            "round": self.round,
            "result": self.result.to_dict() if self.result is not None else None,
            "reclaimed": self.reclaimed,
            "settled_at": self.settled_at,
        }


def settlement_hash(kind, order_id, chunk_index, prev_hash, actor, timestamp):
    text = f"{kind}:{order_id}:{chunk_index}:{hash_to_hex(prev_hash)}:{actor}:{timestamp}"
    return "0x" + bytes(Web3.keccak(text=text)).hex()


class SettlementEngine:
    """라운드 게이트 + 원장 + 실행기.

    Args:
        ledger: HashChainLedger
        executor: OrderExecutor
        beacon: BeaconInfo
        clock: 현재 시각 함수
    """

    def __init__(self, ledger, executor, beacon, clock=time.time):
        self.ledger = ledger
        self.executor = executor
        self.beacon = beacon
        self.clock = clock

    def _check_round(self, round_number, now):
        current = self.beacon.current_round(now)
        if round_number > current:
            raise InvalidRound(f"라운드 {round_number}에 아직 도달하지 않았습니다 (현재 {current})")

    def execute_chunk(self, order_id, chunk_index, chunk, round_number, caller, now=None):
        """복호화된 청크를 검증하고 실행한다.

        Returns:
            Receipt

        Raises:
            InvalidRound: 라운드 미도달
            LedgerError: 커밋먼트, nullifier, 해시 링크 검증 실패
            ExecutionError: 실행 실패 (nullifier는 소비되지 않음)
        """
        if now is None:
            now = self.clock()
        self._check_round(round_number, now)

        def execute(order):
            return self.executor.execute(chunk, order.token_in, order.operation_type,
                                         caller, now=now)

        result = self.ledger.verify_and_consume(
            order_id, chunk_index, chunk, round_number, execute=execute,
        )
        tx_hash = settlement_hash("execute", order_id, chunk_index, chunk.prev_hash,
                                  normalize_address(caller), int(now))
        logger.info("Settled order %s chunk %d (tx %s)", order_id, chunk_index, tx_hash[:18])
        return Receipt(tx_hash, order_id, chunk_index, round_number, result,
                       settled_at=int(now))

    def reclaim_expired_chunk(self, order_id, chunk_index, chunk, round_number,
                              beneficiary=None, now=None):
        """deadline이 지난 청크의 지분을 beneficiary(기본값 recipient)에게 돌려준다.

        Raises:
            IntentNotExpired: deadline 전
            InvalidRound: 라운드 미도달
            LedgerError: 검증 실패 또는 이미 소비된 청크
        """
        if now is None:
            now = self.clock()
        if chunk.deadline > now:
            raise IntentNotExpired(f"deadline {chunk.deadline} > now {int(now)}")
        self._check_round(round_number, now)
        beneficiary = normalize_address(beneficiary or chunk.recipient)

        def credit(order):
            self.executor.vault.credit_shares(order.token_in, chunk.shares_amount, beneficiary)

        self.ledger.verify_and_consume(
            order_id, chunk_index, chunk, round_number, execute=credit,
        )
        tx_hash = settlement_hash("reclaim", order_id, chunk_index, chunk.prev_hash,
                                  beneficiary, int(now))
        logger.info("Reclaimed %d shares of order %s chunk %d to %s",
                    chunk.shares_amount, order_id, chunk_index, beneficiary)
        return Receipt(tx_hash, order_id, chunk_index, round_number, reclaimed=True,
                       settled_at=int(now))

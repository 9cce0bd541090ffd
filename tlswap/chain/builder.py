"""
중첩 암호화 체인 생성 (클라이언트 측)
======================================

N개의 청크를 서로 다른 라운드에 암호화하되, 뒤에서부터 암호화하여
청크 i의 평문에 청크 i+1의 와이어 암호문을 넣는다.

    ct_{N-1} = Enc(chunk_{N-1},                      round_{N-1})
    ct_i     = Enc(chunk_i ‖ nextCiphertext=ct_{i+1}, round_i)

등록되는 것은 ct_0 하나와 N개의 청크 커밋먼트뿐이다.
나머지 암호문은 앞 청크가 복호화될 때 비로소 드러난다.
"""

import logging

from tlswap.errors import InvalidOrder
from tlswap.chain.hashchain import build_hash_chain, chunk_commitment
from tlswap.chain.order import OperationType
from tlswap.timelock.wire import encode_ciphertext

logger = logging.getLogger(__name__)


class OrderChain:
    """build_order_chain의 결과.

    속성:
        chunks: 해시 링크가 채워진 OrderChunk 목록 (정방향)
        rounds: 청크별 목표 라운드
        ciphertexts: 청크별 와이어 암호문 바이트열 (정방향, [0]이 등록 대상)
        hash_chain: [h_0, ..., h_N]
        commitments: 청크별 커밋먼트
        operation_type: OperationType
    """

    def __init__(self, chunks, rounds, ciphertexts, hash_chain, commitments,
                 operation_type):
        self.chunks = chunks
        self.rounds = rounds
        self.ciphertexts = ciphertexts
        self.hash_chain = hash_chain
        self.commitments = commitments
        self.operation_type = operation_type

    @property
    def head(self):
        """등록할 첫 번째 암호문."""
        return self.ciphertexts[0]

    @property
    def total_shares(self):
        return sum(c.shares_amount for c in self.chunks)

    def __len__(self):
        return len(self.chunks)


def chunk_rounds(count, start_round, round_step):
    return [start_round + i * round_step for i in range(count)]


def build_order_chain(cipher, chunks, user_key, previous_nonce, start_round=None,
                      round_step=None, rounds=None, total_shares=None,
                      operation_type=OperationType.SWAP):
    """청크 목록을 중첩 타임락 암호문 체인으로 만든다.

    Args:
        cipher: TimelockCipher
        chunks: OrderChunk 목록 (prev/next 해시는 무시되고 새로 채워진다)
        user_key, previous_nonce: 해시 체인 초기값
        start_round, round_step: 라운드 간격 지정 (rounds가 없을 때)
        rounds: 청크별 라운드를 직접 지정
        total_shares: 주어지면 청크 지분의 합과 같아야 한다
        operation_type: SWAP 또는 LIQUIDITY

    Returns:
        OrderChain

    Raises:
        InvalidOrder: 빈 청크 목록, 지분 합 불일치, 라운드 개수 불일치
    """
    if not chunks:
        raise InvalidOrder("청크가 하나 이상 필요합니다")
    operation_type = OperationType.parse(operation_type)

    if rounds is None:
        if start_round is None:
            raise InvalidOrder("start_round 또는 rounds가 필요합니다")
        rounds = chunk_rounds(len(chunks), start_round, round_step or 0)
    rounds = [int(r) for r in rounds]
    if len(rounds) != len(chunks):
        raise InvalidOrder(f"라운드 {len(rounds)}개, 청크 {len(chunks)}개")

    shares = [c.shares_amount for c in chunks]
    if total_shares is not None and sum(shares) != int(total_shares):
        raise InvalidOrder(
            f"청크 지분의 합 {sum(shares)}이 총 지분 {total_shares}과 다릅니다"
        )

    hash_chain = build_hash_chain(user_key, previous_nonce, shares)

    linked = [None] * len(chunks)
    ciphertexts = [None] * len(chunks)
    next_ct = None
    for i in reversed(range(len(chunks))):
        chunk = chunks[i].with_links(hash_chain[i], hash_chain[i + 1], next_ct)
        ct = cipher.encrypt(chunk.to_plaintext(), rounds[i])
        next_ct = encode_ciphertext(ct)
        linked[i] = chunk
        ciphertexts[i] = next_ct

    commitments = [
        chunk_commitment(chunk, rounds[i], operation_type)
        for i, chunk in enumerate(linked)
    ]
    logger.debug("Built order chain: %d chunks, rounds %s", len(linked), rounds)
    return OrderChain(linked, rounds, ciphertexts, hash_chain, commitments,
                      operation_type)

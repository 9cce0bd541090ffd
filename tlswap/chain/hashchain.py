"""
해시 체인 (Hash Chain) 과 청크 커밋먼트
=========================================

**해시 체인**: 주문의 청크들을 순서대로 묶고 재사용(replay)을 막는다.

    initial = H(userKey, previousNonce)
    h_0     = H(initial, totalShares)
    h_{i+1} = H(h_i, chunk[i].sharesAmount)

  H는 BN254 스칼라체 위의 Poseidon2 2-to-1 해시이다.
  청크 i를 실행하면 h_i가 nullifier로 소비된다.
  h_i를 모르는 제3자는 다음 링크를 위조할 수 없다.

**청크 커밋먼트**: 등록 시점에 고정되는 청크별 무결성 값.

    SWAP:      Poseidon2(shares, amountOutMin, slippageBps, deadline,
                         executionFeeBps, recipient, tokenOut, round)
    LIQUIDITY: Poseidon2(shares, amountOutMin, slippageBps, deadline,
                         executionFeeBps, recipient, tokenOut,
                         tickLower + 2²³, tickUpper + 2²³, round)

  틱은 int24이므로 2²³을 더해 음이 아닌 값으로 옮긴다.
  실행 시 복호화된 평문과 라운드로 다시 계산하여 비교한다.

사용 예시:
    >>> chain = build_hash_chain(user_key=5, previous_nonce=0, shares=[30, 20, 50])
    >>> len(chain)                                  # 4 (h0..h3)
    >>> verify_link(chain[0], 30, chain[1])         # True
"""

from tlswap.chain.order import OperationType, address_to_int
from tlswap.timelock.poseidon2 import poseidon2_hash, hash_two


TICK_OFFSET = 1 << 23


def initial_hash(user_key, previous_nonce):
    return hash_two(user_key, previous_nonce)


def chain_head(user_key, previous_nonce, total_shares):
    """h_0 = H(H(userKey, previousNonce), totalShares)"""
    return hash_two(initial_hash(user_key, previous_nonce), total_shares)


def next_link(prev_hash, shares_amount):
    """h_{i+1} = H(h_i, sharesAmount)"""
    return hash_two(prev_hash, shares_amount)


def build_hash_chain(user_key, previous_nonce, shares):
    """청크 지분 목록으로 해시 체인 [h_0, ..., h_N]을 계산한다.

    Args:
        user_key: 사용자 키 (스칼라체 원소)
        previous_nonce: 이전 nonce
        shares: 청크별 지분 목록 (길이 N)

    Returns:
        list[int]: 길이 N+1
    """
    shares = [int(s) for s in shares]
    chain = [chain_head(user_key, previous_nonce, sum(shares))]
    for amount in shares:
        chain.append(next_link(chain[-1], amount))
    return chain


def verify_link(prev_hash, shares_amount, next_hash):
    return next_link(prev_hash, shares_amount) == int(next_hash)


def chunk_commitment(chunk, round_number, operation_type=OperationType.SWAP):
    """청크 파라미터와 라운드에 대한 Poseidon2 커밋먼트.

    prevHash/nextHash와 nextCiphertext는 포함하지 않는다.
    링크는 원장이 별도로 검사한다.
    """
    operation_type = OperationType.parse(operation_type)
    values = [
        chunk.shares_amount,
        chunk.amount_out_min,
        chunk.slippage_bps,
        chunk.deadline,
        chunk.execution_fee_bps,
        address_to_int(chunk.recipient),
        address_to_int(chunk.token_out),
    ]
    if operation_type is OperationType.LIQUIDITY:
        values += [chunk.tick_lower + TICK_OFFSET, chunk.tick_upper + TICK_OFFSET]
    values.append(int(round_number))
    return poseidon2_hash(values)

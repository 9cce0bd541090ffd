"""
페어링 결과 → AES-128 키 유도 (KDF)
====================================

  1. x = SHA-256(serialize(S)) mod r        (GT 원소를 스칼라체로)
  2. k = Poseidon2([x])                      (체 친화적 해시, 회로와 동일한 연산)
  3. K = SHA-256(k를 32바이트 빅엔디안)[:16]

암호화 측 S = e(V, P)와 복호화 측 S' = e(σ, C1)이 같으면 같은 K가 나온다.
"""

import hashlib

from tlswap.timelock.field import CURVE_ORDER, serialize_gt
from tlswap.timelock.poseidon2 import poseidon2_hash


AES_KEY_SIZE = 16


def gt_to_field(element):
    """GT 원소를 스칼라체 원소로 해싱한다."""
    digest = hashlib.sha256(serialize_gt(element)).digest()
    return int.from_bytes(digest, "big") % CURVE_ORDER


def kdf(element):
    """KDF의 체(field) 단계: Poseidon2(gt_to_field(S))."""
    return poseidon2_hash([gt_to_field(element)])


def derive_aes_key(element):
    """페어링 결과에서 16바이트 AES 키를 유도한다.

    Args:
        element: FQ12 원소 (페어링 결과)

    Returns:
        bytes: 16바이트 키
    """
    k = kdf(element)
    return hashlib.sha256(k.to_bytes(32, "big")).digest()[:AES_KEY_SIZE]

"""
라운드 → G1 해시 (Try-and-Increment)
=====================================

비콘 라운드 번호를 결정론적으로 G1 위의 점 H(round)로 사상한다.
비콘 서명은 σ = s·H(round) 이므로 암호화 측과 비콘 측이 같은 사상을 써야 한다.

**알고리즘** (BN254: y² = x³ + 3, p ≡ 3 mod 4):
  1. x = SHA-256(message) mod p
  2. y² = x³ + 3 이 이차잉여(quadratic residue)인지 오일러 판정법으로 확인
     (y²)^((p-1)/2) == 1 ?
  3. 이차잉여이면 y = (y²)^((p+1)/4) mod p  (p ≡ 3 mod 4 이므로)
  4. 아니면 x ← x + 1 로 재시도 (최대 256회)

  대략 절반의 x가 성공하므로 256회 안에 실패할 확률은 2^-256 수준이다.
  소진은 HashToCurveExhausted로 명시적으로 보고한다.

  BN254 G1의 여인수(cofactor)는 1이므로 곡선 위의 모든 점이 G1에 속한다.
"""

import hashlib

from py_ecc.fields import bn128_FQ as FQ

from tlswap.errors import HashToCurveExhausted
from tlswap.timelock.field import FIELD_MODULUS, CURVE_B, is_on_g1


MAX_ATTEMPTS = 256


def encode_round(round_number):
    """라운드 번호의 정규 인코딩: 10진수 ASCII 문자열."""
    return str(int(round_number)).encode()


def hash_to_g1(message, max_attempts=MAX_ATTEMPTS):
    """바이트열을 G1 위의 점으로 사상한다.

    Args:
        message: 해싱할 바이트열
        max_attempts: 최대 시도 횟수 (기본 256)

    Returns:
        G1 점 (FQ(x), FQ(y))

    Raises:
        HashToCurveExhausted: max_attempts 안에 점을 찾지 못했을 때
    """
    p = FIELD_MODULUS
    digest = hashlib.sha256(message).digest()
    x = int.from_bytes(digest, "big") % p

    euler_exp = (p - 1) // 2
    sqrt_exp = (p + 1) // 4

    for _ in range(max_attempts):
        y2 = (pow(x, 3, p) + CURVE_B) % p
        if pow(y2, euler_exp, p) == 1:
            y = pow(y2, sqrt_exp, p)
            point = (FQ(x), FQ(y))
            if is_on_g1(point):
                return point
        x = (x + 1) % p

    raise HashToCurveExhausted(
        f"{max_attempts}회 시도 후에도 G1 점을 찾지 못했습니다"
    )


def hash_round_to_g1(round_number):
    """H(round) = hash_to_g1(str(round))."""
    return hash_to_g1(encode_round(round_number))

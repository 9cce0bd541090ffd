"""
타임락 기반 모듈: 유한체(Finite Field) 및 BN254 타원곡선 연산
==============================================================

drand `evmnet` 비콘은 BN254 (py_ecc의 bn128) 곡선을 사용한다.
이 모듈은 타임락 암호화 전체에서 사용되는 대수적 도구를 정의한다.

**유한체**:
  - FQ: 기저체 (base field), 위수 p. 곡선 좌표가 이 체 위에 있다.
  - FR: 스칼라체 (scalar field), 위수 r = curve_order.
    난수 스칼라 r, Poseidon2 해시, 해시 체인 값이 모두 이 체의 원소이다.

**그룹**:
  - G1: y² = x³ + 3 위의 점. 비콘 서명, H(round), V가 여기에 속한다.
  - G2: 트위스트 곡선 위의 점. 비콘 공개키, C1이 여기에 속한다.
  - GT: 페어링 결과 (FQ12 원소). 공유 비밀 S가 여기에 속한다.

**bn254 "bls-bn254-unchained-on-g1" 스킴**:
  서명 σ = s·H(round) ∈ G1, 공개키 P = s·G2 ∈ G2.

사용 예시:
    >>> from tlswap.timelock.field import G1, G2, ec_mul, ec_pairing
    >>> P = ec_mul(G2, 7)
    >>> ec_pairing(P, G1) == ec_pairing(G2, ec_mul(G1, 7))  # True
"""

import hashlib
import secrets

from py_ecc.fields import bn128_FQ as FQ
from py_ecc import bn128


# ─────────────────────────────────────────────────────────────────────
# 유한체
# ─────────────────────────────────────────────────────────────────────

class FR(FQ):
    """bn128 스칼라 필드 위의 유한체 원소.

    py_ecc의 FQ 클래스를 상속하여 +, -, *, /, ** 필드 연산을 제공한다.
    """
    field_modulus = bn128.curve_order


# 스칼라체 위수 r
CURVE_ORDER = bn128.curve_order

# 기저체 위수 p
FIELD_MODULUS = bn128.field_modulus

# G1 곡선 계수: y² = x³ + B
CURVE_B = 3


# ─────────────────────────────────────────────────────────────────────
# 타원곡선 상수 및 연산
# ─────────────────────────────────────────────────────────────────────

G1 = bn128.G1

G2 = bn128.G2

# 무한원점 - bn128에서 항등원은 None으로 표현
Z1 = None


def ec_mul(point, scalar):
    """타원곡선 스칼라 곱셈: scalar · point.

    Args:
        point: G1 또는 G2 위의 점
        scalar: 정수 또는 FR 원소

    Returns:
        같은 그룹의 점
    """
    if isinstance(scalar, FR):
        scalar = int(scalar)
    return bn128.multiply(point, scalar % CURVE_ORDER)


def ec_add(p1, p2):
    """타원곡선 점 덧셈: p1 + p2."""
    return bn128.add(p1, p2)


def ec_neg(point):
    """타원곡선 점의 역원: -point (y좌표 반전)."""
    return bn128.neg(point)


def ec_pairing(g2_point, g1_point):
    """쌍선형 페어링 e(G1, G2) → GT.

    주의:
        py_ecc.bn128.pairing의 인자 순서는 (G2, G1)이다.
        이 래퍼도 같은 순서를 따른다.

    Args:
        g2_point: G2 위의 점
        g1_point: G1 위의 점

    Returns:
        FQ12 원소
    """
    return bn128.pairing(g2_point, g1_point)


def gt_one():
    """GT의 항등원 (FQ12의 1)."""
    return bn128.FQ12.one()


def is_on_g1(point):
    """점이 G1 곡선 위에 있는지 확인한다. BN254 G1의 여인수는 1이다."""
    if point is None:
        return False
    return bn128.is_on_curve(point, bn128.b)


def is_on_g2(point):
    """점이 G2 트위스트 곡선 위에 있고 위수 r의 부분군에 속하는지 확인한다."""
    if point is None:
        return False
    if not bn128.is_on_curve(point, bn128.b2):
        return False
    return bn128.multiply(point, CURVE_ORDER) is None


def random_scalar():
    """[1, r) 범위의 균등 난수 스칼라."""
    return secrets.randbelow(CURVE_ORDER - 1) + 1


def scalar_from_seed(seed):
    """시드에서 결정론적으로 스칼라를 유도한다 (테스트/로컬 비콘용).

    SHA-256(str(seed)) mod r, 0이면 1로 대체한다.
    """
    h = hashlib.sha256(str(seed).encode()).digest()
    return int.from_bytes(h, "big") % CURVE_ORDER or 1


# ─────────────────────────────────────────────────────────────────────
# GT 직렬화
# ─────────────────────────────────────────────────────────────────────

def serialize_gt(element):
    """FQ12 원소를 정규(canonical) 바이트열로 직렬화한다.

    12개 계수를 각각 32바이트 빅엔디안으로 이어 붙인다 (총 384바이트).
    KDF의 입력으로 사용되므로 암호화와 복호화에서 반드시 같아야 한다.
    """
    out = bytearray()
    for c in element.coeffs:
        out.extend((int(c) % FIELD_MODULUS).to_bytes(32, "big"))
    return bytes(out)

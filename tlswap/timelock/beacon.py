"""
drand 비콘 파라미터와 라운드 산술
==================================

**BeaconInfo**:
  {genesis_time, period, public_key: G2, chain_id} (프로세스 전역, 한 번 로드).

**라운드 산술**:
  current_round(now) = floor((now - genesis_time) / period)
  round_at(ts)       = ceil((ts - genesis_time) / period)
  round_timestamp(r) = genesis_time + r · period

**점 인코딩 (hex)**:
  - 서명 (G1): x ‖ y, 각 32바이트 → 128 hex 문자
  - 공개키 (G2): 4개의 32바이트 좌표 → 256 hex 문자.
    좌표 순서가 구현마다 다르므로 (x0,x1,y0,y1), (x1,x0,y1,y0),
    (y1,y0,x1,x0), (y0,y1,x0,x1) 순으로 시도하여 곡선 위의 점을 찾는다.

**LocalBeacon**:
  로컬/테스트용 비콘. 비밀 s를 시드에서 결정론적으로 생성하고
  σ(round) = s·H(round) 서명을 발행한다 (SRS.generate(seed)와 같은 방식).

사용 예시:
    >>> beacon = LocalBeacon.generate(seed=7, genesis_time=0, period=3)
    >>> sig = beacon.sign(1000)
    >>> verify_signature(beacon.info, 1000, sig)  # True
"""

import math
import time

from py_ecc import bn128
from py_ecc.fields import bn128_FQ as FQ

from tlswap.errors import InvalidBeaconSignature, ConfigError
from tlswap.timelock.field import (
    G2, ec_mul, ec_pairing, is_on_g1, is_on_g2, scalar_from_seed, random_scalar,
)
from tlswap.timelock.hash_to_curve import hash_round_to_g1


# drand evmnet (BN254, bls-bn254-unchained-on-g1)
EVMNET_CHAIN_ID = "evmnet"
EVMNET_GENESIS_TIME = 1727521075
EVMNET_PERIOD = 3
EVMNET_PUBLIC_KEY_HEX = (
    "07e1d1d335df83fa98462005690372c643340060d205306a9aa8106b6bd0b382"
    "0557ec32c2ad488e4d4f6008f89a346f18492092ccc0d594610de2732c8b808f"
    "0095685ae3a85ba243747b1b2f426049010f6b73a0cf1d389351d5aaaa1047f6"
    "297d3a4f9749b33eb2d904c9d9ebf17224150ddd7abd7567a9bec6c74480ee0b"
)


def _strip_hex(value):
    value = value.strip()
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return value


# ─────────────────────────────────────────────────────────────────────
# 점 인코딩
# ─────────────────────────────────────────────────────────────────────

def parse_signature(signature_hex):
    """비콘 서명 hex (x ‖ y)를 G1 점으로 변환한다.

    Raises:
        InvalidBeaconSignature: 길이가 128이 아니거나, hex가 아니거나, 곡선 위에 없을 때
    """
    raw = _strip_hex(signature_hex)
    if len(raw) != 128:
        raise InvalidBeaconSignature(
            f"서명 길이가 잘못되었습니다: 128 hex 문자가 필요하지만 {len(raw)}개입니다"
        )
    try:
        x = int(raw[:64], 16)
        y = int(raw[64:], 16)
    except ValueError as e:
        raise InvalidBeaconSignature(f"서명이 hex 문자열이 아닙니다: {e}") from e

    point = (FQ(x), FQ(y))
    if not is_on_g1(point):
        raise InvalidBeaconSignature("서명이 G1 곡선 위의 점이 아닙니다")
    return point


def signature_to_hex(point):
    """G1 점 → x ‖ y hex (128 문자)."""
    return int(point[0]).to_bytes(32, "big").hex() + int(point[1]).to_bytes(32, "big").hex()


def parse_public_key(public_key_hex):
    """비콘 공개키 hex (256 문자)를 G2 점으로 변환한다.

    Raises:
        ConfigError: 어떤 좌표 순서로도 G2 점을 만들 수 없을 때
    """
    raw = _strip_hex(public_key_hex)
    if len(raw) != 256:
        raise ConfigError(
            f"공개키 길이가 잘못되었습니다: 256 hex 문자가 필요하지만 {len(raw)}개입니다"
        )
    try:
        a, b, c, d = (int(raw[i:i + 64], 16) for i in range(0, 256, 64))
    except ValueError as e:
        raise ConfigError(f"공개키가 hex 문자열이 아닙니다: {e}") from e

    # (x_c0, x_c1, y_c0, y_c1) 후보
    orderings = [
        (a, b, c, d),
        (b, a, d, c),
        (d, c, b, a),
        (c, d, a, b),
    ]
    for x0, x1, y0, y1 in orderings:
        point = (bn128.FQ2([x0, x1]), bn128.FQ2([y0, y1]))
        if is_on_g2(point):
            return point

    raise ConfigError("공개키를 G2 점으로 해석할 수 없습니다")


def public_key_to_hex(point):
    """G2 점 → x0 ‖ x1 ‖ y0 ‖ y1 hex (256 문자)."""
    coords = [point[0].coeffs[0], point[0].coeffs[1],
              point[1].coeffs[0], point[1].coeffs[1]]
    return "".join(int(c).to_bytes(32, "big").hex() for c in coords)


# ─────────────────────────────────────────────────────────────────────
# BeaconInfo
# ─────────────────────────────────────────────────────────────────────

class BeaconInfo:
    """비콘 체인 파라미터.

    속성:
        genesis_time: 라운드 0의 유닉스 시각 (초)
        period: 라운드 간격 (초)
        public_key: G2 점 P = s·G2
        chain_id: 비콘 체인 식별자 (HTTP 경로에 사용)
    """

    def __init__(self, genesis_time, period, public_key, chain_id=EVMNET_CHAIN_ID):
        if period <= 0:
            raise ConfigError(f"period는 양수여야 합니다: {period}")
        self.genesis_time = int(genesis_time)
        self.period = int(period)
        self.public_key = public_key
        self.chain_id = chain_id

    @classmethod
    def evmnet(cls):
        """drand evmnet 메인넷 파라미터."""
        return cls(
            EVMNET_GENESIS_TIME,
            EVMNET_PERIOD,
            parse_public_key(EVMNET_PUBLIC_KEY_HEX),
            EVMNET_CHAIN_ID,
        )

    @classmethod
    def from_hex(cls, genesis_time, period, public_key_hex, chain_id=EVMNET_CHAIN_ID):
        return cls(genesis_time, period, parse_public_key(public_key_hex), chain_id)

    def current_round(self, now=None):
        """현재 라운드: floor((now - genesis) / period). 제네시스 이전이면 0."""
        if now is None:
            now = time.time()
        if now < self.genesis_time:
            return 0
        return int((now - self.genesis_time) // self.period)

    def round_at(self, timestamp):
        """unlock 시각에 해당하는 라운드: ceil((ts - genesis) / period)."""
        if timestamp <= self.genesis_time:
            return 0
        return math.ceil((timestamp - self.genesis_time) / self.period)

    def round_timestamp(self, round_number):
        return self.genesis_time + int(round_number) * self.period

    def is_round_available(self, round_number, now=None):
        return int(round_number) <= self.current_round(now)

    def __repr__(self):
        return (f"BeaconInfo(chain_id={self.chain_id!r}, "
                f"genesis_time={self.genesis_time}, period={self.period})")


def verify_signature(info, round_number, signature):
    """BLS 서명 검증: e(σ, G2) == e(H(round), P).

    Args:
        info: BeaconInfo
        round_number: 서명된 라운드
        signature: G1 점

    Returns:
        bool
    """
    h = hash_round_to_g1(round_number)
    return ec_pairing(G2, signature) == ec_pairing(info.public_key, h)


# ─────────────────────────────────────────────────────────────────────
# LocalBeacon
# ─────────────────────────────────────────────────────────────────────

class LocalBeacon:
    """로컬 비콘: 비밀 s를 보유하고 라운드 서명을 직접 발행한다.

    실제 drand 네트워크는 임계값(threshold) 서명으로 s를 분산 보관한다.
    여기서는 개발넷과 테스트를 위해 단일 비밀을 사용한다.
    """

    def __init__(self, secret, info):
        self.secret = secret
        self.info = info

    @classmethod
    def generate(cls, seed=None, genesis_time=0, period=EVMNET_PERIOD,
                 chain_id="local"):
        """비밀 s와 공개키 P = s·G2를 생성한다.

        Args:
            seed: 결정론적 생성을 위한 시드. None이면 난수.
            genesis_time: 라운드 0의 시각
            period: 라운드 간격 (초)
            chain_id: 체인 식별자
        """
        if seed is not None:
            secret = scalar_from_seed(seed)
        else:
            secret = random_scalar()
        public_key = ec_mul(G2, secret)
        return cls(secret, BeaconInfo(genesis_time, period, public_key, chain_id))

    def sign(self, round_number):
        """σ(round) = s·H(round)."""
        return ec_mul(hash_round_to_g1(round_number), self.secret)

    def signature_hex(self, round_number):
        return signature_to_hex(self.sign(round_number))

import sys
import os
from types import SimpleNamespace

import pytest

# 프로젝트 루트를 sys.path에 추가
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from tlswap.chain.builder import build_order_chain
from tlswap.chain.hashchain import build_hash_chain
from tlswap.chain.order import OrderChunk
from tlswap.relayer.beacon_client import LocalBeaconClient
from tlswap.relayer.service import RelayerService
from tlswap.timelock.beacon import LocalBeacon
from tlswap.timelock.cipher import TimelockCipher


# ── 테스트 상수 ──
GENESIS_TIME = 1_700_000_000
PERIOD = 3
BEACON_SEED = 7

USER_KEY = 12345
PREVIOUS_NONCE = 0
CHAIN_SHARES = [30, 20, 50]
CHAIN_START_ROUND = 100
CHAIN_ROUND_STEP = 10

# 라운드 1000 이후까지 유효
DEADLINE = GENESIS_TIME + 1_000_000

ADDRESSES = SimpleNamespace(
    token_in="0x" + "11" * 20,
    token_out="0x" + "22" * 20,
    recipient="0x" + "33" * 20,
    caller="0x" + "44" * 20,
    treasury="0x" + "55" * 20,
    settlement="0x" + "66" * 20,
)


class FakeClock:
    """호출하면 now를 돌려주는 시계. 테스트에서 시간을 직접 옮긴다."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def at_round(self, info, round_number):
        self.now = info.round_timestamp(round_number)
        return self


def _chunk(shares, **overrides):
    fields = dict(
        shares_amount=shares,
        amount_out_min=shares * 2000,
        slippage_bps=50,
        deadline=DEADLINE,
        recipient=ADDRESSES.recipient,
        token_out=ADDRESSES.token_out,
        execution_fee_bps=10,
    )
    fields.update(overrides)
    return OrderChunk(**fields)


# ─────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def addrs():
    return ADDRESSES


@pytest.fixture
def make_chunk():
    """기본값이 채워진 OrderChunk 팩토리."""
    return _chunk


@pytest.fixture
def linked_chunks():
    """암호화 없이 해시 링크만 채운 청크 목록을 만든다 (원장/실행 테스트용).

    Returns:
        (chunks, hash_chain)
    """
    def build(shares=CHAIN_SHARES, user_key=USER_KEY, previous_nonce=PREVIOUS_NONCE,
              **overrides):
        chain = build_hash_chain(user_key, previous_nonce, shares)
        chunks = [
            _chunk(s, **overrides).with_links(chain[i], chain[i + 1])
            for i, s in enumerate(shares)
        ]
        return chunks, chain
    return build


@pytest.fixture(scope="session")
def local_beacon():
    """결정론적 로컬 비콘 (seed=7)."""
    return LocalBeacon.generate(seed=BEACON_SEED, genesis_time=GENESIS_TIME, period=PERIOD)


@pytest.fixture(scope="session")
def cipher(local_beacon):
    return TimelockCipher(local_beacon.info)


@pytest.fixture
def clock(local_beacon):
    """라운드 CHAIN_START_ROUND에 맞춰진 시계."""
    return FakeClock(local_beacon.info.round_timestamp(CHAIN_START_ROUND))


@pytest.fixture(scope="session")
def order_chain(cipher):
    """3개 청크 (30, 20, 50) 중첩 암호문 체인. 라운드 100, 110, 120."""
    chunks = [_chunk(s) for s in CHAIN_SHARES]
    return build_order_chain(
        cipher, chunks, USER_KEY, PREVIOUS_NONCE,
        start_round=CHAIN_START_ROUND, round_step=CHAIN_ROUND_STEP,
        total_shares=sum(CHAIN_SHARES),
    )


@pytest.fixture
def make_service(local_beacon, clock):
    """LocalBeaconClient와 메모리 협력자로 구성한 RelayerService 팩토리.

    볼트에는 escrow 지분(기본 100 = 100,000 token_in)이, DEX에는 1:2 풀이 준비된다.
    """
    def build(escrow=100, **kwargs):
        beacon = LocalBeaconClient(local_beacon, clock=clock)
        service = RelayerService.assemble(beacon, ADDRESSES.caller, **kwargs)
        service.vault.deposit_escrow(ADDRESSES.token_in, escrow, escrow * 1000)
        service.dex.set_rate(ADDRESSES.token_in, ADDRESSES.token_out, 2)
        service.dex.add_reserve(ADDRESSES.token_out, 10 ** 9)
        return service
    return build

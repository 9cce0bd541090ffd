"""
릴레이어 설정 (환경 변수)
==========================

  | 변수               | 기본값                     | 설명                          |
  |--------------------|----------------------------|-------------------------------|
  | RPC_URL            | (devnet이면 불필요)        | JSON-RPC 주소                 |
  | CONTRACT_ADDRESS   | (devnet이면 불필요)        | 등록 컨트랙트 주소            |
  | PRIVATE_KEY        | 필수                       | 릴레이어 서명 키 (64 hex)     |
  | START_BLOCK        | 0                          | 과거 이벤트 재생 시작 블록    |
  | SCHEDULER_INTERVAL | 30                         | 스케줄러 틱 간격 (초)         |
  | POLL_INTERVAL      | 12                         | 새 블록 확인 간격 (초)        |
  | BATCH_SIZE         | 1000                       | 이벤트 조회 블록 수           |
  | BEACON_URL         | https://api.drand.sh/v2    | 비콘 API                      |
  | BEACON_CHAIN_ID    | evmnet                     | 비콘 체인                     |
  | STORAGE_FILE       | orders.json                | 대기 주문 TinyDB 파일         |
  | LEDGER_FILE        | ledger.json                | 원장/등록소 TinyDB 파일       |
  | PROTOCOL_FEE_BPS   | 0                          | 프로토콜 수수료               |
  | TREASURY           | 없음                       | 프로토콜 수수료 수령 주소     |
"""

import os

from eth_account import Account

from tlswap.errors import ConfigError
from tlswap.relayer.beacon_client import DEFAULT_BEACON_URL
from tlswap.relayer.scheduler import DEFAULT_CHECK_INTERVAL
from tlswap.relayer.watcher import DEFAULT_BATCH_SIZE, DEFAULT_POLL_INTERVAL
from tlswap.timelock.beacon import EVMNET_CHAIN_ID


PLACEHOLDER_KEYS = {
    "",
    "your_private_key_here",
    "0x" + "0" * 64,
    "0" * 64,
}


def load_account(private_key):
    """서명 키를 검증하고 eth_account 계정을 반환한다.

    Raises:
        ConfigError: 빈 값, 자리표시자, 형식 오류
    """
    key = (private_key or "").strip()
    if key.lower() in PLACEHOLDER_KEYS:
        raise ConfigError("PRIVATE_KEY가 설정되지 않았습니다")
    raw = key[2:] if key.startswith("0x") else key
    if len(raw) != 64:
        raise ConfigError(
            f"PRIVATE_KEY는 64자 hex 문자열이어야 합니다 (0x 접두사 선택), 현재 {len(raw)}자"
        )
    try:
        return Account.from_key("0x" + raw)
    except (ValueError, TypeError) as e:
        raise ConfigError(f"PRIVATE_KEY로 계정을 만들 수 없습니다: {e}") from e


def _int_env(env, name, default):
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name}은(는) 정수여야 합니다: {value!r}") from None


def _float_env(env, name, default):
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name}은(는) 숫자여야 합니다: {value!r}") from None


class RelayerConfig:
    """릴레이어 설정 값."""

    def __init__(self, private_key, rpc_url=None, contract_address=None, start_block=0,
                 scheduler_interval=DEFAULT_CHECK_INTERVAL,
                 poll_interval=DEFAULT_POLL_INTERVAL, batch_size=DEFAULT_BATCH_SIZE,
                 beacon_url=DEFAULT_BEACON_URL, beacon_chain_id=EVMNET_CHAIN_ID,
                 storage_file="orders.json", ledger_file="ledger.json",
                 protocol_fee_bps=0, treasury=None):
        self.account = load_account(private_key)
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.start_block = start_block
        self.scheduler_interval = scheduler_interval
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.beacon_url = beacon_url
        self.beacon_chain_id = beacon_chain_id
        self.storage_file = storage_file
        self.ledger_file = ledger_file
        self.protocol_fee_bps = protocol_fee_bps
        self.treasury = treasury

        if batch_size <= 0:
            raise ConfigError(f"BATCH_SIZE는 양수여야 합니다: {batch_size}")
        if not 0 <= protocol_fee_bps <= 10_000:
            raise ConfigError(f"PROTOCOL_FEE_BPS 범위 오류: {protocol_fee_bps}")
        if protocol_fee_bps and not treasury:
            raise ConfigError("PROTOCOL_FEE_BPS를 쓰려면 TREASURY가 필요합니다")

    @property
    def address(self):
        return self.account.address

    @classmethod
    def from_env(cls, env=None, require_chain=True):
        """환경 변수에서 설정을 읽는다.

        Args:
            env: 환경 변수 dict (기본값 os.environ)
            require_chain: True이면 RPC_URL과 CONTRACT_ADDRESS가 필수
        """
        env = os.environ if env is None else env
        if require_chain:
            missing = [name for name in ("RPC_URL", "CONTRACT_ADDRESS", "PRIVATE_KEY")
                       if not env.get(name)]
            if missing:
                raise ConfigError(f"필수 환경 변수가 없습니다: {', '.join(missing)}")

        return cls(
            private_key=env.get("PRIVATE_KEY", ""),
            rpc_url=env.get("RPC_URL"),
            contract_address=env.get("CONTRACT_ADDRESS"),
            start_block=_int_env(env, "START_BLOCK", 0),
            scheduler_interval=_float_env(env, "SCHEDULER_INTERVAL", DEFAULT_CHECK_INTERVAL),
            poll_interval=_float_env(env, "POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            batch_size=_int_env(env, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
            beacon_url=env.get("BEACON_URL") or DEFAULT_BEACON_URL,
            beacon_chain_id=env.get("BEACON_CHAIN_ID") or EVMNET_CHAIN_ID,
            storage_file=env.get("STORAGE_FILE") or "orders.json",
            ledger_file=env.get("LEDGER_FILE") or "ledger.json",
            protocol_fee_bps=_int_env(env, "PROTOCOL_FEE_BPS", 0),
            treasury=env.get("TREASURY") or None,
        )

    def summary(self):
        """로그/상태 출력용 (키 제외)."""
        return {
            "relayer": self.address,
            "rpc_url": self.rpc_url,
            "contract_address": self.contract_address,
            "start_block": self.start_block,
            "scheduler_interval": self.scheduler_interval,
            "poll_interval": self.poll_interval,
            "batch_size": self.batch_size,
            "beacon_url": self.beacon_url,
            "beacon_chain_id": self.beacon_chain_id,
            "storage_file": self.storage_file,
            "ledger_file": self.ledger_file,
            "protocol_fee_bps": self.protocol_fee_bps,
            "treasury": self.treasury,
        }

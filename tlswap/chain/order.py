"""
주문 청크 (OrderChunk) 와 평문 형식
====================================

하나의 주문은 N개의 청크로 나뉘며, 각 청크는 서로 다른 비콘 라운드에
복호화된다. 청크 i의 평문에는 청크 i+1의 암호문(nextCiphertext)이
들어 있어, 등록은 첫 번째 암호문 하나로 충분하다.

**평문 JSON** (AES로 암호화되는 내용):

    {
      "sharesAmount": "30",          볼트에서 출금할 지분 (10진수 문자열)
      "amountOutMin": "950000",      목표 최소 출력 (10진수 문자열)
      "slippageBps": 50,             허용 슬리피지 (bps)
      "deadline": 1760000000,        유닉스 시각 (초)
      "recipient": "0x…",            수령 주소
      "tokenOut": "0x…",             출력 토큰
      "executionFeeBps": 10,         릴레이어 실행 수수료 (bps)
      "prevHash": "0x…",             해시 체인 링크 h_i
      "nextHash": "0x…",             해시 체인 링크 h_{i+1}
      "nextCiphertext": "{…}",       다음 청크의 와이어 암호문 (선택)
      "tickLower": -887220,          유동성 주문의 틱 범위 (선택)
      "tickUpper": 887220
    }
"""

import enum
import json

from web3 import Web3

from tlswap.errors import InvalidCiphertext, SymmetricDecryptFailed


BPS_DENOMINATOR = 10_000

# Uniswap v4 전체 범위 (tickSpacing 60 기준)
FULL_RANGE_TICK_LOWER = -887220
FULL_RANGE_TICK_UPPER = 887220


class OperationType(enum.Enum):
    SWAP = "swap"
    LIQUIDITY = "liquidity"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"알 수 없는 operation type: {value!r}") from None


def normalize_address(address):
    """"0x" + 40 hex 주소를 검증하고 소문자로 통일한다.

    대소문자가 섞인 주소는 EIP-55 체크섬이 맞아야 한다.

    Raises:
        ValueError: 주소 형식이나 체크섬이 잘못되었을 때
    """
    if not isinstance(address, str) or not address.startswith("0x") or not Web3.is_address(address):
        raise ValueError(f"잘못된 주소입니다: {address!r}")
    return address.lower()


def address_to_int(address):
    return int(normalize_address(address)[2:], 16)


def parse_field_value(value):
    """해시 값 파싱: 정수, 10진수 문자열, "0x" hex 문자열."""
    if isinstance(value, bool):
        raise ValueError("bool은 해시 값이 아닙니다")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.lower().startswith("0x"):
            return int(value, 16)
        return int(value, 10)
    raise ValueError(f"해시 값을 해석할 수 없습니다: {value!r}")


def hash_to_hex(value):
    """해시 값 → "0x" + 64 hex."""
    return "0x" + int(value).to_bytes(32, "big").hex()


class OrderChunk:
    """복호화된 청크 하나의 파라미터.

    속성:
        shares_amount: 출금할 지분
        amount_out_min: 목표 최소 출력
        slippage_bps: 허용 슬리피지 (bps)
        deadline: 만료 시각 (유닉스 초)
        recipient: 수령 주소
        token_out: 출력 토큰 주소
        execution_fee_bps: 실행 수수료 (bps)
        prev_hash: 해시 체인 h_i (이 청크의 nullifier)
        next_hash: 해시 체인 h_{i+1}
        next_ciphertext: 다음 청크의 와이어 암호문 바이트열 또는 None
        tick_lower, tick_upper: 유동성 주문의 틱 범위
    """

    _INT_FIELDS = ("shares_amount", "amount_out_min", "slippage_bps", "deadline",
                   "execution_fee_bps")

    def __init__(self, shares_amount, amount_out_min, slippage_bps, deadline,
                 recipient, token_out, execution_fee_bps, prev_hash=0, next_hash=0,
                 next_ciphertext=None, tick_lower=FULL_RANGE_TICK_LOWER,
                 tick_upper=FULL_RANGE_TICK_UPPER):
        self.shares_amount = int(shares_amount)
        self.amount_out_min = int(amount_out_min)
        self.slippage_bps = int(slippage_bps)
        self.deadline = int(deadline)
        self.recipient = normalize_address(recipient)
        self.token_out = normalize_address(token_out)
        self.execution_fee_bps = int(execution_fee_bps)
        self.prev_hash = int(prev_hash)
        self.next_hash = int(next_hash)
        if isinstance(next_ciphertext, str):
            next_ciphertext = next_ciphertext.encode("utf-8")
        self.next_ciphertext = next_ciphertext
        self.tick_lower = int(tick_lower)
        self.tick_upper = int(tick_upper)

        for name in self._INT_FIELDS:
            if getattr(self, name) < 0:
                raise ValueError(f"{name}은(는) 음수일 수 없습니다")

    def with_links(self, prev_hash, next_hash, next_ciphertext=None):
        """해시 체인 링크와 다음 암호문을 채운 사본을 반환한다."""
        return OrderChunk(
            self.shares_amount, self.amount_out_min, self.slippage_bps,
            self.deadline, self.recipient, self.token_out,
            self.execution_fee_bps, prev_hash, next_hash, next_ciphertext,
            self.tick_lower, self.tick_upper,
        )

    def replace(self, **changes):
        """필드를 바꾼 사본 (변조 테스트 등)."""
        fields = dict(
            shares_amount=self.shares_amount, amount_out_min=self.amount_out_min,
            slippage_bps=self.slippage_bps, deadline=self.deadline,
            recipient=self.recipient, token_out=self.token_out,
            execution_fee_bps=self.execution_fee_bps, prev_hash=self.prev_hash,
            next_hash=self.next_hash, next_ciphertext=self.next_ciphertext,
            tick_lower=self.tick_lower, tick_upper=self.tick_upper,
        )
        fields.update(changes)
        return OrderChunk(**fields)

    # ─── 평문 직렬화 ───

    def to_payload(self):
        payload = {
            "sharesAmount": str(self.shares_amount),
            "amountOutMin": str(self.amount_out_min),
            "slippageBps": self.slippage_bps,
            "deadline": self.deadline,
            "recipient": self.recipient,
            "tokenOut": self.token_out,
            "executionFeeBps": self.execution_fee_bps,
            "prevHash": hash_to_hex(self.prev_hash),
            "nextHash": hash_to_hex(self.next_hash),
        }
        if (self.tick_lower, self.tick_upper) != (FULL_RANGE_TICK_LOWER, FULL_RANGE_TICK_UPPER):
            payload["tickLower"] = self.tick_lower
            payload["tickUpper"] = self.tick_upper
        if self.next_ciphertext is not None:
            payload["nextCiphertext"] = self.next_ciphertext.decode("utf-8")
        return payload

    def to_plaintext(self):
        return json.dumps(self.to_payload(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_payload(cls, payload):
        """평문 dict → OrderChunk

        Raises:
            InvalidCiphertext: 필드 누락 또는 형식 오류
        """
        if not isinstance(payload, dict):
            raise InvalidCiphertext("청크 평문은 객체(dict)여야 합니다")
        required = ("sharesAmount", "amountOutMin", "slippageBps", "deadline",
                    "recipient", "tokenOut", "executionFeeBps", "prevHash", "nextHash")
        missing = [k for k in required if k not in payload]
        if missing:
            raise InvalidCiphertext(f"청크 평문 필드 누락: {missing}")
        try:
            return cls(
                shares_amount=int(payload["sharesAmount"]),
                amount_out_min=int(payload["amountOutMin"]),
                slippage_bps=int(payload["slippageBps"]),
                deadline=int(payload["deadline"]),
                recipient=payload["recipient"],
                token_out=payload["tokenOut"],
                execution_fee_bps=int(payload["executionFeeBps"]),
                prev_hash=parse_field_value(payload["prevHash"]),
                next_hash=parse_field_value(payload["nextHash"]),
                next_ciphertext=payload.get("nextCiphertext"),
                tick_lower=int(payload.get("tickLower", FULL_RANGE_TICK_LOWER)),
                tick_upper=int(payload.get("tickUpper", FULL_RANGE_TICK_UPPER)),
            )
        except (TypeError, ValueError) as e:
            raise InvalidCiphertext(f"청크 평문 형식 오류: {e}") from e

    @classmethod
    def from_plaintext(cls, plaintext):
        """복호화된 바이트열 → OrderChunk

        UTF-8/JSON이 아니면 잘못된 키로 복호화된 것으로 보고
        SymmetricDecryptFailed를 던진다.
        """
        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise SymmetricDecryptFailed(f"복호화된 평문이 JSON이 아닙니다: {e}") from e
        return cls.from_payload(payload)

    def __eq__(self, other):
        if not isinstance(other, OrderChunk):
            return NotImplemented
        return self.to_payload() == other.to_payload()

    def __repr__(self):
        return (f"OrderChunk(shares={self.shares_amount}, token_out={self.token_out}, "
                f"recipient={self.recipient}, deadline={self.deadline})")

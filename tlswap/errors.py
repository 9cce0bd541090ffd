"""
tlswap 오류 분류 (Error Taxonomy)
==================================

모든 도메인 오류는 TlswapError를 상속한다.

**retryable 속성**:
  릴레이어가 오류를 기록하는 방식을 결정한다.
  - False (구조적 오류): 같은 입력으로 다시 시도해도 결과가 같다.
    주문은 processed=True로 기록되어 더 이상 재시도하지 않는다.
  - True (일시적 오류): 네트워크, 비콘, 시장 상황 등 외부 요인.
    주문은 processed=False로 남아 다음 스케줄러 틱에서 재시도된다.

  | 분류     | 오류                                   | retryable |
  |----------|----------------------------------------|-----------|
  | 암호화   | HashToCurveExhausted                   | False     |
  | 복호화   | InvalidBeaconSignature,                | False     |
  |          | SymmetricDecryptFailed,                |           |
  |          | InvalidCiphertext                      |           |
  | 원장     | InvalidOrder, InvalidOrderHash,        | False     |
  |          | HashChainNodeAlreadyUsed,              |           |
  |          | InvalidHashChain, OrderChunkNotFound   |           |
  |          | InvalidRound                           | True      |
  | 실행     | IntentExpired, InvalidAmounts,         | False     |
  |          | InsufficientFunds                      |           |
  |          | IntentNotExpired                       | True      |
  |          | InvalidSlippage, SwapFailed,           | True      |
  |          | LiquidityProvisionFailed               |           |
  | 릴레이어 | BeaconUnavailable                      | True      |
  |          | ConfigError (시작 시 치명적)           | False     |
"""


class TlswapError(Exception):
    """tlswap 도메인 오류의 루트 클래스."""

    retryable = False


# ─────────────────────────────────────────────────────────────────────
# 암호화 / 복호화
# ─────────────────────────────────────────────────────────────────────

class HashToCurveExhausted(TlswapError):
    """try-and-increment가 256회 안에 곡선 위의 점을 찾지 못했다.

    실제로는 도달 불가능한 조건이며, 사용자 오류가 아닌 단언(assertion) 실패로 취급한다.
    """


class InvalidCiphertext(TlswapError):
    """와이어 형식의 암호문이 스키마를 만족하지 않는다."""


class DecryptionFailed(TlswapError):
    """타임락 복호화 실패 (잘못된 키, 잘못되었거나 너무 이른 서명)."""


class InvalidBeaconSignature(DecryptionFailed):
    """비콘 서명이 유효한 G1 점이 아니거나 라운드에 대한 BLS 검증에 실패했다."""


class SymmetricDecryptFailed(DecryptionFailed):
    """AES 패딩 또는 평문 형식 불일치."""


# ─────────────────────────────────────────────────────────────────────
# 해시 체인 원장
# ─────────────────────────────────────────────────────────────────────

class LedgerError(TlswapError):
    """원장 검증 실패. 상태 변경 없이 거부된다."""


class InvalidOrder(LedgerError):
    pass


class InvalidOrderHash(LedgerError):
    pass


class HashChainNodeAlreadyUsed(LedgerError):
    pass


class InvalidHashChain(LedgerError):
    pass


class OrderChunkNotFound(LedgerError):
    pass


class InvalidRound(LedgerError):
    """비콘 라운드에 아직 도달하지 않았다."""

    retryable = True


# ─────────────────────────────────────────────────────────────────────
# 실행
# ─────────────────────────────────────────────────────────────────────

class ExecutionError(TlswapError):
    """청크 실행 실패. 출금을 포함한 청크 전체가 원자적으로 취소된다."""


class IntentExpired(ExecutionError):
    pass


class IntentNotExpired(ExecutionError):
    """deadline 전에는 만료 청크를 회수할 수 없다."""

    retryable = True


class InvalidAmounts(ExecutionError):
    pass


class InsufficientFunds(ExecutionError):
    pass


class InvalidSlippage(ExecutionError):
    retryable = True


class SwapFailed(ExecutionError):
    retryable = True


class LiquidityProvisionFailed(ExecutionError):
    retryable = True


# ─────────────────────────────────────────────────────────────────────
# 릴레이어
# ─────────────────────────────────────────────────────────────────────

class BeaconUnavailable(TlswapError):
    """비콘 라운드 서명을 아직 가져올 수 없다 (미발행 또는 네트워크 오류)."""

    retryable = True


class ConfigError(TlswapError):
    """잘못된 설정. 시작 시점에 치명적이다."""

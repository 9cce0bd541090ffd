"""
주문 청크 실행기 (OrderExecutor)
=================================

검증된 청크 하나의 경제적 효과를 원자적으로 적용한다.

**SWAP**:
  1. deadline > now                                   (IntentExpired)
  2. amount   = vault.withdraw_for_amount(token_in, shares)
  3. out      = dex.swap_exact_in(token_in, token_out, amount, minAccepted)
  4. out >= amountOutMin · (10000 - slippageBps) / 10000 (InvalidSlippage)
  5. 실행 수수료 = out · executionFeeBps / 10000       → caller
     프로토콜 수수료 = out · protocolFeeBps / 10000     → treasury
     나머지                                           → recipient

**LIQUIDITY**:
  출금한 token_in에서 수수료를 먼저 떼고, 나머지를
  풀 (token_in, token_out, feeTier)의 [tickLower, tickUpper] 범위에 공급한다.
  슬리피지 검사는 공급량에 대해 같은 식으로 한다.

**원자성**:
  begin/commit/rollback을 제공하는 협력자는 실행 전에 begin,
  성공하면 commit, 어느 단계에서든 예외가 나면 rollback한다.
  따라서 실패한 청크는 출금까지 포함해 아무 흔적도 남기지 않는다.
  도메인 오류가 아닌 협력자 예외는 SwapFailed / LiquidityProvisionFailed로 감싼다.
"""

import logging
import time

from tlswap.errors import (
    TlswapError, IntentExpired, InvalidAmounts, InvalidSlippage,
    SwapFailed, LiquidityProvisionFailed,
)
from tlswap.chain.order import BPS_DENOMINATOR, OperationType, normalize_address

logger = logging.getLogger(__name__)


DEFAULT_FEE_TIER = 3000


class ExecutionResult:
    """청크 실행 결과.

    속성:
        amount_in: 볼트에서 출금한 자산
        amount_out: 스왑 출력 (LIQUIDITY는 공급량)
        execution_fee: caller에게 지급한 수수료
        protocol_fee: treasury에 지급한 수수료
        recipient_amount: recipient가 받은 양 (LIQUIDITY는 0)
        position_id: LIQUIDITY 포지션 ID
    """

    def __init__(self, amount_in, amount_out, execution_fee, protocol_fee,
                 recipient_amount, position_id=None):
        self.amount_in = amount_in
        self.amount_out = amount_out
        self.execution_fee = execution_fee
        self.protocol_fee = protocol_fee
        self.recipient_amount = recipient_amount
        self.position_id = position_id

    def to_dict(self):
        return {
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "execution_fee": self.execution_fee,
            "protocol_fee": self.protocol_fee,
            "recipient_amount": self.recipient_amount,
            "position_id": self.position_id,
        }


def min_accepted_output(amount_out_min, slippage_bps):
    return amount_out_min * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def bps_of(amount, bps):
    return amount * bps // BPS_DENOMINATOR


class OrderExecutor:
    """청크 실행기.

    Args:
        vault: withdraw_for_amount / credit_shares 제공
        dex: swap_exact_in / add_liquidity 제공
        book: transfer(token, sender, to, amount) 제공 (수수료와 수령액 지급)
        account: 출금 자산이 도착하는 정산 계정
        protocol_fee_bps: 프로토콜 수수료 (bps)
        treasury: 프로토콜 수수료 수령 주소
        fee_tier: LIQUIDITY 풀 수수료 등급
        clock: 현재 시각 함수 (테스트에서 교체)
    """

    def __init__(self, vault, dex, book, account, protocol_fee_bps=0, treasury=None,
                 fee_tier=DEFAULT_FEE_TIER, clock=time.time):
        if not 0 <= protocol_fee_bps <= BPS_DENOMINATOR:
            raise ValueError(f"protocol_fee_bps 범위 오류: {protocol_fee_bps}")
        if protocol_fee_bps and treasury is None:
            raise ValueError("protocol_fee_bps가 있으면 treasury가 필요합니다")
        self.vault = vault
        self.dex = dex
        self.book = book
        self.account = normalize_address(account)
        self.protocol_fee_bps = protocol_fee_bps
        self.treasury = normalize_address(treasury) if treasury else None
        self.fee_tier = fee_tier
        self.clock = clock

    # ─── 트랜잭션 ───

    def _participants(self):
        seen = []
        for p in (self.vault, self.dex, self.book):
            if hasattr(p, "begin") and all(p is not q for q in seen):
                seen.append(p)
        return seen

    def _begin(self):
        participants = self._participants()
        for p in participants:
            p.begin()
        return participants

    # ─── 검사 ───

    def check_amounts(self, chunk):
        if chunk.shares_amount == 0:
            raise InvalidAmounts("sharesAmount가 0입니다")
        if chunk.slippage_bps > BPS_DENOMINATOR:
            raise InvalidAmounts(f"slippageBps가 10000을 넘습니다: {chunk.slippage_bps}")
        if chunk.execution_fee_bps + self.protocol_fee_bps > BPS_DENOMINATOR:
            raise InvalidAmounts(
                f"수수료 합이 10000 bps를 넘습니다: "
                f"{chunk.execution_fee_bps} + {self.protocol_fee_bps}"
            )

    def execute(self, chunk, token_in, operation_type, caller, now=None):
        """청크 하나를 실행한다.

        Args:
            chunk: OrderChunk
            token_in: 입력(볼트) 토큰 주소
            operation_type: SWAP 또는 LIQUIDITY
            caller: 실행 수수료를 받는 릴레이어 주소
            now: 현재 시각 (기본값 clock())

        Returns:
            ExecutionResult

        Raises:
            IntentExpired, InvalidAmounts, InsufficientFunds, InvalidSlippage,
            SwapFailed, LiquidityProvisionFailed
        """
        if now is None:
            now = self.clock()
        if chunk.deadline <= now:
            raise IntentExpired(f"deadline {chunk.deadline} <= now {int(now)}")
        self.check_amounts(chunk)

        operation_type = OperationType.parse(operation_type)
        token_in = normalize_address(token_in)
        caller = normalize_address(caller)

        participants = self._begin()
        try:
            amount_in = self.vault.withdraw_for_amount(token_in, chunk.shares_amount)
            if operation_type is OperationType.SWAP:
                result = self._swap(chunk, token_in, caller, amount_in)
            else:
                result = self._provide_liquidity(chunk, token_in, caller, amount_in)
        except Exception:
            for p in reversed(participants):
                p.rollback()
            raise
        for p in participants:
            p.commit()

        logger.info("Executed %s chunk: in=%d out=%d fee=%d protocol=%d",
                    operation_type.value, result.amount_in, result.amount_out,
                    result.execution_fee, result.protocol_fee)
        return result

    def _swap(self, chunk, token_in, caller, amount_in):
        min_out = min_accepted_output(chunk.amount_out_min, chunk.slippage_bps)
        try:
            amount_out = self.dex.swap_exact_in(token_in, chunk.token_out, amount_in, min_out)
        except TlswapError:
            raise
        except Exception as e:
            raise SwapFailed(f"스왑 실패: {e}") from e

        if amount_out < min_out:
            raise InvalidSlippage(f"출력 {amount_out} < 허용 최소 {min_out}")

        execution_fee, protocol_fee, remainder = self._pay_out(
            chunk.token_out, amount_out, chunk.execution_fee_bps, caller,
        )
        self.book.transfer(chunk.token_out, self.account, chunk.recipient, remainder)
        return ExecutionResult(amount_in, amount_out, execution_fee, protocol_fee, remainder)

    def _provide_liquidity(self, chunk, token_in, caller, amount_in):
        execution_fee, protocol_fee, deposit = self._pay_out(
            token_in, amount_in, chunk.execution_fee_bps, caller,
        )
        min_deposit = min_accepted_output(chunk.amount_out_min, chunk.slippage_bps)
        if deposit < min_deposit:
            raise InvalidSlippage(f"공급량 {deposit} < 허용 최소 {min_deposit}")

        pool_key = (token_in, chunk.token_out, self.fee_tier)
        try:
            position_id = self.dex.add_liquidity(
                pool_key, (chunk.tick_lower, chunk.tick_upper), (deposit, 0),
                owner=chunk.recipient,
            )
        except TlswapError:
            raise
        except Exception as e:
            raise LiquidityProvisionFailed(f"유동성 공급 실패: {e}") from e
        return ExecutionResult(amount_in, deposit, execution_fee, protocol_fee, 0,
                               position_id)

    def _pay_out(self, token, amount, execution_fee_bps, caller):
        """수수료를 지급하고 (실행 수수료, 프로토콜 수수료, 나머지)를 반환한다."""
        execution_fee = bps_of(amount, execution_fee_bps)
        protocol_fee = bps_of(amount, self.protocol_fee_bps)
        self.book.transfer(token, self.account, caller, execution_fee)
        if protocol_fee:
            self.book.transfer(token, self.account, self.treasury, protocol_fee)
        return execution_fee, protocol_fee, amount - execution_fee - protocol_fee

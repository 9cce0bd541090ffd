"""
메모리 내 협력자 (볼트, DEX, 토큰 장부)
========================================

실제 ERC4626 볼트와 Uniswap 라우터 대신 개발넷 CLI와 테스트에서 사용한다.
OrderExecutor가 요구하는 인터페이스를 그대로 구현한다:

  Vault: withdraw_for_amount(token, shares) -> amount
         credit_shares(token, shares, beneficiary)
  DEX:   swap_exact_in(token_in, token_out, amount_in, min_out) -> amount_out
         add_liquidity(pool_key, ticks, max_amounts) -> position_id

모든 협력자는 begin / commit / rollback을 제공하여,
청크 실행 중 어느 단계에서 실패해도 출금을 포함한 전체가 되돌려진다.
"""

import copy
import logging

from tlswap.errors import InsufficientFunds, InvalidSlippage, SwapFailed

logger = logging.getLogger(__name__)


VAULT_ADDRESS = "0x" + "a0" * 20
DEX_ADDRESS = "0x" + "d0" * 20


class Transactional:
    """_snapshot_fields에 나열된 속성을 깊은 복사로 스냅샷한다."""

    _snapshot_fields = ()

    def begin(self):
        self._snapshots = getattr(self, "_snapshots", [])
        self._snapshots.append(
            {name: copy.deepcopy(getattr(self, name)) for name in self._snapshot_fields}
        )

    def commit(self):
        self._snapshots.pop()

    def rollback(self):
        state = self._snapshots.pop()
        for name, value in state.items():
            setattr(self, name, value)


class TokenBook(Transactional):
    """토큰별 잔고 장부: (token, holder) → amount."""

    _snapshot_fields = ("balances",)

    def __init__(self):
        self.balances = {}

    def balance_of(self, token, holder):
        return self.balances.get((token.lower(), holder.lower()), 0)

    def mint(self, token, holder, amount):
        key = (token.lower(), holder.lower())
        self.balances[key] = self.balances.get(key, 0) + int(amount)

    def transfer(self, token, sender, to, amount):
        amount = int(amount)
        if amount < 0:
            raise ValueError("음수 전송")
        if amount == 0:
            return
        if self.balance_of(token, sender) < amount:
            raise InsufficientFunds(
                f"{sender}의 {token} 잔고 부족: {self.balance_of(token, sender)} < {amount}"
            )
        self.balances[(token.lower(), sender.lower())] -= amount
        self.mint(token, to, amount)


class SimulatedVault(Transactional):
    """지분(share) 기반 볼트.

    주문에 묶인 지분은 escrow에 있고, 실행 시 자산으로 바뀌어
    정산 계정(settlement account)으로 옮겨진다.

    Args:
        book: TokenBook
        settlement_account: 출금 자산을 받는 계정 (OrderExecutor.account)
    """

    _snapshot_fields = ("total_shares", "escrow", "share_balances")

    def __init__(self, book, settlement_account, address=VAULT_ADDRESS):
        self.book = book
        self.settlement_account = settlement_account
        self.address = address
        self.total_shares = {}
        self.escrow = {}
        self.share_balances = {}

    def deposit_escrow(self, token, shares, assets):
        """주문용 지분과 그에 해당하는 자산을 볼트에 넣는다."""
        token = token.lower()
        self.total_shares[token] = self.total_shares.get(token, 0) + int(shares)
        self.escrow[token] = self.escrow.get(token, 0) + int(shares)
        self.book.mint(token, self.address, assets)

    def total_assets(self, token):
        return self.book.balance_of(token, self.address)

    def convert_to_assets(self, token, shares):
        token = token.lower()
        supply = self.total_shares.get(token, 0)
        if supply == 0:
            return 0
        return int(shares) * self.total_assets(token) // supply

    def withdraw_for_amount(self, token, shares):
        token = token.lower()
        shares = int(shares)
        if self.escrow.get(token, 0) < shares:
            raise InsufficientFunds(
                f"볼트 escrow 지분 부족: {self.escrow.get(token, 0)} < {shares}"
            )
        amount = self.convert_to_assets(token, shares)
        self.escrow[token] -= shares
        self.total_shares[token] -= shares
        self.book.transfer(token, self.address, self.settlement_account, amount)
        return amount

    def credit_shares(self, token, shares, beneficiary):
        """escrow 지분을 beneficiary의 지분 잔고로 돌려준다."""
        token = token.lower()
        shares = int(shares)
        if self.escrow.get(token, 0) < shares:
            raise InsufficientFunds(
                f"볼트 escrow 지분 부족: {self.escrow.get(token, 0)} < {shares}"
            )
        self.escrow[token] -= shares
        key = (token, beneficiary.lower())
        self.share_balances[key] = self.share_balances.get(key, 0) + shares

    def shares_of(self, token, holder):
        return self.share_balances.get((token.lower(), holder.lower()), 0)


class SimulatedDex(Transactional):
    """고정 환율 DEX.

    rates[(token_in, token_out)] = (분자, 분모).
    halted가 True이면 모든 호출이 실패한다 (협력자 장애 시뮬레이션).
    """

    _snapshot_fields = ("positions",)

    def __init__(self, book, trader, address=DEX_ADDRESS):
        self.book = book
        self.trader = trader
        self.address = address
        self.rates = {}
        self.positions = []
        self.halted = False

    def set_rate(self, token_in, token_out, numerator, denominator=1):
        self.rates[(token_in.lower(), token_out.lower())] = (int(numerator), int(denominator))

    def add_reserve(self, token, amount):
        self.book.mint(token, self.address, amount)

    def quote(self, token_in, token_out, amount_in):
        key = (token_in.lower(), token_out.lower())
        if key not in self.rates:
            raise SwapFailed(f"풀이 없습니다: {token_in} → {token_out}")
        num, den = self.rates[key]
        return int(amount_in) * num // den

    def swap_exact_in(self, token_in, token_out, amount_in, min_out):
        if self.halted:
            raise RuntimeError("DEX halted")
        amount_out = self.quote(token_in, token_out, amount_in)
        if amount_out < min_out:
            raise InvalidSlippage(f"출력 {amount_out} < 최소 {min_out}")
        if self.book.balance_of(token_out, self.address) < amount_out:
            raise SwapFailed(f"{token_out} 유동성 부족")
        self.book.transfer(token_in, self.trader, self.address, amount_in)
        self.book.transfer(token_out, self.address, self.trader, amount_out)
        return amount_out

    def add_liquidity(self, pool_key, ticks, max_amounts, owner=None):
        if self.halted:
            raise RuntimeError("DEX halted")
        tick_lower, tick_upper = ticks
        if tick_lower >= tick_upper:
            raise ValueError(f"틱 범위가 잘못되었습니다: {ticks}")
        token0, token1 = pool_key[0], pool_key[1]
        amount0, amount1 = max_amounts
        self.book.transfer(token0, self.trader, self.address, amount0)
        self.book.transfer(token1, self.trader, self.address, amount1)
        position_id = len(self.positions) + 1
        self.positions.append({
            "position_id": position_id,
            "pool_key": tuple(pool_key),
            "ticks": (tick_lower, tick_upper),
            "amounts": (amount0, amount1),
            "owner": owner,
        })
        logger.debug("Position %d minted in pool %s", position_id, pool_key)
        return position_id

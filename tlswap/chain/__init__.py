"""
해시 체인, 주문 등록, 원장, 청크 실행.

사용 예시:
    >>> from tlswap.chain import HashChainLedger, OrderRegistry, build_order_chain
    >>> ledger = HashChainLedger()
    >>> registry = OrderRegistry(ledger)
"""

from tlswap.chain.order import OrderChunk, OperationType
from tlswap.chain.hashchain import build_hash_chain, chunk_commitment
from tlswap.chain.builder import OrderChain, build_order_chain
from tlswap.chain.ledger import HashChainLedger
from tlswap.chain.registry import OrderRegistry, order_id_for
from tlswap.chain.executor import OrderExecutor, ExecutionResult
from tlswap.chain.settlement import SettlementEngine, Receipt

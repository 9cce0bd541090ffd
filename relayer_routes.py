"""
릴레이어 Flask Blueprint: JSON API
====================================

  GET  /health                    상태 확인
  GET  /round                     현재 비콘 라운드
  GET  /orders                    대기/처리 주문 목록 (?status=pending|processed|all)
  GET  /orders/<id>               주문 하나
  POST /orders/<id>/process       주문 즉시 처리
  POST /registry/orders           암호화된 주문 등록
  GET  /registry/orders/<id>      등록된 주문 조회
"""

import json

from flask import Blueprint, jsonify, request

from tlswap.errors import TlswapError, InvalidCiphertext, InvalidOrder
from tlswap.chain.order import hash_to_hex

relayer_bp = Blueprint('relayer', __name__)

# 서비스는 app.py에서 주입
SERVICE = None


def init_relayer_bp(service):
    """app.py에서 RelayerService를 주입받는다."""
    global SERVICE
    SERVICE = service


def error_response(message, status, **extra):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


@relayer_bp.errorhandler(TlswapError)
def handle_domain_error(e):
    status = 503 if e.retryable else 400
    return error_response(str(e), status, type=type(e).__name__, retryable=e.retryable)


# ──────────────────────────────────────────────────────────────
# 상태
# ──────────────────────────────────────────────────────────────

@relayer_bp.route("/health")
def health():
    return jsonify({"status": "ok", "current_round": SERVICE.beacon.current_round()})


@relayer_bp.route("/round")
def current_round():
    info = SERVICE.beacon.info
    round_number = SERVICE.beacon.current_round()
    return jsonify({
        "chain_id": info.chain_id,
        "current_round": round_number,
        "genesis_time": info.genesis_time,
        "period": info.period,
        "next_round_at": info.round_timestamp(round_number + 1),
    })


# ──────────────────────────────────────────────────────────────
# 대기 주문
# ──────────────────────────────────────────────────────────────

@relayer_bp.route("/orders")
def list_orders():
    status = request.args.get("status", "all")
    if status == "pending":
        orders = SERVICE.store.pending_orders()
    elif status == "processed":
        orders = [o for o in SERVICE.store.all_orders() if o.processed]
    elif status == "all":
        orders = SERVICE.store.all_orders()
    else:
        return error_response(f"알 수 없는 status: {status}", 400)
    return jsonify({
        "orders": [o.summary() for o in orders],
        "stats": SERVICE.store.stats(),
    })


@relayer_bp.route("/orders/<order_id>")
def get_order(order_id):
    order = SERVICE.store.get_order(order_id)
    if order is None:
        return error_response(f"주문이 없습니다: {order_id}", 404)
    return jsonify(order.summary())


@relayer_bp.route("/orders/<order_id>/process", methods=["POST"])
def process_order(order_id):
    if SERVICE.store.get_order(order_id) is None and SERVICE.registry.get_record(order_id) is None:
        return error_response(f"주문이 없습니다: {order_id}", 404)
    receipts = SERVICE.process_order(order_id)
    order = SERVICE.store.get_order(order_id)
    body = {
        "order": order.summary(),
        "receipts": [r.to_dict() for r in receipts or []],
    }
    status = 200 if receipts else 409
    return jsonify(body), status


# ──────────────────────────────────────────────────────────────
# 등록소
# ──────────────────────────────────────────────────────────────

@relayer_bp.route("/registry/orders", methods=["POST"])
def register_order():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidOrder("JSON 객체가 필요합니다")
    missing = [k for k in ("ciphertext", "chunk_commitments", "token_in") if k not in payload]
    if missing:
        raise InvalidOrder(f"필드 누락: {missing}")

    ciphertext = payload["ciphertext"]
    if isinstance(ciphertext, dict):
        ciphertext = json.dumps(ciphertext, separators=(",", ":"))
    if not isinstance(ciphertext, str):
        raise InvalidCiphertext("ciphertext는 JSON 문자열 또는 객체여야 합니다")

    try:
        order_id = SERVICE.registry.register(
            ciphertext,
            payload["chunk_commitments"],
            payload["token_in"],
            operation_type=payload.get("operation_type", "swap"),
            order_id=payload.get("order_id"),
            sender=payload.get("sender"),
        )
    except (TypeError, ValueError) as e:
        raise InvalidOrder(f"잘못된 등록 요청: {e}") from e
    SERVICE.sync()
    record = SERVICE.registry.get_record(order_id)
    return jsonify({"order_id": order_id, "block_number": record.block_number}), 201


@relayer_bp.route("/registry/orders/<order_id>")
def get_registered_order(order_id):
    record = SERVICE.registry.get_record(order_id)
    if record is None:
        return error_response(f"등록되지 않은 주문입니다: {order_id}", 404)
    return jsonify({
        "order_id": record.order_id,
        "ciphertext": record.ciphertext.decode("utf-8"),
        "chunk_commitments": [hash_to_hex(c) for c in record.chunk_commitments],
        "token_in": record.token_in,
        "operation_type": record.operation_type.value,
        "block_number": record.block_number,
        "registered_at": record.registered_at,
        "sender": record.sender,
    })

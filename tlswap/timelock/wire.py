"""
타임락 암호문 와이어 형식 (직렬화/역직렬화)
============================================

등록 컨트랙트와 릴레이어 사이에서 주고받는 JSON 형식:

    {
      "aes": {"iv": <hex 16B>, "ciphertext": <hex>},
      "round": <uint>,
      "timelock": {
        "H":  {"x": ..., "y": ...},
        "V":  {"x": ..., "y": ...},
        "C1": {"x0": ..., "x1": ..., "y0": ..., "y1": ...},
        "targetRound": <uint, 선택>
      },
      "version": 1          (선택)
    }

좌표는 10진수 문자열로 내보내며, 읽을 때는 정수, 10진수 문자열, "0x" hex
문자열을 모두 받는다.

역직렬화는 암호 연산 전에 스키마를 엄격히 검사한다:
알 수 없는 필드, 빠진 필드, 잘못된 타입/길이, 곡선 밖의 점은 모두
InvalidCiphertext로 거부한다.
"""

import json

from py_ecc import bn128
from py_ecc.fields import bn128_FQ as FQ

from tlswap.errors import InvalidCiphertext
from tlswap.timelock.cipher import TimelockCiphertext, IV_SIZE
from tlswap.timelock.field import FIELD_MODULUS


WIRE_VERSION = 1

_TOP_REQUIRED = {"aes", "round", "timelock"}
_TOP_OPTIONAL = {"version"}
_AES_FIELDS = {"iv", "ciphertext"}
_TIMELOCK_REQUIRED = {"H", "V", "C1"}
_TIMELOCK_OPTIONAL = {"targetRound"}
_G1_FIELDS = {"x", "y"}
_G2_FIELDS = {"x0", "x1", "y0", "y1"}


# ─── 스키마 헬퍼 ───

def _check_fields(obj, required, optional, where):
    if not isinstance(obj, dict):
        raise InvalidCiphertext(f"{where}: 객체(dict)가 필요합니다")
    keys = set(obj)
    missing = required - keys
    if missing:
        raise InvalidCiphertext(f"{where}: 필드 누락 {sorted(missing)}")
    unknown = keys - required - optional
    if unknown:
        raise InvalidCiphertext(f"{where}: 알 수 없는 필드 {sorted(unknown)}")


def _parse_uint(value, where):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidCiphertext(f"{where}: 음이 아닌 정수가 필요합니다")
    return value


def _parse_coordinate(value, where):
    if isinstance(value, bool):
        raise InvalidCiphertext(f"{where}: 좌표가 잘못되었습니다")
    try:
        if isinstance(value, int):
            n = value
        elif isinstance(value, str) and value.lower().startswith("0x"):
            n = int(value, 16)
        elif isinstance(value, str):
            n = int(value, 10)
        else:
            raise ValueError(type(value).__name__)
    except ValueError as e:
        raise InvalidCiphertext(f"{where}: 좌표가 잘못되었습니다 ({e})") from e
    if not 0 <= n < FIELD_MODULUS:
        raise InvalidCiphertext(f"{where}: 좌표가 기저체 범위를 벗어났습니다")
    return n


def _parse_hex(value, where):
    if not isinstance(value, str):
        raise InvalidCiphertext(f"{where}: hex 문자열이 필요합니다")
    raw = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise InvalidCiphertext(f"{where}: hex 문자열이 아닙니다") from e


# ─── G1 point ───

def serialize_g1(point):
    """G1 point → {"x": str, "y": str}"""
    return {"x": str(int(point[0])), "y": str(int(point[1]))}


def deserialize_g1(data, where="G1"):
    """{"x", "y"} → G1 point (곡선 위 검사 포함)"""
    _check_fields(data, _G1_FIELDS, set(), where)
    point = (
        FQ(_parse_coordinate(data["x"], f"{where}.x")),
        FQ(_parse_coordinate(data["y"], f"{where}.y")),
    )
    if not bn128.is_on_curve(point, bn128.b):
        raise InvalidCiphertext(f"{where}: G1 곡선 위의 점이 아닙니다")
    return point


# ─── G2 point ───

def serialize_g2(point):
    """G2 point → {"x0", "x1", "y0", "y1"} (str)"""
    return {
        "x0": str(int(point[0].coeffs[0])),
        "x1": str(int(point[0].coeffs[1])),
        "y0": str(int(point[1].coeffs[0])),
        "y1": str(int(point[1].coeffs[1])),
    }


def deserialize_g2(data, where="G2"):
    """{"x0", "x1", "y0", "y1"} → G2 point (곡선 위 검사 포함)"""
    _check_fields(data, _G2_FIELDS, set(), where)
    point = (
        bn128.FQ2([_parse_coordinate(data["x0"], f"{where}.x0"),
                   _parse_coordinate(data["x1"], f"{where}.x1")]),
        bn128.FQ2([_parse_coordinate(data["y0"], f"{where}.y0"),
                   _parse_coordinate(data["y1"], f"{where}.y1")]),
    )
    if not bn128.is_on_curve(point, bn128.b2):
        raise InvalidCiphertext(f"{where}: G2 곡선 위의 점이 아닙니다")
    return point


# ─── TimelockCiphertext ───

def ciphertext_to_dict(ct):
    """TimelockCiphertext → 와이어 dict"""
    return {
        "aes": {"iv": ct.iv.hex(), "ciphertext": ct.cipher_bytes.hex()},
        "round": ct.target_round,
        "timelock": {
            "H": serialize_g1(ct.H),
            "V": serialize_g1(ct.V),
            "C1": serialize_g2(ct.C1),
            "targetRound": ct.target_round,
        },
        "version": WIRE_VERSION,
    }


def ciphertext_from_dict(data):
    """와이어 dict → TimelockCiphertext

    Raises:
        InvalidCiphertext: 스키마 위반
    """
    _check_fields(data, _TOP_REQUIRED, _TOP_OPTIONAL, "ciphertext")

    if "version" in data and data["version"] != WIRE_VERSION:
        raise InvalidCiphertext(f"지원하지 않는 버전입니다: {data['version']!r}")

    target_round = _parse_uint(data["round"], "round")

    aes = data["aes"]
    _check_fields(aes, _AES_FIELDS, set(), "aes")
    iv = _parse_hex(aes["iv"], "aes.iv")
    if len(iv) != IV_SIZE:
        raise InvalidCiphertext(f"aes.iv: {IV_SIZE}바이트가 필요하지만 {len(iv)}바이트입니다")
    cipher_bytes = _parse_hex(aes["ciphertext"], "aes.ciphertext")
    if not cipher_bytes or len(cipher_bytes) % 16:
        raise InvalidCiphertext("aes.ciphertext: 16바이트 블록의 배수가 아닙니다")

    timelock = data["timelock"]
    _check_fields(timelock, _TIMELOCK_REQUIRED, _TIMELOCK_OPTIONAL, "timelock")
    if "targetRound" in timelock:
        if _parse_uint(timelock["targetRound"], "timelock.targetRound") != target_round:
            raise InvalidCiphertext("timelock.targetRound가 round와 다릅니다")

    H = deserialize_g1(timelock["H"], "timelock.H")
    V = deserialize_g1(timelock["V"], "timelock.V")
    C1 = deserialize_g2(timelock["C1"], "timelock.C1")

    return TimelockCiphertext(target_round, iv, cipher_bytes, H, V, C1)


def encode_ciphertext(ct):
    """TimelockCiphertext → UTF-8 JSON 바이트열 (컨트랙트에 등록되는 형태)"""
    return json.dumps(ciphertext_to_dict(ct), separators=(",", ":")).encode("utf-8")


def _load_json(raw):
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidCiphertext("암호문이 UTF-8이 아닙니다") from e
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidCiphertext(f"암호문이 JSON이 아닙니다: {e}") from e


def decode_ciphertext(raw):
    """바이트열 또는 JSON 문자열 → TimelockCiphertext"""
    return ciphertext_from_dict(_load_json(raw))


def peek_target_round(raw):
    """전체 검증 없이 암호문 헤더에서 목표 라운드만 읽는다.

    이벤트 감시자가 PendingOrder를 만들 때 사용한다.
    "round"가 없으면 "timelock.targetRound"를 사용한다.

    Raises:
        InvalidCiphertext: 라운드를 찾을 수 없을 때
    """
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise InvalidCiphertext("ciphertext: 객체(dict)가 필요합니다")
    round_value = data.get("round")
    if round_value is None and isinstance(data.get("timelock"), dict):
        round_value = data["timelock"].get("targetRound")
    if round_value is None:
        raise InvalidCiphertext("암호문에 목표 라운드가 없습니다")
    return _parse_uint(round_value, "round")

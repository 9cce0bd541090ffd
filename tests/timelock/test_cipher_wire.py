"""
Tests for the timelock cipher and its wire format.

Covers:
- Encrypt / decrypt round trip with the round signature
- Wrong-round signature does not recover the plaintext
- Signature verification on decrypt (verify=True)
- Pre-round consistency check e(V, G2) * e(-H, C1) == 1 (valid / tampered)
- AES helpers: padding failure, block length
- Wire JSON: encode/decode, strict schema rejections, peek_target_round
"""

import copy
import json

import pytest

from tlswap.errors import (
    InvalidCiphertext, InvalidBeaconSignature, SymmetricDecryptFailed,
)
from tlswap.timelock.cipher import TimelockCiphertext, aes_encrypt, aes_decrypt
from tlswap.timelock.field import G1, ec_mul, ec_add
from tlswap.timelock.wire import (
    ciphertext_to_dict, ciphertext_from_dict, encode_ciphertext, decode_ciphertext,
    peek_target_round,
)


PLAINTEXT = b'{"sharesAmount":"30","note":"timelocked"}'
TARGET_ROUND = 1000


# ─────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def ciphertext(cipher):
    """라운드 1000에 묶인 암호문 (고정 r, IV)."""
    return cipher.encrypt(PLAINTEXT, TARGET_ROUND, r=424242, iv=bytes(range(16)))


@pytest.fixture
def wire(ciphertext):
    """변조용 와이어 dict 사본."""
    return copy.deepcopy(ciphertext_to_dict(ciphertext))


# ─────────────────────────────────────────────────────────────────────
# Cipher
# ─────────────────────────────────────────────────────────────────────

class TestTimelockCipher:
    """암호화/복호화 테스트."""

    def test_roundtrip(self, cipher, local_beacon, ciphertext):
        """Decrypt with sigma(round) recovers the plaintext."""
        assert cipher.decrypt(ciphertext, local_beacon.sign(TARGET_ROUND)) == PLAINTEXT

    def test_decrypt_with_hex_signature(self, cipher, local_beacon, ciphertext):
        signature = local_beacon.signature_hex(TARGET_ROUND)
        assert cipher.decrypt(ciphertext, signature) == PLAINTEXT

    def test_wrong_round_signature(self, cipher, local_beacon, ciphertext):
        """A signature for another round derives a different AES key."""
        try:
            out = cipher.decrypt(ciphertext, local_beacon.sign(TARGET_ROUND + 1))
        except SymmetricDecryptFailed:
            return
        assert out != PLAINTEXT

    def test_verify_rejects_wrong_signature(self, cipher, ciphertext):
        with pytest.raises(InvalidBeaconSignature):
            cipher.decrypt(ciphertext, ec_mul(G1, 5), verify=True)

    def test_off_curve_signature(self, cipher, ciphertext):
        with pytest.raises(InvalidBeaconSignature):
            cipher.decrypt(ciphertext, "00" * 64)

    def test_ciphertext_fields(self, ciphertext):
        assert ciphertext.target_round == TARGET_ROUND
        assert ciphertext.iv == bytes(range(16))
        assert len(ciphertext.cipher_bytes) % 16 == 0

    def test_ciphertext_is_immutable(self, ciphertext):
        with pytest.raises(AttributeError):
            ciphertext.target_round = 1

    def test_bad_iv_length(self, cipher):
        with pytest.raises(ValueError):
            cipher.encrypt(PLAINTEXT, TARGET_ROUND, iv=b"short")


class TestPreRoundCheck:
    """서명 없는 라운드 전 일관성 검증."""

    def test_valid(self, cipher, ciphertext):
        assert cipher.verify_pre_round(ciphertext)

    def test_tampered_v(self, cipher, ciphertext):
        """V from a different r breaks e(V, G2) == e(H, C1)."""
        tampered = TimelockCiphertext(
            ciphertext.target_round, ciphertext.iv, ciphertext.cipher_bytes,
            ciphertext.H, ec_add(ciphertext.V, ciphertext.H), ciphertext.C1,
        )
        assert not cipher.verify_pre_round(tampered)

    def test_wrong_h(self, cipher, ciphertext):
        """H must equal HashToG1(round), checked before any pairing."""
        tampered = TimelockCiphertext(
            ciphertext.target_round + 1, ciphertext.iv, ciphertext.cipher_bytes,
            ciphertext.H, ciphertext.V, ciphertext.C1,
        )
        assert not cipher.verify_pre_round(tampered)


class TestAes:
    """AES-128-CBC 헬퍼 테스트."""

    def test_roundtrip(self):
        key, iv = b"k" * 16, b"i" * 16
        assert aes_decrypt(key, iv, aes_encrypt(key, iv, b"hello")) == b"hello"

    def test_padding_always_added(self):
        assert len(aes_encrypt(b"k" * 16, b"i" * 16, b"x" * 16)) == 32

    def test_partial_block(self):
        with pytest.raises(SymmetricDecryptFailed):
            aes_decrypt(b"k" * 16, b"i" * 16, b"x" * 15)

    def test_empty(self):
        with pytest.raises(SymmetricDecryptFailed):
            aes_decrypt(b"k" * 16, b"i" * 16, b"")


# ─────────────────────────────────────────────────────────────────────
# Wire format
# ─────────────────────────────────────────────────────────────────────

class TestWireFormat:
    """와이어 JSON 직렬화 테스트."""

    def test_dict_layout(self, wire):
        assert set(wire) == {"aes", "round", "timelock", "version"}
        assert wire["round"] == TARGET_ROUND
        assert wire["timelock"]["targetRound"] == TARGET_ROUND
        assert set(wire["timelock"]["C1"]) == {"x0", "x1", "y0", "y1"}

    def test_encode_decode(self, ciphertext):
        raw = encode_ciphertext(ciphertext)
        assert isinstance(raw, bytes)
        assert decode_ciphertext(raw) == ciphertext
        assert decode_ciphertext(raw.decode("utf-8")) == ciphertext

    def test_hex_coordinates_accepted(self, wire, ciphertext):
        wire["timelock"]["H"]["x"] = hex(int(wire["timelock"]["H"]["x"]))
        assert ciphertext_from_dict(wire).H == ciphertext.H

    def test_optional_fields_may_be_absent(self, wire, ciphertext):
        del wire["version"]
        del wire["timelock"]["targetRound"]
        assert ciphertext_from_dict(wire) == ciphertext

    def test_unknown_top_level_field(self, wire):
        wire["extra"] = 1
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_unknown_point_field(self, wire):
        wire["timelock"]["V"]["z"] = "1"
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_missing_field(self, wire):
        del wire["timelock"]["C1"]
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_bad_iv_length(self, wire):
        wire["aes"]["iv"] = "00" * 8
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_ciphertext_not_block_aligned(self, wire):
        wire["aes"]["ciphertext"] = wire["aes"]["ciphertext"][:-2]
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_non_hex_ciphertext(self, wire):
        wire["aes"]["ciphertext"] = "zz" * 16
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_off_curve_point(self, wire):
        wire["timelock"]["V"]["y"] = str(int(wire["timelock"]["V"]["y"]) + 1)
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_coordinate_out_of_range(self, wire):
        wire["timelock"]["H"]["x"] = str(2 ** 256)
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_negative_round(self, wire):
        wire["round"] = -1
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_bool_round(self, wire):
        wire["round"] = True
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_version_mismatch(self, wire):
        wire["version"] = 2
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_target_round_mismatch(self, wire):
        wire["timelock"]["targetRound"] = TARGET_ROUND + 1
        with pytest.raises(InvalidCiphertext):
            ciphertext_from_dict(wire)

    def test_not_json(self):
        with pytest.raises(InvalidCiphertext):
            decode_ciphertext(b"not json")

    def test_not_utf8(self):
        with pytest.raises(InvalidCiphertext):
            decode_ciphertext(b"\xff\xfe")

    def test_not_object(self):
        with pytest.raises(InvalidCiphertext):
            decode_ciphertext(b"[1, 2]")


class TestPeekTargetRound:
    """헤더에서 라운드만 읽기."""

    def test_reads_round(self, ciphertext):
        assert peek_target_round(encode_ciphertext(ciphertext)) == TARGET_ROUND

    def test_falls_back_to_target_round(self):
        raw = json.dumps({"timelock": {"targetRound": 77}})
        assert peek_target_round(raw) == 77

    def test_missing_round(self):
        with pytest.raises(InvalidCiphertext):
            peek_target_round(json.dumps({"aes": {}}))

    def test_not_object(self):
        with pytest.raises(InvalidCiphertext):
            peek_target_round("3")

"""
페어링 기반 타임락 암호 (TimelockCipher)
==========================================

비콘이 목표 라운드의 서명을 발행하기 전에는 아무도 복호화할 수 없도록
평문을 암호화한다.

**암호화** (Encrypt(plaintext, round)):
  1. 난수 스칼라 r ∈ [1, curve_order)
  2. H = HashToG1(round)
  3. V = r·H ∈ G1,   C1 = r·G2 ∈ G2
  4. S = e(V, P)     (P = s·G2: 비콘 공개키)
  5. K = KDF(S)      (16바이트 AES 키)
  6. AES-128-CBC(K, IV, plaintext), IV는 새 16바이트 난수
  7. {round, iv, cipher_bytes, H, V, C1} 반환

**복호화** (Decrypt(ct, σ)):
  σ = s·H 이면 쌍선형성에 의해

    e(σ, C1) = e(s·H, r·G2) = e(H, G2)^(s·r) = e(r·H, s·G2) = e(V, P) = S

  따라서 같은 K를 유도하여 AES 복호화할 수 있다.
  σ가 틀리거나 (다른 라운드, 아직 발행 전) 하면 K가 달라져 패딩 검사에서 실패한다.

**라운드 전 일관성 검증** (VerifyPreRound(ct)):
  e(V, G2) · e(-H, C1) == 1
  ⟺ e(r·H, G2) == e(H, r'·G2) ⟺ r == r'
  V와 C1이 같은 r로 만들어졌음을 서명 없이 증명한다.
  복호화 가능성을 증명하지는 않으며, 등록 시점에 형식이 깨진 암호문을 걸러낸다.

사용 예시:
    >>> cipher = TimelockCipher(beacon.info)
    >>> ct = cipher.encrypt(b"secret order", 1000)
    >>> cipher.verify_pre_round(ct)              # True
    >>> cipher.decrypt(ct, beacon.sign(1000))    # b"secret order"
"""

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tlswap.errors import InvalidBeaconSignature, SymmetricDecryptFailed
from tlswap.timelock.field import (
    G2, ec_mul, ec_neg, ec_pairing, gt_one, is_on_g1, random_scalar,
)
from tlswap.timelock.hash_to_curve import hash_round_to_g1
from tlswap.timelock.kdf import derive_aes_key
from tlswap.timelock.beacon import parse_signature, verify_signature


IV_SIZE = 16
BLOCK_SIZE_BITS = 128


class TimelockCiphertext:
    """타임락 암호문. 생성 후 변경하지 않는다.

    속성:
        target_round: 복호화가 가능해지는 비콘 라운드
        iv: 16바이트 AES-CBC 초기화 벡터
        cipher_bytes: AES 암호문 바이트열
        H: HashToG1(round) (G1)
        V: r·H (G1)
        C1: r·G2 (G2)
    """

    __slots__ = ("target_round", "iv", "cipher_bytes", "H", "V", "C1")

    def __init__(self, target_round, iv, cipher_bytes, H, V, C1):
        object.__setattr__(self, "target_round", int(target_round))
        object.__setattr__(self, "iv", bytes(iv))
        object.__setattr__(self, "cipher_bytes", bytes(cipher_bytes))
        object.__setattr__(self, "H", H)
        object.__setattr__(self, "V", V)
        object.__setattr__(self, "C1", C1)

    def __setattr__(self, name, value):
        raise AttributeError("TimelockCiphertext는 불변(immutable)입니다")

    def __eq__(self, other):
        if not isinstance(other, TimelockCiphertext):
            return NotImplemented
        return all(getattr(self, f) == getattr(other, f) for f in self.__slots__)

    def __hash__(self):
        return hash((self.target_round, self.iv, self.cipher_bytes))

    def __repr__(self):
        return (f"TimelockCiphertext(target_round={self.target_round}, "
                f"cipher_bytes={len(self.cipher_bytes)}B)")


# ─────────────────────────────────────────────────────────────────────
# AES-128-CBC
# ─────────────────────────────────────────────────────────────────────

def aes_encrypt(key, iv, plaintext):
    """PKCS#7 패딩 후 AES-128-CBC 암호화."""
    padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def aes_decrypt(key, iv, cipher_bytes):
    """AES-128-CBC 복호화 후 PKCS#7 패딩 제거.

    Raises:
        SymmetricDecryptFailed: 블록 길이나 패딩이 맞지 않을 때 (잘못된 키)
    """
    if not cipher_bytes or len(cipher_bytes) % (BLOCK_SIZE_BITS // 8):
        raise SymmetricDecryptFailed(
            f"암호문 길이가 블록 크기의 배수가 아닙니다: {len(cipher_bytes)}"
        )
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(cipher_bytes) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise SymmetricDecryptFailed(f"패딩 검사 실패 (잘못된 키): {e}") from e


# ─────────────────────────────────────────────────────────────────────
# TimelockCipher
# ─────────────────────────────────────────────────────────────────────

class TimelockCipher:
    """비콘 라운드에 묶인 타임락 암호화/복호화.

    공유 상태가 없는 순수 연산이므로 여러 주문에 대해 병렬로 호출해도 안전하다.

    속성:
        beacon: BeaconInfo (공개키 P 포함)
    """

    def __init__(self, beacon):
        self.beacon = beacon

    def encrypt(self, plaintext, target_round, r=None, iv=None):
        """평문을 target_round에 묶어 암호화한다.

        Args:
            plaintext: 바이트열 (str이면 UTF-8로 인코딩)
            target_round: 목표 비콘 라운드
            r: 난수 스칼라 (테스트용, 기본값은 새 난수)
            iv: 16바이트 IV (테스트용, 기본값은 새 난수)

        Returns:
            TimelockCiphertext
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        if r is None:
            r = random_scalar()
        if iv is None:
            iv = os.urandom(IV_SIZE)
        if len(iv) != IV_SIZE:
            raise ValueError(f"IV는 {IV_SIZE}바이트여야 합니다: {len(iv)}")

        H = hash_round_to_g1(target_round)
        V = ec_mul(H, r)
        C1 = ec_mul(G2, r)

        # S = e(V, P)
        shared = ec_pairing(self.beacon.public_key, V)
        key = derive_aes_key(shared)

        cipher_bytes = aes_encrypt(key, iv, plaintext)
        return TimelockCiphertext(target_round, iv, cipher_bytes, H, V, C1)

    def decrypt(self, ciphertext, signature, verify=False):
        """비콘 서명으로 암호문을 복호화한다.

        Args:
            ciphertext: TimelockCiphertext
            signature: G1 점 또는 hex 문자열 (x ‖ y)
            verify: True이면 복호화 전에 σ를 라운드에 대해 BLS 검증한다

        Returns:
            bytes: 평문

        Raises:
            InvalidBeaconSignature: 서명이 G1 점이 아니거나 검증에 실패했을 때
            SymmetricDecryptFailed: 잘못된 서명 (다른 라운드, 이른 서명 등)
        """
        if isinstance(signature, str):
            signature = parse_signature(signature)
        elif not is_on_g1(signature):
            raise InvalidBeaconSignature("서명이 G1 곡선 위의 점이 아닙니다")

        if verify and not verify_signature(self.beacon, ciphertext.target_round, signature):
            raise InvalidBeaconSignature(
                f"라운드 {ciphertext.target_round}에 대한 서명 검증 실패"
            )

        # S' = e(σ, C1)
        shared = ec_pairing(ciphertext.C1, signature)
        key = derive_aes_key(shared)
        return aes_decrypt(key, ciphertext.iv, ciphertext.cipher_bytes)

    def verify_pre_round(self, ciphertext):
        """V와 C1이 같은 r에서 유도되었는지 서명 없이 확인한다.

        e(V, G2) · e(-H, C1) == 1, 그리고 H == HashToG1(round).

        Returns:
            bool
        """
        if ciphertext.H != hash_round_to_g1(ciphertext.target_round):
            return False
        lhs = ec_pairing(G2, ciphertext.V)
        rhs = ec_pairing(ciphertext.C1, ec_neg(ciphertext.H))
        return lhs * rhs == gt_one()

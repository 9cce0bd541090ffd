"""
drand 비콘 라운드에 묶인 페어링 기반 타임락 암호화.

사용 예시:
    >>> from tlswap.timelock import TimelockCipher, LocalBeacon
    >>> beacon = LocalBeacon.generate(seed=1)
    >>> ct = TimelockCipher(beacon.info).encrypt(b"hi", 10)
"""

from tlswap.timelock.beacon import BeaconInfo, LocalBeacon
from tlswap.timelock.cipher import TimelockCipher, TimelockCiphertext
from tlswap.timelock.wire import encode_ciphertext, decode_ciphertext, peek_target_round

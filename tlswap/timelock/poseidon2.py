"""
Poseidon2 해시 (BN254 스칼라체)
================================

해시 체인, 청크 커밋먼트, KDF에서 사용하는 체(field) 친화적 해시.
barretenberg / HorizenLabs의 BN254 t=4 인스턴스와 같은 값을 낸다.

**Poseidon2 순열 (t = 4)**:
  상태 4개 원소, S-box x⁵, 전체 라운드 R_F = 8, 부분 라운드 R_P = 56.

    초기 외부 선형층 M_E
    → R_F/2 전체 라운드: 상수 덧셈, 모든 원소에 S-box, M_E
    → R_P 부분 라운드: state[0]에만 상수 덧셈과 S-box, 내부 선형층 M_I
    → R_F/2 전체 라운드

  M_E (4×4, Poseidon2 논문의 M4):
    | 5 7 1 3 |
    | 4 6 1 1 |
    | 1 3 5 7 |
    | 1 1 4 6 |

  M_I = 1 + diag(μ):  xᵢ' = μᵢ·xᵢ + Σⱼ xⱼ

**스펀지 (rate 3, capacity 1)**:
  용량(capacity) 원소는 입력 길이 · 2⁶⁴ 로 초기화한다 (도메인 분리).
  3개씩 흡수(absorb)하고 순열을 적용한 뒤 state[0]을 출력한다.

**상수**:
  라운드 상수는 Poseidon 매개변수 생성 절차의 Grain LFSR로 만든다.
    초기 80비트 = field(2) ‖ sbox(4) ‖ n(12) ‖ t(12) ‖ R_F(10) ‖ R_P(10) ‖ 1^30
    탭: b[62] ⊕ b[51] ⊕ b[38] ⊕ b[23] ⊕ b[13] ⊕ b[0], 처음 160비트는 버림
    자기 축약(self-shrinking): 비트 쌍 (b1, b2)에서 b1 = 1일 때만 b2 출력
    254비트씩 읽어 r 이상이면 다시 뽑는다
  전체 라운드는 라운드당 4개, 부분 라운드는 1개 (총 R_F·4 + R_P = 88개).
  내부 대각 원소 μ는 공개된 BN254 t=4 값을 그대로 쓴다.

사용 예시:
    >>> from tlswap.timelock.poseidon2 import poseidon2_hash, hash_two
    >>> h = hash_two(1, 2)
    >>> h == poseidon2_hash([1, 2])  # True
"""

from tlswap.timelock.field import CURVE_ORDER


WIDTH = 4
RATE = 3
ROUNDS_FULL = 8
ROUNDS_PARTIAL = 56
ALPHA = 5
FIELD_BITS = 254

EXTERNAL_MATRIX = (
    (5, 7, 1, 3),
    (4, 6, 1, 1),
    (1, 3, 5, 7),
    (1, 1, 4, 6),
)

INTERNAL_DIAGONAL = [
    0x10dc6e9c006ea38b04b1e03b4bd9490c0d03f98929ca1d7fb56821fd19d3b6e7,
    0x0c28145b6a44df3e0149b3d0a30b3bb599df9756d4dd9b84a86b38cfb45a740b,
    0x00544b8338791518b2c7645a50392798b21f75bb60e3596170067d00141cac15,
    0x222c01175718386f2e2e82eb122789e352e105a3b8fa852613bc534433ee428b,
]


def _bits(value, width):
    return [int(b) for b in format(value, f"0{width}b")]


def _grain_bits():
    """Grain LFSR 비트 스트림 (자기 축약 적용)."""
    # field=1 (소수체), sbox=0 (x^α)
    state = (
        _bits(1, 2) + _bits(0, 4) + _bits(FIELD_BITS, 12) + _bits(WIDTH, 12)
        + _bits(ROUNDS_FULL, 10) + _bits(ROUNDS_PARTIAL, 10) + [1] * 30
    )

    def step():
        bit = state[62] ^ state[51] ^ state[38] ^ state[23] ^ state[13] ^ state[0]
        state.pop(0)
        state.append(bit)
        return bit

    for _ in range(160):
        step()

    while True:
        bit = step()
        while bit == 0:
            step()
            bit = step()
        yield step()


def _round_constants():
    bits = _grain_bits()
    count = ROUNDS_FULL * WIDTH + ROUNDS_PARTIAL
    out = []
    while len(out) < count:
        value = 0
        for _ in range(FIELD_BITS):
            value = (value << 1) | next(bits)
        if value < CURVE_ORDER:
            out.append(value)
    return out


_CONSTANTS = _round_constants()

# 앞쪽 전체 라운드 16개, 부분 라운드 56개, 뒤쪽 전체 라운드 16개 순서
_HALF = ROUNDS_FULL // 2 * WIDTH
_FULL_CONSTANTS = _CONSTANTS[:_HALF] + _CONSTANTS[_HALF + ROUNDS_PARTIAL:]
_PARTIAL_CONSTANTS = _CONSTANTS[_HALF:_HALF + ROUNDS_PARTIAL]


# ─────────────────────────────────────────────────────────────────────
# 순열
# ─────────────────────────────────────────────────────────────────────

def _sbox(x):
    return pow(x, ALPHA, CURVE_ORDER)


def _external_layer(state):
    return [
        sum(m * s for m, s in zip(row, state)) % CURVE_ORDER
        for row in EXTERNAL_MATRIX
    ]


def _internal_layer(state):
    total = sum(state) % CURVE_ORDER
    return [
        (mu * s + total) % CURVE_ORDER
        for mu, s in zip(INTERNAL_DIAGONAL, state)
    ]


def _full_round(state, round_index):
    base = round_index * WIDTH
    state = [
        _sbox((s + _FULL_CONSTANTS[base + i]) % CURVE_ORDER)
        for i, s in enumerate(state)
    ]
    return _external_layer(state)


def _partial_round(state, round_index):
    state = list(state)
    state[0] = _sbox((state[0] + _PARTIAL_CONSTANTS[round_index]) % CURVE_ORDER)
    return _internal_layer(state)


def permute(state):
    """Poseidon2 순열을 적용한다.

    Args:
        state: 길이 4의 정수 리스트 (스칼라체 원소)

    Returns:
        list[int]: 순열이 적용된 새 상태

    Raises:
        ValueError: 상태 길이가 4가 아닐 때
    """
    if len(state) != WIDTH:
        raise ValueError(f"상태 길이는 {WIDTH}이어야 합니다: {len(state)}")

    state = _external_layer([int(s) % CURVE_ORDER for s in state])

    half = ROUNDS_FULL // 2
    for r in range(half):
        state = _full_round(state, r)
    for r in range(ROUNDS_PARTIAL):
        state = _partial_round(state, r)
    for r in range(half, ROUNDS_FULL):
        state = _full_round(state, r)

    return state


# ─────────────────────────────────────────────────────────────────────
# 스펀지 해시
# ─────────────────────────────────────────────────────────────────────

def poseidon2_hash(inputs):
    """임의 개수의 스칼라체 원소를 하나의 원소로 해싱한다.

    Args:
        inputs: 정수 또는 FR 원소의 리스트. 음수는 허용하지 않는다.

    Returns:
        int: 해시 값 (0 ≤ h < r)

    예시:
        >>> poseidon2_hash([42])
        >>> poseidon2_hash([1, 2, 3, 4, 5])  # 2개 블록 흡수
    """
    values = []
    for v in inputs:
        v = int(v)
        if v < 0:
            raise ValueError(f"해시 입력은 음수일 수 없습니다: {v}")
        values.append(v % CURVE_ORDER)

    state = [0] * WIDTH
    state[RATE] = (len(values) << 64) % CURVE_ORDER

    if not values:
        return permute(state)[0]

    for i in range(0, len(values), RATE):
        for j, v in enumerate(values[i:i + RATE]):
            state[j] = (state[j] + v) % CURVE_ORDER
        state = permute(state)

    return state[0]


def hash_two(left, right):
    """2-대-1 해시 H(left, right). 해시 체인의 기본 연산이다."""
    return poseidon2_hash([left, right])

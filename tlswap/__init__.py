"""
tlswap: 타임락 암호화 주문 (스왑 / 유동성 공급)

  tlswap.timelock  비콘 라운드에 묶인 타임락 암호
  tlswap.chain     해시 체인, 주문 등록, 원장, 실행
  tlswap.relayer   이벤트 감시, 라운드 스케줄링, 복호화 및 실행
"""

__version__ = "0.1.0"

"""
비콘 라운드 서명 클라이언트
============================

    GET {base_url}/beacons/{chain_id}/rounds/{round}
    → {"round": …, "signature": "<128 hex: x ‖ y>"}

서명이 아직 발행되지 않았거나 네트워크 오류가 나면 BeaconUnavailable
(retryable)을 던진다. 스케줄러는 다음 틱에서 다시 시도한다.
"""

import logging
import time

import requests

from tlswap.errors import BeaconUnavailable
from tlswap.timelock.beacon import parse_signature

logger = logging.getLogger(__name__)


DEFAULT_BEACON_URL = "https://api.drand.sh/v2"
DEFAULT_TIMEOUT = 10


class BeaconClient:
    """drand HTTP API 클라이언트.

    Args:
        info: BeaconInfo (라운드 산술, chain_id)
        base_url: API 주소
        timeout: 요청 타임아웃 (초)
        session: requests.Session (테스트에서 교체)
        poll_interval: wait_for_round의 확인 간격 (초)
    """

    def __init__(self, info, base_url=DEFAULT_BEACON_URL, timeout=DEFAULT_TIMEOUT,
                 session=None, poll_interval=1.0, clock=time.time, sleep=time.sleep):
        self.info = info
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep

    def url_for(self, round_number):
        return f"{self.base_url}/beacons/{self.info.chain_id}/rounds/{int(round_number)}"

    def current_round(self):
        return self.info.current_round(self.clock())

    def is_round_available(self, round_number):
        return self.info.is_round_available(round_number, self.clock())

    def fetch_signature(self, round_number):
        """라운드 서명 hex 문자열을 가져온다.

        Raises:
            BeaconUnavailable: 네트워크 오류, HTTP 오류, 응답에 서명이 없음
        """
        url = self.url_for(round_number)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise BeaconUnavailable(f"라운드 {round_number} 서명 요청 실패: {e}") from e
        except ValueError as e:
            raise BeaconUnavailable(f"라운드 {round_number}: JSON 응답이 아닙니다") from e

        signature = data.get("signature") if isinstance(data, dict) else None
        if not signature:
            raise BeaconUnavailable(f"라운드 {round_number}: 응답에 서명이 없습니다")
        return signature

    def get_signature(self, round_number):
        """라운드 서명을 G1 점으로 가져온다."""
        return parse_signature(self.fetch_signature(round_number))

    def wait_for_round(self, round_number):
        """라운드가 발행될 때까지 블로킹한다."""
        while not self.is_round_available(round_number):
            remaining = self.info.round_timestamp(round_number) - self.clock()
            logger.info("Waiting for round %d (current: %d, ~%ds remaining)",
                        round_number, self.current_round(), max(0, int(remaining)))
            self.sleep(self.poll_interval)


class LocalBeaconClient(BeaconClient):
    """LocalBeacon으로 서명을 발행하는 클라이언트 (개발넷, 테스트).

    clock이 가리키는 현재 라운드 이후의 서명은 BeaconUnavailable이다.
    """

    def __init__(self, beacon, clock=time.time, sleep=time.sleep, poll_interval=1.0):
        super().__init__(beacon.info, base_url="local://beacon", clock=clock,
                         sleep=sleep, poll_interval=poll_interval)
        self.beacon = beacon

    def fetch_signature(self, round_number):
        if not self.is_round_available(round_number):
            raise BeaconUnavailable(
                f"라운드 {round_number}은(는) 아직 발행되지 않았습니다 (현재 {self.current_round()})"
            )
        return self.beacon.signature_hex(round_number)


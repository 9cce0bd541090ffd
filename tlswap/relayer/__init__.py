"""
릴레이어: 등록 이벤트 감시, 라운드 스케줄링, 복호화와 실행.
"""

from tlswap.relayer.store import PendingOrder, PendingOrderStore
from tlswap.relayer.beacon_client import BeaconClient, LocalBeaconClient
from tlswap.relayer.watcher import EventWatcher, RegistryEventSource, Web3EventSource
from tlswap.relayer.processor import OrderProcessor
from tlswap.relayer.scheduler import RoundScheduler
from tlswap.relayer.service import RelayerService

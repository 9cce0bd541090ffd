"""
Tests for relayer configuration and the command-line tool.

Covers:
- RelayerConfig.from_env: required variables, placeholder keys, numeric parsing,
  protocol fee / treasury pairing, summary without the key
- CLI: help on no command, create-chain JSON output, status exit codes
"""

import json

import pytest

from tlswap.cli import main, build_parser
from tlswap.errors import ConfigError
from tlswap.relayer.config import RelayerConfig, load_account
from tlswap.timelock.wire import decode_ciphertext


PRIVATE_KEY = "0x" + "11" * 32

BASE_ENV = {
    "RPC_URL": "http://localhost:8545",
    "CONTRACT_ADDRESS": "0x" + "ab" * 20,
    "PRIVATE_KEY": PRIVATE_KEY,
}


# ─────────────────────────────────────────────────────────────────────
# RelayerConfig
# ─────────────────────────────────────────────────────────────────────

class TestRelayerConfig:
    """환경 변수 설정 테스트."""

    def test_defaults(self):
        config = RelayerConfig.from_env(BASE_ENV)
        assert config.start_block == 0
        assert config.scheduler_interval == 30.0
        assert config.poll_interval == 12.0
        assert config.batch_size == 1000
        assert config.beacon_chain_id == "evmnet"
        assert config.storage_file == "orders.json"
        assert config.address.startswith("0x") and len(config.address) == 42

    def test_overrides(self):
        env = dict(BASE_ENV, START_BLOCK="123", SCHEDULER_INTERVAL="5", BATCH_SIZE="50",
                   PROTOCOL_FEE_BPS="25", TREASURY="0x" + "55" * 20)
        config = RelayerConfig.from_env(env)
        assert config.start_block == 123
        assert config.scheduler_interval == 5.0
        assert config.batch_size == 50
        assert config.protocol_fee_bps == 25

    @pytest.mark.parametrize("name", ["RPC_URL", "CONTRACT_ADDRESS", "PRIVATE_KEY"])
    def test_required(self, name):
        env = dict(BASE_ENV)
        del env[name]
        with pytest.raises(ConfigError):
            RelayerConfig.from_env(env)

    def test_chain_optional(self):
        config = RelayerConfig.from_env({"PRIVATE_KEY": PRIVATE_KEY}, require_chain=False)
        assert config.rpc_url is None

    @pytest.mark.parametrize("key", ["your_private_key_here", "0x" + "0" * 64, "", "0x1234"])
    def test_bad_keys(self, key):
        with pytest.raises(ConfigError):
            load_account(key)

    def test_key_without_prefix(self):
        assert load_account("11" * 32).address == load_account(PRIVATE_KEY).address

    def test_bad_integer(self):
        with pytest.raises(ConfigError):
            RelayerConfig.from_env(dict(BASE_ENV, START_BLOCK="latest"))

    def test_bad_batch_size(self):
        with pytest.raises(ConfigError):
            RelayerConfig.from_env(dict(BASE_ENV, BATCH_SIZE="0"))

    def test_fee_requires_treasury(self):
        with pytest.raises(ConfigError):
            RelayerConfig.from_env(dict(BASE_ENV, PROTOCOL_FEE_BPS="10"))

    def test_summary_hides_key(self):
        summary = RelayerConfig.from_env(BASE_ENV).summary()
        assert PRIVATE_KEY not in json.dumps(summary)
        assert summary["relayer"].startswith("0x")


# ─────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────

class TestCli:
    """명령행 도구 테스트."""

    def test_no_command(self, capsys):
        assert main([]) == 2

    def test_parser_rejects_bad_shares(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["create-chain", "--shares", "a,b", "--user-key", "1",
                                       "--recipient", "0x" + "33" * 20, "--token-in", "0x" + "11" * 20,
                                       "--token-out", "0x" + "22" * 20, "--deadline", "1"])

    def test_create_chain(self, capsys, addrs):
        code = main([
            "create-chain", "--shares", "10", "--user-key", "42",
            "--start-round", "5", "--recipient", addrs.recipient,
            "--token-in", addrs.token_in, "--token-out", addrs.token_out,
            "--deadline", "2000000000", "--local-seed", "3",
        ])
        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert out["rounds"] == [5]
        assert len(out["chunk_commitments"]) == 1
        assert len(out["hash_chain"]) == 2
        assert out["operation_type"] == "swap"
        assert out["token_in"] == addrs.token_in
        assert decode_ciphertext(out["ciphertext"]).target_round == 5

    def test_create_chain_total_mismatch(self, addrs):
        code = main([
            "create-chain", "--shares", "10,20", "--total-shares", "31", "--user-key", "42",
            "--start-round", "5", "--recipient", addrs.recipient,
            "--token-in", addrs.token_in, "--token-out", addrs.token_out,
            "--deadline", "2000000000", "--local-seed", "3",
        ])
        assert code == 1

    def test_status_without_key(self, monkeypatch):
        monkeypatch.delenv("PRIVATE_KEY", raising=False)
        assert main(["status"]) == 2

    def test_status(self, monkeypatch, tmp_path, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PRIVATE_KEY", PRIVATE_KEY)
        monkeypatch.delenv("RPC_URL", raising=False)
        monkeypatch.delenv("CONTRACT_ADDRESS", raising=False)
        assert main(["status"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["chain_id"] == "evmnet"
        assert status["orders"]["total"] == 0

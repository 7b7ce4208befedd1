"""Unit tests for enforcer/config.py — loading, validation, env overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from enforcer.config import Config, ConfigError, PolicyConfig, load_config, read_config_file


def _write(tmp_path: Path, body: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(body)
    return str(path)


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real .enforcer/config.yaml out of the search path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("ENFORCER_CONFIG", raising=False)
    monkeypatch.delenv("ENFORCER_PORT", raising=False)
    monkeypatch.delenv("ENFORCER_PLATFORM_TOKEN", raising=False)
    monkeypatch.setattr("enforcer.config.DEFAULT_CONFIG_PATHS", [".enforcer/config.yaml"])


class TestDefaults:
    def test_no_file_returns_defaults(self) -> None:
        config = load_config()

        assert config.path is None
        assert config.policy == PolicyConfig()
        assert config.policy.days_allowed_for_user_keys == 90
        assert config.server.host == "127.0.0.1"
        assert config.keys.algorithm == "rsa"

    def test_unset_policy_means_no_bypass(self) -> None:
        policy = load_config().policy
        assert policy.authorized_user is None
        assert policy.authorized_group is None


class TestLoading:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
version: 1
policy:
  authorized_user: bamboo
  authorized_group: ssh-bypass
  days_allowed_for_user_keys: 30
sweep:
  hour_utc: 5
platform:
  base_url: https://git.example.com/
keys:
  algorithm: ed25519
""",
        )

        config = load_config(path)

        assert config.path == path
        assert config.policy == PolicyConfig("bamboo", "ssh-bypass", 30)
        assert config.sweep.hour_utc == 5
        assert config.platform.base_url == "https://git.example.com"
        assert config.keys.algorithm == "ed25519"

    def test_blank_policy_values_are_unset(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "version: 1\npolicy:\n  authorized_user: '  '\n  authorized_group:\n")
        policy = load_config(path).policy
        assert policy.authorized_user is None
        assert policy.authorized_group is None

    def test_env_config_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\npolicy:\n  authorized_user: robot\n")
        monkeypatch.setenv("ENFORCER_CONFIG", path)

        assert load_config().policy.authorized_user == "robot"

    def test_env_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\n")
        monkeypatch.setenv("ENFORCER_PORT", "9999")
        monkeypatch.setenv("ENFORCER_PLATFORM_TOKEN", "s3cret")

        config = load_config(path)

        assert config.server.port == 9999
        assert config.platform.token == "s3cret"


class TestInvalid:
    @pytest.mark.parametrize(
        "body",
        [
            "policy: {}\n",
            "version: 9\n",
            "version: 1\npolicy:\n  days_allowed_for_user_keys: 0\n",
            "version: 1\npolicy:\n  days_allowed_for_user_keys: ninety\n",
            "version: 1\nkeys:\n  algorithm: dsa\n",
            "version: 1\nkeys:\n  rsa_bits: 1024\n",
            "version: 1\nsweep:\n  hour_utc: 24\n",
            "version: 1\npolicy: [a, b]\n",
            "version: [1\n",
            "",
        ],
    )
    def test_invalid_file_exits(self, tmp_path: Path, body: str) -> None:
        path = _write(tmp_path, body)

        with pytest.raises(SystemExit) as exc_info:
            load_config(path)
        assert exc_info.value.code == 1

    def test_bad_port_env_exits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENFORCER_PORT", "not-a-port")
        with pytest.raises(SystemExit):
            load_config()

    def test_read_config_file_raises_config_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "just a string\n")
        with pytest.raises(ConfigError):
            read_config_file(path)

    def test_from_dict_rejects_non_mapping_section(self) -> None:
        with pytest.raises(ConfigError):
            Config.from_dict({"version": 1, "server": "localhost"})

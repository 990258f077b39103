"""Tests for the CLI module."""

import argparse
import json
import os

# Add the project root to the path to import modules
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from api_cache.cli import build_parser, create_default_config, load_config, main, parse_params
from api_cache.core.manager import ApiCacheManager
from api_cache.utils.logger import configure_logging


@pytest.fixture(autouse=True)
def quiet_logging():
    yield
    configure_logging({"enable_console": False})


@pytest.fixture
def config_file(tmp_path):
    config = {
        "database": {"path": str(tmp_path / "cache.db")},
        "logging": {"level": "ERROR"},
        "clients": {"demo": {"cache_ttl": 3600}, "other": {}},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path, config


def run_cli(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured


class TestLoadConfig:
    def test_load_valid_config(self, config_file):
        path, config = config_file
        assert load_config(path) == config

    def test_load_config_file_not_found(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            load_config(tmp_path / "missing.json")
        assert excinfo.value.code == 1

    def test_load_config_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(SystemExit):
            load_config(path)


class TestDefaultConfig:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("API_CACHE_DB_PATH", "/tmp/other.db")
        monkeypatch.setenv("API_CACHE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("API_CACHE_REDIS_URL", "redis://cache:6379/2")
        config = create_default_config()
        assert config["database"]["path"] == "/tmp/other.db"
        assert config["logging"]["level"] == "DEBUG"
        assert config["rate_limit"] == {"backend": "redis", "redis_url": "redis://cache:6379/2"}

    def test_defaults_without_environment(self, monkeypatch):
        for name in ("API_CACHE_DB_PATH", "API_CACHE_LOG_LEVEL", "API_CACHE_REDIS_URL"):
            monkeypatch.delenv(name, raising=False)
        config = create_default_config()
        assert config["database"]["path"] == "api_cache.db"
        assert "rate_limit" not in config


class TestParseParams:
    def test_values_parsed_as_json(self):
        assert parse_params(["age=25", "name=John", "tags=[1,2]", "flag=true"]) == {
            "age": 25,
            "name": "John",
            "tags": [1, 2],
            "flag": True,
        }

    def test_value_may_contain_equals(self):
        assert parse_params(["q=a=b"]) == {"q": "a=b"}

    def test_missing_separator(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_params(["novalue"])


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_convert_options(self):
        args = build_parser().parse_args(["convert", "demo", "--batch-size", "50", "--decompress", "--overwrite"])
        assert args.client == "demo"
        assert args.batch_size == 50
        assert args.decompress
        assert args.overwrite
        assert not args.copy_processing_state


class TestCommands:
    def test_key(self, capsys, config_file):
        path, _ = config_file
        code, captured = run_cli(capsys, "--config", str(path), "key", "test-client", "/users", "-p", "age=25", "-p", "name=John")
        assert code == 0
        assert json.loads(captured.out) == {"key": "test-client.get.users.7f45b95b1a0df08d89663a134e397f14ac6da544"}

    def test_key_invalid_client(self, capsys, config_file):
        path, _ = config_file
        code, captured = run_cli(capsys, "--config", str(path), "key", "bad.client", "users")
        assert code == 1
        assert "Error:" in captured.err

    def test_cleanup_and_clear(self, capsys, config_file):
        path, config = config_file
        manager = ApiCacheManager.from_config(config)
        manager.repository.store("demo", "demo.get.a.1", {"endpoint": "a", "response_body": "x"}, ttl=1)
        manager.repository.store("demo", "demo.get.a.2", {"endpoint": "a", "response_body": "y"})
        manager.repository.db_manager.execute_update(
            "UPDATE api_cache_demo_responses SET expires_at = ? WHERE key = ?",
            ("2000-01-01 00:00:00.000000", "demo.get.a.1"),
        )

        code, captured = run_cli(capsys, "--config", str(path), "cleanup")
        assert code == 0
        assert json.loads(captured.out) == {"deleted": 1}

        code, captured = run_cli(capsys, "--config", str(path), "clear", "demo")
        assert json.loads(captured.out) == {"cleared": "api_cache_demo_responses"}
        assert manager.repository.count_total_responses("demo") == 0

    def test_rate_limit(self, capsys, config_file):
        path, _ = config_file
        code, captured = run_cli(capsys, "--config", str(path), "rate-limit", "demo", "--clear")
        assert code == 0
        assert json.loads(captured.out) == {
            "client": "demo",
            "remaining": 1000,
            "max_attempts": 1000,
            "decay_seconds": 60,
            "available_in": 0,
        }

    def test_convert_and_validate(self, capsys, config_file):
        path, config = config_file
        manager = ApiCacheManager.from_config(config)
        for i in range(3):
            manager.repository.store("demo", f"demo.get.items.{i}", {"endpoint": "items", "response_body": f"body {i}"})

        code, captured = run_cli(capsys, "--config", str(path), "convert", "demo", "--batch-size", "2")
        assert code == 0
        assert json.loads(captured.out) == {
            "total_count": 3,
            "processed_count": 3,
            "skipped_count": 0,
            "error_count": 0,
        }

        code, captured = run_cli(capsys, "--config", str(path), "validate", "demo")
        assert json.loads(captured.out) == {"validated_count": 3, "mismatch_count": 0, "error_count": 0}

    def test_invalid_config_file(self, capsys, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"database": {"path": str(tmp_path / "c.db")}, "converter": {"batch_size": -1}}))
        code, captured = run_cli(capsys, "--config", str(path), "cleanup")
        assert code == 1
        assert "Invalid configuration" in captured.err


def test_run_closes_manager(capsys, config_file):
    path, _ = config_file
    with patch.object(ApiCacheManager, "close", autospec=True) as close:
        code, _ = run_cli(capsys, "--config", str(path), "key", "demo", "users")
    assert code == 0
    close.assert_called_once()


def test_run_closes_manager_on_error(capsys, config_file):
    path, _ = config_file
    with patch.object(ApiCacheManager, "close", autospec=True) as close:
        code, _ = run_cli(capsys, "--config", str(path), "key", "bad.client", "users")
    assert code == 1
    close.assert_called_once()

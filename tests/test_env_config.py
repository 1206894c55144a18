import logging

import pytest

import env_config


def test_load_env_file_sets_missing_keys(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "PUNCH_TEST_PORT=40000\n"
        "PUNCH_TEST_BIND = '127.0.0.1'\n"
        "PUNCH_TEST_KEPT=from-file\n"
        "not a pair\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("PUNCH_TEST_PORT", raising=False)
    monkeypatch.delenv("PUNCH_TEST_BIND", raising=False)
    monkeypatch.setenv("PUNCH_TEST_KEPT", "from-env")

    env_config.load_env_file(str(env_file))

    assert env_config.get_env_int("PUNCH_TEST_PORT", 1) == 40000
    assert env_config.os.environ["PUNCH_TEST_BIND"] == "127.0.0.1"
    assert env_config.os.environ["PUNCH_TEST_KEPT"] == "from-env"
    env_config.os.environ.pop("PUNCH_TEST_PORT", None)
    env_config.os.environ.pop("PUNCH_TEST_BIND", None)


def test_load_env_file_ignores_missing_file(tmp_path):
    env_config.load_env_file(str(tmp_path / "absent.env"))


def test_env_numbers_fall_back_on_garbage(monkeypatch):
    monkeypatch.setenv("PUNCH_TEST_TIMEOUT", "soon")
    monkeypatch.setenv("PUNCH_TEST_PACKET", "4k")
    assert env_config.get_env_float("PUNCH_TEST_TIMEOUT", 30) == 30.0
    assert env_config.get_env_int("PUNCH_TEST_PACKET", 2048) == 2048


def test_env_numbers_parse(monkeypatch):
    monkeypatch.setenv("PUNCH_TEST_TIMEOUT", "12.5")
    monkeypatch.delenv("PUNCH_TEST_PACKET", raising=False)
    assert env_config.get_env_float("PUNCH_TEST_TIMEOUT", 30) == 12.5
    assert env_config.get_env_int("PUNCH_TEST_PACKET", 2048) == 2048


def test_parse_port_defaults_and_override():
    assert env_config.parse_port(["prog"], 33334) == 33334
    assert env_config.parse_port(["prog", "4000"], 33334) == 4000


@pytest.mark.parametrize("arg", ["abc", "0", "65536"])
def test_parse_port_rejects_bad_values(arg):
    with pytest.raises(ValueError, match="Invalid port"):
        env_config.parse_port(["prog", arg], 33334)


def test_setup_logging_uses_env_level(monkeypatch):
    monkeypatch.setenv("PUNCH_TEST_LOG_LEVEL", "debug")
    logger = env_config.setup_logging(logging.getLogger("rendezvous.test"), "PUNCH_TEST_LOG_LEVEL")
    assert logger.level == logging.DEBUG


def test_setup_logging_unknown_level_is_info(monkeypatch):
    monkeypatch.setenv("PUNCH_TEST_LOG_LEVEL", "chatty")
    logger = env_config.setup_logging(logging.getLogger("rendezvous.test2"), "PUNCH_TEST_LOG_LEVEL")
    assert logger.level == logging.INFO

"""Environment-driven settings shared by the rendezvous and echo servers."""

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def load_env_file(env_path=None):
    """Copy KEY=VALUE lines from a .env file into os.environ.

    Variables already set in the environment are left alone.
    """
    if env_path is None:
        env_path = os.path.join(os.path.dirname(__file__), ".env")
    if not os.path.exists(env_path):
        return
    try:
        with open(env_path, "r", encoding="utf-8") as handle:
            for line in handle:
                entry = line.strip()
                if not entry or entry.startswith("#") or "=" not in entry:
                    continue
                key, value = entry.split("=", 1)
                key = key.strip()
                value = value.strip()
                if not key or key in os.environ:
                    continue
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ("\"", "'"):
                    value = value[1:-1]
                os.environ[key] = value
    except OSError:
        return


def get_env_int(name, default):
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(raw, 10)
    except ValueError:
        return int(default)


def get_env_float(name, default):
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def parse_port(argv, default):
    if len(argv) < 2:
        return default
    try:
        port = int(argv[1], 10)
    except ValueError:
        raise ValueError(f"Invalid port: {argv[1]}")
    if port < 1 or port > 65535:
        raise ValueError(f"Invalid port: {port}")
    return port


def setup_logging(logger, env_name):
    level_name = os.getenv(env_name, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.setLevel(level)
    return logger

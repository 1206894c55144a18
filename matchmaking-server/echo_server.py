#!/usr/bin/env python3
"""WebSocket echo endpoint used by clients to check signalling reachability."""

import logging
import os
import sys
from http import HTTPStatus

from websockets.exceptions import ConnectionClosedError
from websockets.sync.server import serve

from env_config import get_env_int, load_env_file, parse_port, setup_logging

load_env_file()

DEFAULT_BIND = "0.0.0.0"
DEFAULT_PORT = 8890
DEFAULT_PATH = "/ws"

logger = logging.getLogger("rendezvous.echo")


def make_path_filter(path):
    def process_request(connection, request):
        if request.path != path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    return process_request


def echo(websocket):
    peer = websocket.remote_address
    logger.info("Echo client connected from %s:%s", peer[0], peer[1])
    try:
        for message in websocket:
            logger.debug("Received: %r", message)
            websocket.send(message)
    except ConnectionClosedError as exc:
        logger.info("Read error from %s:%s: %s", peer[0], peer[1], exc)
        return
    logger.info("Echo client %s:%s disconnected", peer[0], peer[1])


def create_server(host, port, path=DEFAULT_PATH):
    return serve(echo, host, port, process_request=make_path_filter(path))


def main(argv=None):
    if argv is None:
        argv = sys.argv
    setup_logging(logger, "ECHO_LOG_LEVEL")
    try:
        port = parse_port(argv, get_env_int("ECHO_PORT", DEFAULT_PORT))
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    host = os.getenv("ECHO_BIND", DEFAULT_BIND)
    path = os.getenv("ECHO_PATH", DEFAULT_PATH)
    try:
        server = create_server(host, port, path)
    except OSError as exc:
        logger.error("WebSocket listen error on %s:%s: %s", host, port, exc)
        return 1

    logger.info("Echo server listening on ws://%s:%s%s", host, port, path)
    with server:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))

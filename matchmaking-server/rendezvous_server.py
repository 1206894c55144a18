#!/usr/bin/env python3
"""UDP hole-punch rendezvous server (JSON datagrams)."""

import json
import logging
import os
import sys
from collections import namedtuple
from socketserver import BaseRequestHandler, ThreadingMixIn, UDPServer

from env_config import get_env_float, get_env_int, load_env_file, parse_port, setup_logging
from match_store import ExpirySweeper, MatchStore

load_env_file()

DEFAULT_BIND = "0.0.0.0"
DEFAULT_PORT = 33334
DEFAULT_PEER_TIMEOUT = 30.0
DEFAULT_SWEEP_INTERVAL = 30.0
DEFAULT_MAX_PACKET = 2048

logger = logging.getLogger("rendezvous")

Message = namedtuple("Message", ("uid", "peer_uid", "kill", "match_id"))


def _field(data, key, kind, default):
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise ValueError(f"{key} must be {kind.__name__}")
    return value


def parse_message(data):
    """Decode one datagram into a Message, or None if it is malformed."""
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(obj, dict):
        return None
    try:
        return Message(
            uid=_field(obj, "uid", str, ""),
            peer_uid=_field(obj, "peerUid", str, ""),
            kill=_field(obj, "kill", bool, False),
            match_id=_field(obj, "matchId", str, ""),
        )
    except ValueError:
        return None


def encode_payload(payload):
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class PunchHandler(BaseRequestHandler):
    def handle(self):
        data = self.request[0]
        ip, port = self.client_address[0], self.client_address[1]
        logger.debug("Recv %s:%s %r", ip, port, data)
        message = parse_message(data)
        if message is None:
            logger.info("Dropping malformed packet from %s:%s", ip, port)
            return
        store = self.server.store
        if message.kill:
            store.kill(message.uid, message.peer_uid, message.match_id)
        else:
            store.register(message.uid, message.peer_uid, ip, port)


class RendezvousServer(ThreadingMixIn, UDPServer):
    """One thread per datagram; all peer state goes through ``self.store``."""

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address, peer_timeout=DEFAULT_PEER_TIMEOUT,
                 sweep_interval=DEFAULT_SWEEP_INTERVAL, max_packet=DEFAULT_MAX_PACKET):
        self.max_packet_size = max_packet
        self.store = MatchStore(self.send_payload, peer_timeout)
        self.sweeper = ExpirySweeper(self.store, sweep_interval)
        super().__init__(server_address, PunchHandler)

    def send_payload(self, payload, peer):
        try:
            self.socket.sendto(encode_payload(payload), (peer.address, peer.port))
        except OSError as exc:
            logger.warning("Error sending to %s at %s:%s: %s", peer.uid, peer.address, peer.port, exc)
            return False
        logger.debug("Sent %s to %s", sorted(payload), peer.uid)
        return True

    def serve_forever(self, poll_interval=0.5):
        self.sweeper.start()
        try:
            super().serve_forever(poll_interval)
        finally:
            self.sweeper.stop()

    def server_close(self):
        self.sweeper.stop()
        super().server_close()


def main(argv=None):
    if argv is None:
        argv = sys.argv
    setup_logging(logger, "PUNCH_LOG_LEVEL")
    try:
        port = parse_port(argv, get_env_int("PUNCH_PORT", DEFAULT_PORT))
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    bind_addr = os.getenv("PUNCH_BIND", DEFAULT_BIND)
    peer_timeout = get_env_float("PUNCH_PEER_TIMEOUT", DEFAULT_PEER_TIMEOUT)
    sweep_interval = get_env_float("PUNCH_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL)
    max_packet = get_env_int("PUNCH_MAX_PACKET", DEFAULT_MAX_PACKET)

    try:
        server = RendezvousServer(
            (bind_addr, port),
            peer_timeout=peer_timeout,
            sweep_interval=sweep_interval,
            max_packet=max_packet,
        )
    except OSError as exc:
        logger.error("UDP listen error on %s:%s: %s", bind_addr, port, exc)
        return 1

    logger.info(
        "Hole-punch server listening on UDP %s:%s (timeout=%ss, sweep=%ss)",
        bind_addr,
        port,
        peer_timeout,
        sweep_interval,
    )
    with server:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))

"""Peer registration, matching and teardown state for the hole-punch server.

Waiting peers, active peers and the match id bound to each identity live in
one MatchStore behind a single lock. Every datagram handler thread and the
expiry sweeper go through the store's methods; nothing else touches the tables.
"""

import logging
import threading
import time
import uuid
from collections import namedtuple

KILL_REASON = "peer-disconnected"

OUTCOME_REJECTED = "rejected"
OUTCOME_WAITING = "waiting"
OUTCOME_MATCHED = "matched"

KILL_REJECTED = "rejected"
KILL_STALE = "stale"
KILL_UNPAIRED = "unpaired"
KILL_NOTIFIED = "notified"

logger = logging.getLogger("rendezvous.store")


class PeerEndpoint(namedtuple("PeerEndpoint", ("uid", "address", "port"))):
    __slots__ = ()

    def to_dict(self):
        return {"uid": self.uid, "address": self.address, "port": self.port}


MatchOutcome = namedtuple("MatchOutcome", ("status", "match_id", "peer"), defaults=(None, None))


class PeerRecord:
    __slots__ = ("peer", "last_seen")

    def __init__(self, peer, last_seen):
        self.peer = peer
        self.last_seen = last_seen


def _new_match_id():
    return str(uuid.uuid4())


def match_payload(peer, match_id):
    return {"peer": peer.to_dict(), "matchId": match_id}


def kill_payload(opponent_uid, match_id):
    payload = {"kill": True, "opponentUid": opponent_uid, "reason": KILL_REASON}
    if match_id:
        payload["matchId"] = match_id
    return payload


class MatchStore:
    """Pairs peers by identity and tears matches down on request.

    ``send(payload, peer)`` delivers a JSON-ready dict to a PeerEndpoint and
    must not raise. It is called while the store lock is held.
    """

    def __init__(self, send, peer_timeout, clock=time.monotonic, new_match_id=_new_match_id):
        self._send = send
        self.peer_timeout = peer_timeout
        self._clock = clock
        self._new_match_id = new_match_id
        self._lock = threading.Lock()
        self._waiting = {}
        self._active = {}
        self._match_ids = {}

    def register(self, uid, peer_uid, address, port):
        if not uid or not peer_uid:
            logger.info("Invalid message format (missing uid/peerUid) from %s:%s", address, port)
            return MatchOutcome(OUTCOME_REJECTED)

        current = PeerEndpoint(uid, address, port)
        with self._lock:
            now = self._clock()
            # Provisional active entry until a match is issued; a kill that
            # arrives first still resolves against it.
            self._waiting[uid] = PeerRecord(current, now)
            self._active[uid] = PeerRecord(current, now)
            logger.info("Stored %s at %s:%s", uid, address, port)

            target = self._waiting.get(peer_uid)
            if target is None:
                logger.debug("%s waiting for %s", uid, peer_uid)
                return MatchOutcome(OUTCOME_WAITING)

            match_id = self._new_match_id()
            self._match_ids[uid] = match_id
            self._match_ids[peer_uid] = match_id
            self._active[peer_uid] = target
            self._waiting.pop(uid, None)
            self._waiting.pop(peer_uid, None)

            start = self._clock()
            self._send(match_payload(target.peer, match_id), current)
            self._send(match_payload(current, match_id), target.peer)
            logger.info(
                "Match %s sent to %s and %s in %.6fs",
                match_id,
                uid,
                peer_uid,
                self._clock() - start,
            )
            return MatchOutcome(OUTCOME_MATCHED, match_id, target.peer)

    def kill(self, uid, peer_uid, match_id=""):
        if not uid or not peer_uid:
            logger.info("Invalid kill format (missing uid/peerUid)")
            return KILL_REJECTED

        with self._lock:
            current_id = self._match_ids.get(uid) or self._match_ids.get(peer_uid, "")
            if match_id and current_id and match_id != current_id:
                logger.info(
                    "Ignoring kill from %s with stale matchId %s (current %s)",
                    uid,
                    match_id,
                    current_id,
                )
                return KILL_STALE

            survivor = self._active.get(peer_uid)
            self._active.pop(uid, None)
            self._active.pop(peer_uid, None)

            if survivor is None:
                logger.info("Kill from %s: %s is not active, nobody to notify", uid, peer_uid)
                return KILL_UNPAIRED

            self._send(kill_payload(uid, current_id), survivor.peer)
            self._match_ids.pop(uid, None)
            self._match_ids.pop(peer_uid, None)
            logger.info(
                "Kill processed for %s/%s. Remaining waiting=%d active=%d",
                uid,
                peer_uid,
                len(self._waiting),
                len(self._active),
            )
            return KILL_NOTIFIED

    def sweep(self):
        """Drop waiting and active entries older than the peer timeout.

        Match id bindings are kept; only a kill clears them.
        """
        with self._lock:
            now = self._clock()
            waiting_removed = self._prune(self._waiting, now, "waiting")
            active_removed = self._prune(self._active, now, "active")
        return waiting_removed, active_removed

    def _prune(self, table, now, label):
        removed = 0
        for uid in list(table.keys()):
            if now - table[uid].last_seen > self.peer_timeout:
                del table[uid]
                removed += 1
                logger.info("Removed stale %s peer %s", label, uid)
        return removed

    def is_waiting(self, uid):
        with self._lock:
            return uid in self._waiting

    def is_active(self, uid):
        with self._lock:
            return uid in self._active

    def match_id_for(self, uid):
        with self._lock:
            return self._match_ids.get(uid)

    def counts(self):
        with self._lock:
            return {
                "waiting": len(self._waiting),
                "active": len(self._active),
                "bindings": len(self._match_ids),
            }


class ExpirySweeper:
    """Calls ``store.sweep()`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, store, interval):
        self.store = store
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="expiry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                waiting, active = self.store.sweep()
            except Exception:
                logger.exception("Expiry sweep failed")
                continue
            if waiting or active:
                logger.info("Sweep removed %d waiting and %d active peer(s)", waiting, active)

"""Socket.IO relay that pairs two peers by session id.

The relay never looks inside game messages. Each peer runs the rules
engine itself; the relay only forwards messages between exactly two
sockets and counts what it forwarded.
"""
import logging
import random
import string
import threading

from flask import Flask, request
from flask_socketio import SocketIO, emit

from .config import Config

log = logging.getLogger(__name__)


class SessionRegistry:
    """Open sessions: session id -> {"host": sid, "guest": sid | None, "sent": {sid: n}}.

    ``sent`` counts the messages forwarded from each side, so a departing
    peer's partner knows how many to expect before the goodbye.
    """

    def __init__(self):
        self.sessions = {}
        self.lock = threading.Lock()

    def new_id(self):
        while True:
            session_id = ''.join(random.choices(string.digits, k=5))
            if session_id not in self.sessions: return session_id

    def open(self, host_sid):
        session_id = self.new_id()
        self.sessions[session_id] = {"host": host_sid, "guest": None, "sent": {}}
        return session_id

    def find(self, sid):
        for session_id, entry in self.sessions.items():
            if sid in (entry["host"], entry["guest"]):
                return session_id, entry
        return None, None

    def other(self, entry, sid):
        return entry["guest"] if sid == entry["host"] else entry["host"]


def create_app(config=None):
    app = Flask(__name__)
    app.config.from_object(config or Config)
    socketio = SocketIO(app, async_mode=app.config['SOCKETIO_ASYNC_MODE'])
    registry = SessionRegistry()
    app.extensions['uttt_sessions'] = registry

    def drop(sid):
        """Remove ``sid`` from its session and tell the other side. Returns the session id."""
        with registry.lock:
            session_id, entry = registry.find(sid)
            if not session_id: return None
            other_sid = registry.other(entry, sid)
            del registry.sessions[session_id]
            if other_sid:
                emit("peer_disconnected", {"sent": entry["sent"].get(sid, 0)}, to=other_sid)
        log.info("Session %s closed", session_id)
        return session_id

    @socketio.on("host")
    def host():
        sid = request.sid
        drop(sid)
        with registry.lock:
            session_id = registry.open(sid)
        log.info("Session %s opened", session_id)
        return session_id

    @socketio.on("join")
    def join(data):
        session_id = str((data or {}).get("session", "")).strip()
        with registry.lock:
            entry = registry.sessions.get(session_id)
            if not entry:
                return {"ok": False, "error": "Session not found"}
            if entry["guest"] is not None:
                return {"ok": False, "error": "Session is full"}
            if entry["host"] == request.sid:
                return {"ok": False, "error": "Cannot join your own session"}
            entry["guest"] = request.sid
            emit("peer_connected", to=entry["host"])
        log.info("Peer joined session %s", session_id)
        return {"ok": True}

    @socketio.on("peer_message")
    def relay_message(data):
        sid = request.sid
        with registry.lock:
            session_id, entry = registry.find(sid)
            if not session_id or entry["guest"] is None:
                log.warning("Dropping message from unpaired socket %s", sid)
                return
            emit("peer_message", data, to=registry.other(entry, sid))
            entry["sent"][sid] = entry["sent"].get(sid, 0) + 1

    @socketio.on("leave")
    def leave():
        drop(request.sid)

    @socketio.on("disconnect")
    def disconnect(reason=None):
        drop(request.sid)

    return app, socketio

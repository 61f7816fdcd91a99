import json
import random

import pytest

from uttt import logic
from uttt.config import Config
from uttt.coordinator import MatchCoordinator
from uttt.peer import PeerChannel
from uttt.store import SaveStore


class RelayTestConfig(Config):
    SOCKETIO_ASYNC_MODE = 'threading'
    TESTING = True


class MemoryRelay:
    """Pairs MemoryChannels in-process and delivers messages synchronously, in order."""

    def __init__(self):
        self.sessions = {}
        self.counter = 0
        self.sent = []

    def channel(self):
        return MemoryChannel(self)


class MemoryChannel(PeerChannel):
    def __init__(self, relay):
        super().__init__()
        self.relay = relay
        self.peer = None

    def host_session(self):
        self.relay.counter += 1
        session_id = f"{10000 + self.relay.counter}"
        self.relay.sessions[session_id] = self
        self.session_id = session_id
        self._fire('on_open', session_id)
        return session_id

    def join_session(self, session_id):
        host = self.relay.sessions.pop(session_id, None)
        if host is None:
            self._fire('on_error', "Session not found")
            return False
        self.peer, host.peer = host, self
        self.session_id = session_id
        host._fire('on_peer_connected')
        self._fire('on_peer_connected')
        return True

    def send(self, message):
        # round-trip through JSON like the real wire
        wire = json.loads(json.dumps(message))
        self.relay.sent.append(wire)
        if self.peer is not None:
            self.peer._fire('on_message', wire)

    def close(self):
        super().close()
        peer, self.peer = self.peer, None
        if peer is not None:
            peer.peer = None
            peer._fire('on_peer_disconnected')


def play_all(state, moves):
    for b, c in moves:
        state = logic.apply_move(state, b, c)
        assert state is not None, f"move {(b, c)} was rejected"
    return state


def board(text):
    """Parse a 9-character board like 'XX.O.....'."""
    assert len(text) == 9
    return [None if ch == '.' else ch for ch in text]


def make_state(boards=None, turn=logic.X, forced_board=None):
    """Build a state from {board_index: 'XX.O.....'}; unlisted boards are empty."""
    raw = [[None] * 9 for _ in range(9)]
    for i, text in (boards or {}).items():
        raw[i] = board(text)
    return logic.build_state(raw, turn, forced_board)


@pytest.fixture
def relay():
    return MemoryRelay()


@pytest.fixture
def notes():
    return []


@pytest.fixture
def coordinator(relay, notes):
    c = MatchCoordinator(channel_factory=relay.channel, notify=notes.append,
                         rng=random.Random(7), ai_delay=None)
    yield c
    c.close()


@pytest.fixture
def peers(relay):
    """A connected host (X) and guest (O) pair."""
    host_notes, guest_notes = [], []
    host = MatchCoordinator(channel_factory=relay.channel, notify=host_notes.append, ai_delay=None)
    guest = MatchCoordinator(channel_factory=relay.channel, notify=guest_notes.append, ai_delay=None)
    session_id = host.host_online()
    assert guest.join_online(session_id)
    host.notes, guest.notes = host_notes, guest_notes
    yield host, guest
    host.close()
    guest.close()


@pytest.fixture
def store(tmp_path):
    s = SaveStore(f"sqlite:///{tmp_path / 'saves.sqlite3'}")
    yield s
    s.close()

"""Match coordination: the single owner of the live GameState.

Three things can change the game: a local click, a scheduled AI reply and a
MOVE arriving from the peer. All of them end up in ``_commit`` under one
lock, and ``_commit`` only ever calls ``logic.apply_move``, so both peers
evolve through the same deterministic function over the same move order.
"""
import json
import logging
import threading
from typing import NamedTuple, Optional

from . import logic
from .ai import BEGINNER, DIFFICULTIES, get_ai_move
from .config import Config
from .peer import SocketIOPeerChannel

log = logging.getLogger(__name__)

PVP, AI, ONLINE, REVIEW = 'pvp', 'ai', 'online', 'review'
MODES = (PVP, AI, ONLINE, REVIEW)

LOCAL, HOSTING, JOINING, CONNECTED, DISCONNECTED = (
    'LOCAL', 'HOSTING', 'JOINING', 'CONNECTED', 'DISCONNECTED')

HUMAN_MARK, AI_MARK = logic.X, logic.O
HOST_MARK, GUEST_MARK = logic.X, logic.O

MOVE, RESTART = 'MOVE', 'RESTART'


class InvalidSave(Exception):
    pass


class UndoUnavailable(Exception):
    pass


class MoveRecord(NamedTuple):
    boards: tuple
    statuses: tuple
    turn: str
    forced_board: Optional[int]
    last_move: Optional[tuple]


def _default_channel_factory():
    return SocketIOPeerChannel(Config.RELAY_URL)


class MatchCoordinator:
    def __init__(self, channel_factory=None, notify=None, rng=None,
                 ai_delay=Config.AI_MOVE_DELAY):
        self.channel_factory = channel_factory or _default_channel_factory
        self.notify = notify or (lambda msg: log.info("notify: %s", msg))
        self.rng = rng
        self.ai_delay = ai_delay

        self._lock = threading.RLock()
        self._ai_timer = None
        self.channel = None
        self.session_id = None
        self.connection = LOCAL
        self.local_mark = None

        self.mode = PVP
        self.difficulty = BEGINNER
        self.state = logic.new_game()
        self.history = []
        self.last_move = None

    # ── Queries ───────────────────────────────────────────────────────────────
    def legal_moves(self):
        return logic.legal_moves(self.state)

    @property
    def online(self):
        return self.mode == ONLINE or self.connection != LOCAL

    # ── The one mutation path ────────────────────────────────────────────────
    def _commit(self, b, c, origin):
        """Apply a move from ``origin`` ('local', 'ai' or 'remote')."""
        with self._lock:
            prev = self.state
            nxt = logic.apply_move(prev, b, c)
            if nxt is None:
                log.debug("Rejected %s move (%s, %s)", origin, b, c)
                return False
            if self.mode != ONLINE:
                self.history.append(MoveRecord(prev.boards, prev.statuses, prev.turn,
                                               prev.forced_board, self.last_move))
            self.state = nxt
            self.last_move = (b, c)
            # sent while still holding the lock so outgoing order matches commit order
            if origin == 'local' and self.mode == ONLINE and self.channel is not None:
                self.channel.send({'type': MOVE, 'boardIndex': b, 'cellIndex': c})
            if nxt.winner:
                self.notify(f"{nxt.winner} wins!")
            elif nxt.is_draw:
                self.notify("Draw!")
            return True

    def _reset(self):
        with self._lock:
            self._cancel_ai()
            self.state = logic.new_game()
            self.history = []
            self.last_move = None

    # ── Local play ────────────────────────────────────────────────────────────
    def play(self, b, c):
        with self._lock:
            if self.mode == REVIEW: return False
            if self.mode == ONLINE:
                if self.connection != CONNECTED: return False
                if self.state.turn != self.local_mark: return False
            elif self.mode == AI and self.state.turn == AI_MARK:
                return False
            if not self._commit(b, c, 'local'): return False
        if self.mode == AI:
            self._schedule_ai()
        return True

    def play_ai_turn(self):
        with self._lock:
            self._ai_timer = None
            if self.mode != AI or self.state.terminal or self.state.turn != AI_MARK:
                return False
            move = get_ai_move(self.state, self.difficulty, self.rng)
            if move is None: return False
            return self._commit(*move, 'ai')

    def _schedule_ai(self):
        if self.state.terminal or self.state.turn != AI_MARK: return
        if self.ai_delay is None:
            self.play_ai_turn()
            return
        with self._lock:
            self._cancel_ai()
            self._ai_timer = threading.Timer(self.ai_delay, self.play_ai_turn)
            self._ai_timer.daemon = True
            self._ai_timer.start()

    def _cancel_ai(self):
        if self._ai_timer is not None:
            self._ai_timer.cancel()
            self._ai_timer = None

    def start_match(self, mode, difficulty=None):
        if mode not in (PVP, AI, ONLINE):
            raise ValueError(f"unknown mode {mode!r}")
        if difficulty is not None and difficulty not in DIFFICULTIES:
            raise ValueError(f"unknown difficulty {difficulty!r}")
        with self._lock:
            if mode == ONLINE:
                if self.connection != CONNECTED:
                    self.notify("Not connected to an opponent")
                    return False
                self._reset()
                self.channel.send({'type': RESTART})
                self.notify("Game restarted")
                return True
            self._teardown()
            self.connection = LOCAL
            self.local_mark = None
            self.mode = mode
            self.difficulty = difficulty or BEGINNER
            self._reset()
        label = '2 Player' if mode == PVP else f'vs CPU ({self.difficulty})'
        self.notify(f"Started New {label} Game")
        return True

    def undo(self):
        with self._lock:
            if self.online:
                raise UndoUnavailable("Undo not available in online mode")
            if self.mode == REVIEW:
                raise UndoUnavailable("Undo not available for a loaded online game")
            steps = 2 if self.mode == AI and self.state.turn == HUMAN_MARK else 1
            if len(self.history) < steps:
                raise UndoUnavailable("Nothing to undo")
            self._cancel_ai()
            target = self.history[-steps]
            del self.history[-steps:]
            self.state = logic.GameState(
                boards=target.boards,
                statuses=target.statuses,
                turn=target.turn,
                forced_board=target.forced_board,
                winner=None,
                is_draw=False,
                move_count=self.state.move_count - steps,
            )
            self.last_move = target.last_move
        self.notify("Undo successful")
        return self.state

    # ── Online session ────────────────────────────────────────────────────────
    def _teardown(self):
        with self._lock:
            channel, self.channel = self.channel, None
            self.session_id = None
        if channel is not None:
            channel.close()

    def _open_channel(self):
        channel = self.channel_factory()

        def guard(handler):
            def bound(*args):
                if channel is not self.channel:
                    log.debug("Ignoring %s from a closed channel", handler.__name__)
                    return
                handler(*args)
            return bound

        channel.on_open              = guard(self._on_open)
        channel.on_peer_connected    = guard(self._on_peer_connected)
        channel.on_message           = guard(self._on_message)
        channel.on_peer_disconnected = guard(self._on_peer_disconnected)
        channel.on_error             = guard(self._on_error)
        self.channel = channel
        return channel

    def host_online(self):
        with self._lock:
            self._teardown()
            self._cancel_ai()
            self.connection = HOSTING
            self.mode = ONLINE
            self.local_mark = HOST_MARK
            channel = self._open_channel()
        return channel.host_session()

    def join_online(self, session_id):
        session_id = (session_id or '').strip()
        if not session_id:
            self.notify("Please enter a Game ID")
            return False
        with self._lock:
            self._teardown()
            self._cancel_ai()
            self.connection = JOINING
            self.mode = ONLINE
            self.local_mark = GUEST_MARK
            channel = self._open_channel()
        return bool(channel.join_session(session_id))

    def close(self):
        with self._lock:
            self._cancel_ai()
            self._teardown()
            if self.connection != LOCAL:
                self.connection = DISCONNECTED

    # ── Channel callbacks ─────────────────────────────────────────────────────
    def _on_open(self, session_id):
        self.session_id = session_id
        self.notify(f"Hosting game {session_id}. Waiting for an opponent...")

    def _on_peer_connected(self):
        with self._lock:
            self.connection = CONNECTED
            self.mode = ONLINE
            self._reset()
        who = "Player connected! You are X." if self.local_mark == HOST_MARK else "Connected! You are O."
        self.notify(who)

    def _on_message(self, data):
        if not isinstance(data, dict):
            log.warning("Dropping malformed message %r", data)
            return
        kind = data.get('type')
        with self._lock:
            if self.connection != CONNECTED:
                log.warning("Dropping %s received while %s", kind, self.connection)
                return
            if kind == MOVE:
                if not self._commit(data.get('boardIndex'), data.get('cellIndex'), 'remote'):
                    log.warning("Peer sent an illegal move %r", data)
                return
            if kind == RESTART:
                self._reset()
                self.notify("Opponent restarted the game")
                return
        log.warning("Dropping unknown message type %r", kind)

    def _on_peer_disconnected(self):
        with self._lock:
            self.connection = DISCONNECTED
        self.notify("Opponent disconnected")

    def _on_error(self, message):
        with self._lock:
            if self.connection == CONNECTED:
                self.connection = DISCONNECTED
            elif self.connection in (HOSTING, JOINING):
                self.connection = LOCAL
                self.local_mark = None
                self.mode = PVP
            self._teardown()
        self.notify(f"Connection Error: {message}")

    # ── Persistence ───────────────────────────────────────────────────────────
    def save(self, store, key=Config.SAVE_KEY):
        with self._lock:
            payload = logic.to_dict(self.state)
            payload.update({
                'mode':       self.mode,
                'difficulty': self.difficulty,
                'lastMove':   list(self.last_move) if self.last_move else None,
                'history':    [],
            })
        store.save(key, json.dumps(payload))
        self.notify("Game Saved!")

    def load(self, store, key=Config.SAVE_KEY):
        raw = store.load(key)
        if raw is None:
            raise InvalidSave("No saved game found")
        try:
            data = json.loads(raw)
            state = logic.from_dict(data)
            mode = data.get('mode', PVP)
            difficulty = data.get('difficulty') or BEGINNER
            last_move = data.get('lastMove')
            if mode not in MODES or difficulty not in DIFFICULTIES:
                raise ValueError("unknown mode or difficulty")
            if last_move is not None:
                last_move = tuple(last_move)
                if len(last_move) != 2 or not all(map(logic.valid_index, last_move)):
                    raise ValueError("bad lastMove")
        except (ValueError, TypeError, AttributeError) as e:
            raise InvalidSave(f"Error loading game: {e}") from e

        # an online match cannot be resumed; it opens read-only
        if mode == ONLINE:
            mode = REVIEW
        with self._lock:
            self._cancel_ai()
            self._teardown()
            self.connection = LOCAL
            self.local_mark = None
            self.mode = mode
            self.difficulty = difficulty
            self.state = state
            self.history = []
            self.last_move = last_move
        self.notify("Loaded as local analysis (Online disconnected)" if mode == REVIEW
                    else "Game Loaded!")
        if mode == AI:
            self._schedule_ai()
        return state

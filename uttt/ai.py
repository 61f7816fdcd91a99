"""AI for Ultimate Tic Tac Toe: beginner / intermediate / advanced.

ADVANCED AI STRATEGY
────────────────────
One ply only. Every legal move is scored in isolation:

1. Winning a mini-board is worth 100, and everything if it also wins the
   meta-board. Centre boards beat corner boards beat edge boards.

2. Taking the cell the opponent needed to win that mini-board is a block
   and is worth nearly as much as a win.

3. The cell index is where the opponent goes next. Sending them to a
   decided board hands them a free choice; sending them to a board they
   can win at once is worse.

4. Centre cell > corner cell > edge cell as a small tie-breaker.

A little noise is added so that equally good moves are not always played
in the same order.
"""
import random
from .logic import check_board_status, check_meta_winner, legal_moves, other

BEGINNER, INTERMEDIATE, ADVANCED = 'beginner', 'intermediate', 'advanced'
DIFFICULTIES = (BEGINNER, INTERMEDIATE, ADVANCED)


# ── Board geometry ────────────────────────────────────────────────────────────
_CENTER        = 4
_CORNERS       = frozenset({0, 2, 6, 8})

# ── Advanced scoring weights ──────────────────────────────────────────────────
_WIN_BOARD     = 100
_WIN_GAME      = 10_000
_CENTER_BOARD  = 20
_CORNER_BOARD  = 10
_BLOCK         = 80
_FREE_CHOICE   = -50    # opponent sent to a won/full board
_SEND_TO_WIN   = -100   # opponent sent to a board they can take at once
_CENTER_CELL   = 5
_CORNER_CELL   = 3

_NOISE         = 5.0
_TIE_WINDOW    = 0.1


def can_win_board(cells, mark):
    """Return the first empty cell that wins ``cells`` for ``mark``, or None."""
    for i in range(9):
        if cells[i] is None:
            trial = list(cells); trial[i] = mark
            if check_board_status(trial).winner == mark:
                return i
    return None


def score_move(state, move):
    """Base score of ``move`` for the side to play, before any noise."""
    b, c = move
    me, opp = state.turn, other(state.turn)
    score = 0

    cells = list(state.boards[b]); cells[c] = me
    status = check_board_status(cells)
    if status.winner == me:
        score += _WIN_BOARD
        statuses = list(state.statuses); statuses[b] = status
        if check_meta_winner(statuses).winner == me:
            score += _WIN_GAME
        if b == _CENTER:    score += _CENTER_BOARD
        elif b in _CORNERS: score += _CORNER_BOARD

    if can_win_board(state.boards[b], opp) == c:
        score += _BLOCK

    # Destination uses the status before this move is applied
    if state.statuses[c].decided:
        score += _FREE_CHOICE
    elif can_win_board(state.boards[c], opp) is not None:
        score += _SEND_TO_WIN

    if c == _CENTER:    score += _CENTER_CELL
    elif c in _CORNERS: score += _CORNER_CELL
    return score


# ── Tiers ─────────────────────────────────────────────────────────────────────
def _intermediate_move(state, valid, rng):
    me, opp = state.turn, other(state.turn)
    for b, c in valid:
        if can_win_board(state.boards[b], me) == c: return b, c
    for b, c in valid:
        if can_win_board(state.boards[b], opp) == c: return b, c
    return rng.choice(valid)


def _advanced_move(state, valid, rng):
    scored = [(score_move(state, m) + rng.random() * _NOISE, m) for m in valid]
    best = max(s for s, _ in scored)
    top = [m for s, m in scored if best - s < _TIE_WINDOW]
    return rng.choice(top)


# ── Public API ────────────────────────────────────────────────────────────────
def get_ai_move(state, difficulty=BEGINNER, rng=None):
    """Pick a move for ``state.turn``, or None if there is nothing to play.

    ``rng`` defaults to the ``random`` module; pass a seeded
    ``random.Random`` for reproducible choices.
    """
    if difficulty not in DIFFICULTIES:
        raise ValueError(f"unknown difficulty {difficulty!r}")
    rng = rng or random
    valid = legal_moves(state)
    if not valid: return None
    if difficulty == BEGINNER:     return rng.choice(valid)
    if difficulty == INTERMEDIATE: return _intermediate_move(state, valid, rng)
    return _advanced_move(state, valid, rng)

from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

X, O = "X", "O"
MARKS = (X, O)

WIN_LINES = [
    (0,1,2),(3,4,5),(6,7,8),
    (0,3,6),(1,4,7),(2,5,8),
    (0,4,8),(2,4,6)
]

Move = Tuple[int, int]


def other(mark):
    return O if mark == X else X


class BoardStatus(NamedTuple):
    winner: Optional[str] = None
    is_draw: bool = False

    @property
    def decided(self):
        return self.winner is not None or self.is_draw


OPEN = BoardStatus()
EMPTY_BOARD = (None,) * 9


@dataclass(frozen=True)
class GameState:
    boards: tuple = (EMPTY_BOARD,) * 9
    statuses: tuple = (OPEN,) * 9
    turn: str = X
    forced_board: Optional[int] = None
    winner: Optional[str] = None
    is_draw: bool = False
    move_count: int = 0

    @property
    def terminal(self):
        return self.winner is not None or self.is_draw


def new_game():
    return GameState()


def check_board_status(cells):
    for a, b, c in WIN_LINES:
        if cells[a] and cells[a] == cells[b] == cells[c]:
            return BoardStatus(cells[a], False)
    if all(cells):
        return BoardStatus(None, True)
    return OPEN


def check_meta_winner(statuses):
    for a, b, c in WIN_LINES:
        w = statuses[a].winner
        if w and w == statuses[b].winner == statuses[c].winner:
            return BoardStatus(w, False)
    if all(s.decided for s in statuses):
        return BoardStatus(None, True)
    return OPEN


def legal_moves(state):
    if state.terminal: return []
    fb = state.forced_board
    if fb is not None and not state.statuses[fb].decided:
        boards = [fb]
    else:
        boards = range(9)
    return [(b, c) for b in boards if not state.statuses[b].decided
            for c in range(9) if state.boards[b][c] is None]


def valid_index(i):
    return isinstance(i, int) and not isinstance(i, bool) and 0 <= i < 9


def apply_move(state, b, c):
    """Return the state after ``state.turn`` plays cell ``c`` of board ``b``.

    Returns None when the move is illegal; ``state`` is never modified. Local
    input, AI moves and moves received from a peer all go through here.
    """
    if not (valid_index(b) and valid_index(c)): return None
    if state.terminal: return None
    if state.statuses[b].decided: return None
    fb = state.forced_board
    if fb is not None and not state.statuses[fb].decided and b != fb: return None
    if state.boards[b][c] is not None: return None

    player = state.turn
    cells = list(state.boards[b])
    cells[c] = player
    boards = list(state.boards)
    boards[b] = tuple(cells)

    statuses = list(state.statuses)
    statuses[b] = check_board_status(boards[b])
    meta = check_meta_winner(statuses)
    # the destination is checked after this move's own board was rescored
    forced = None if statuses[c].decided else c

    return GameState(
        boards=tuple(boards),
        statuses=tuple(statuses),
        turn=other(player),
        forced_board=forced,
        winner=meta.winner,
        is_draw=meta.is_draw,
        move_count=state.move_count + 1,
    )


def build_state(boards, turn=X, forced_board=None, move_count=None):
    """Derive a full GameState from raw cell contents.

    Statuses and the meta result are recomputed rather than trusted. A
    forced board that points at a decided board is cleared.
    """
    if len(boards) != 9 or any(len(cells) != 9 for cells in boards):
        raise ValueError("expected 9 boards of 9 cells")
    for cells in boards:
        for cell in cells:
            if cell is not None and cell not in MARKS:
                raise ValueError(f"invalid cell value {cell!r}")
    if turn not in MARKS:
        raise ValueError(f"invalid turn {turn!r}")
    if forced_board is not None and not valid_index(forced_board):
        raise ValueError(f"invalid forced board {forced_board!r}")

    boards = tuple(tuple(cells) for cells in boards)
    statuses = tuple(check_board_status(cells) for cells in boards)
    meta = check_meta_winner(statuses)
    if forced_board is not None and statuses[forced_board].decided:
        forced_board = None
    if move_count is None:
        move_count = sum(1 for cells in boards for cell in cells if cell)
    return GameState(boards, statuses, turn, forced_board,
                     meta.winner, meta.is_draw, move_count)


def to_dict(state):
    return {
        "boards":      [list(cells) for cells in state.boards],
        "statuses":    [{"winner": s.winner, "isDraw": s.is_draw} for s in state.statuses],
        "turn":        state.turn,
        "forcedBoard": state.forced_board,
        "winner":      state.winner,
        "isDraw":      state.is_draw,
        "moveCount":   state.move_count,
    }


def from_dict(data):
    if not isinstance(data, dict): raise ValueError("state must be an object")
    try:
        boards = data["boards"]
        turn = data["turn"]
    except KeyError as e:
        raise ValueError(f"missing field {e.args[0]}") from None
    if not isinstance(boards, list) or not all(isinstance(b, list) for b in boards):
        raise ValueError("boards must be a list of lists")
    move_count = data.get("moveCount")
    if move_count is not None and not isinstance(move_count, int):
        raise ValueError("moveCount must be an integer")
    return build_state(boards, turn, data.get("forcedBoard"), move_count)

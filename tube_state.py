"""
tube_state.py
The state model for tube sorting puzzles.

A state is a tuple of tubes, and each tube is a tuple of color ids from
the bottom to the top. States are never mutated: every pour builds a new
state, so states can be used directly as dictionary keys.

Two pour rules are supported:
  - single-unit: one unit moves per pour (ball and nut puzzles)
  - run: the whole run of the top color moves, as much as fits (water
    puzzles)
"""

# =============================================================================

from collections import Counter, namedtuple
from enum import Enum

# =============================================================================


class PourException(Exception):
    """An error that occurs while trying to pour."""


# =============================================================================


class Mode(Enum):
    """The pour rules."""
    SINGLE_UNIT = "single-unit"
    RUN = "run"

    @classmethod
    def parse(cls, value):
        """Returns the mode for the given value, which may be a Mode, one
        of the mode names, or one of the game names ("nut" or "water").
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"invalid mode: {value!r}")
        name = value.strip().lower()
        if name in _MODE_ALIASES:
            return _MODE_ALIASES[name]
        raise ValueError(f"invalid mode: {value!r}")


_MODE_ALIASES = {
    "single-unit": Mode.SINGLE_UNIT,
    "single_unit": Mode.SINGLE_UNIT,
    "nut": Mode.SINGLE_UNIT,
    "ball": Mode.SINGLE_UNIT,
    "run": Mode.RUN,
    "water": Mode.RUN,
}


class Move(namedtuple("Move", ["src", "dst"])):
    """A pour from tube `src` into tube `dst`."""

    __slots__ = ()

    def to_dict(self, count=None):
        data = {"from": self.src, "to": self.dst}
        if count is not None:
            data["count"] = count
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(data["from"], data["to"])


def as_move(move):
    """Returns the given Move, `(src, dst)` pair or `{"from", "to"}` dict as
    a Move.
    """
    if isinstance(move, dict):
        return Move.from_dict(move)
    return Move(*move)


# =============================================================================


def make_state(tubes):
    """Freezes the given tubes into a state."""
    return tuple(tuple(tube) for tube in tubes)


def canonical_key(state):
    """Returns the key used to detect repeated states.

    Tube order is kept as is, since moves address tubes by index.
    """
    return make_state(state)


def color_counts(state):
    """Returns a Counter of how many units of each color there are."""
    counts = Counter()
    for tube in state:
        counts.update(tube)
    return counts


def top_run(tube):
    """Returns the length of the run of the top color in the tube."""
    if len(tube) == 0:
        return 0
    color = tube[-1]
    length = 0
    for unit in reversed(tube):
        if unit != color:
            break
        length += 1
    return length


def is_monochrome(tube):
    return all(unit == tube[0] for unit in tube)


def is_complete(tube, capacity):
    """Whether the tube is full of one color."""
    return len(tube) == capacity and is_monochrome(tube)


# =============================================================================


def is_legal(state, src, dst, capacity, mode=Mode.SINGLE_UNIT):
    """Whether tube `src` can be poured into tube `dst`.

    The mode only changes how much is poured, not whether a pour is
    allowed.
    """
    if src == dst:
        return False
    tube_from = state[src]
    tube_to = state[dst]
    if len(tube_from) == 0:
        return False
    if len(tube_to) >= capacity:
        return False
    if len(tube_to) == 0:
        return True
    return tube_from[-1] == tube_to[-1]


def poured_count(state, move, capacity, mode=Mode.SINGLE_UNIT):
    """Returns the number of units the given legal move pours."""
    move = as_move(move)
    mode = Mode.parse(mode)
    if mode is Mode.SINGLE_UNIT:
        return 1
    space = capacity - len(state[move.dst])
    return min(top_run(state[move.src]), space)


def _check_move(state, move):
    src, dst = move
    for index in (src, dst):
        if not 0 <= index < len(state):
            raise PourException(f"no tube {index}")
    if src == dst:
        raise PourException("cannot pour from and to same tube")


def apply_move(state, move, capacity, mode=Mode.SINGLE_UNIT):
    """Pours according to the given move and returns the new state.

    Raises a PourException if the move is not legal.
    """
    move = as_move(move)
    mode = Mode.parse(mode)
    _check_move(state, move)
    tube_from = state[move.src]
    tube_to = state[move.dst]
    if len(tube_from) == 0:
        raise PourException("cannot pour from empty tube")
    if len(tube_to) >= capacity:
        raise PourException("cannot pour into full tube")
    if len(tube_to) > 0 and tube_to[-1] != tube_from[-1]:
        raise PourException("cannot pour on a different color")
    count = poured_count(state, move, capacity, mode)
    # the units all share one color, so their order is preserved
    moving = tube_from[len(tube_from) - count:]
    new_state = list(state)
    new_state[move.src] = tube_from[:len(tube_from) - count]
    new_state[move.dst] = tube_to + moving
    return tuple(new_state)


def unpour(state, move, count):
    """Undoes a pour of `count` units and returns the previous state."""
    move = as_move(move)
    _check_move(state, move)
    tube_from = state[move.src]
    tube_to = state[move.dst]
    if not 0 < count <= len(tube_to):
        raise PourException(
            f"cannot take {count} units back from tube {move.dst}")
    moving = tube_to[len(tube_to) - count:]
    new_state = list(state)
    new_state[move.dst] = tube_to[:len(tube_to) - count]
    new_state[move.src] = tube_from + moving
    return tuple(new_state)


def is_goal(state, capacity):
    """Whether every tube is either empty or full of one color."""
    for tube in state:
        if len(tube) == 0:
            continue
        if not is_complete(tube, capacity):
            return False
    return True


def legal_moves(state, capacity, mode=Mode.SINGLE_UNIT):
    """Yields every legal move, by source tube then destination tube."""
    num_tubes = len(state)
    for src in range(num_tubes):
        for dst in range(num_tubes):
            if is_legal(state, src, dst, capacity, mode):
                yield Move(src, dst)


def replay(tubes, moves, capacity, mode=Mode.SINGLE_UNIT):
    """Yields the starting state and then the state after each move.

    Moves may be Move tuples or `{"from": ..., "to": ...}` dicts.
    """
    mode = Mode.parse(mode)
    state = make_state(tubes)
    yield state
    for move in moves:
        state = apply_move(state, move, capacity, mode)
        yield state


# =============================================================================


def format_state(state, capacity, names=None):
    """Returns a drawing of the tubes, one column per tube, with the
    tube numbers (starting at 1) on top and the top of each tube first.
    """
    if names is None:
        names = {}
    rows = [[] for _ in range(2 + capacity)]
    for i, tube in enumerate(state):
        col = [str(i + 1), ""]
        # pad the empty space at the top of the tube
        slots = [""] * (capacity - len(tube))
        slots.extend(str(names.get(color, color)) for color in reversed(tube))
        col.extend(slots)
        width = max(len(c) for c in col)
        col[1] = "-" * width
        for r, row in enumerate(rows):
            row.append(col[r].center(width))
    return "\n".join("  ".join(row).rstrip() for row in rows)

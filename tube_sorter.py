"""
tube_sorter.py
A solver for tube sorting puzzles (Water Sort, Ball Sort, Nut Sort).

This solver uses a best-first search guided by a disorder heuristic to
find a short solution. The search expands at most `MAX_ITERATIONS`
states, so it always finishes, but the solution it finds is not
guaranteed to be the shortest one.

Accepts the game info from stdin, with one tube per line from the bottom
to the top, and the colors in the tube separated by commas. An empty
line is an empty tube.

Example run:
  $ python tube_sorter.py --capacity 4 --mode run < level_colors.txt
"""

# =============================================================================

import argparse
import heapq
import json
import logging
import sys
from dataclasses import dataclass, field
from itertools import count

from tube_state import (
    Mode,
    Move,
    apply_move,
    canonical_key,
    color_counts,
    format_state,
    is_goal,
    legal_moves,
    make_state,
    poured_count,
)

logger = logging.getLogger(__name__)

# =============================================================================

# The number of units a tube holds, unless told otherwise
DEFAULT_CAPACITY = 4
DEFAULT_MODE = Mode.SINGLE_UNIT
# The most states a single search will expand
MAX_ITERATIONS = 50_000

# Heuristic weights
BREAK_PENALTY = 10
FILL_PENALTY = 2

# Result reasons
SOLVED = "solved"
UNSOLVABLE = "unsolvable"
EXHAUSTED = "exhausted"
INVALID = "invalid"
ERROR = "error"

INTERNAL_ERROR_MESSAGE = "internal error during solving"

# =============================================================================


class ValidationError(ValueError):
    """The puzzle given to the solver is malformed."""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


# =============================================================================


def heuristic(state, capacity,
              break_penalty=BREAK_PENALTY, fill_penalty=FILL_PENALTY):
    """Scores how far the state is from sorted. Lower is better.

    Every place where two neighboring units differ costs
    `break_penalty`. A sorted tube that is not full yet costs
    `fill_penalty` for each missing unit.
    """
    score = 0
    for tube in state:
        if len(tube) == 0:
            continue
        breaks = sum(1 for below, above in zip(tube, tube[1:])
                     if below != above)
        score += break_penalty * breaks
        if breaks == 0 and len(tube) < capacity:
            score += fill_penalty * (capacity - len(tube))
    return score


# =============================================================================


@dataclass
class SearchNode:
    """A state reached during the search, and how it was reached."""
    state: tuple
    g: int
    h: int
    moves: list
    key: tuple
    # insertion order, used to break ties between equal `f` values
    order: int = 0

    @property
    def f(self):
        return self.g + self.h


class Frontier:
    """The open set: nodes that were found but not expanded yet.

    Nodes are looked up by key in a dict, and ordered in a heap by `f`
    and then by insertion order. Improving a node pushes a new heap
    entry; the old entry is skipped when it comes up.
    """

    def __init__(self):
        self._heap = []
        self._nodes = {}
        self._counter = count()

    def __len__(self):
        return len(self._nodes)

    def __bool__(self):
        return len(self._nodes) > 0

    def __contains__(self, key):
        return key in self._nodes

    def get(self, key):
        return self._nodes.get(key)

    def push(self, node):
        """Adds a new node, or replaces the open node with the same key.

        A replaced node keeps its place in the insertion order.
        """
        existing = self._nodes.get(node.key)
        if existing is None:
            node.order = next(self._counter)
        else:
            node.order = existing.order
        self._nodes[node.key] = node
        heapq.heappush(self._heap, (node.f, node.order, node.key))

    def pop(self):
        """Removes and returns the node with the lowest `f`."""
        while self._heap:
            f, _, key = heapq.heappop(self._heap)
            node = self._nodes.get(key)
            if node is None or node.f != f:
                # stale entry
                continue
            del self._nodes[key]
            return node
        raise IndexError("pop from empty frontier")


@dataclass
class SearchOutcome:
    """What a search found."""
    reason: str
    moves: list = field(default_factory=list)
    iterations: int = 0

    @property
    def solvable(self):
        return self.reason == SOLVED


# =============================================================================


def check_counts(state, capacity):
    """Whether the color counts allow a sorted state at all.

    Every color has to fill whole tubes. There is always room for those
    tubes, since no tube holds more than `capacity` units to begin with.
    """
    return all(units % capacity == 0
               for units in color_counts(state).values())


def search(start, capacity, mode=DEFAULT_MODE, max_iterations=MAX_ITERATIONS):
    """Performs a best-first search from the given start state.

    Returns a SearchOutcome. Its reason is `SOLVED` with the moves that
    reach a sorted state, `UNSOLVABLE` if it was proved that none is
    reachable, or `EXHAUSTED` if the search gave up after
    `max_iterations` expansions.
    """
    start = make_state(start)
    mode = Mode.parse(mode)
    logger.debug(
        "searching %d tubes, capacity %d, mode %s, budget %d",
        len(start), capacity, mode.value, max_iterations)

    if not check_counts(start, capacity):
        logger.info("unsolvable: colors cannot fill whole tubes")
        return SearchOutcome(UNSOLVABLE)

    frontier = Frontier()
    frontier.push(SearchNode(
        start, 0, heuristic(start, capacity), [], canonical_key(start)))
    visited = set()
    iterations = 0

    while frontier and iterations < max_iterations:
        node = frontier.pop()
        if is_goal(node.state, capacity):
            logger.info("solved in %d moves after %d iterations",
                        len(node.moves), iterations)
            return SearchOutcome(SOLVED, node.moves, iterations)
        visited.add(node.key)

        g = node.g + 1
        for move in legal_moves(node.state, capacity, mode):
            child = apply_move(node.state, move, capacity, mode)
            child_key = canonical_key(child)
            if child_key in visited:
                continue
            existing = frontier.get(child_key)
            if existing is not None and existing.g <= g:
                continue
            frontier.push(SearchNode(
                child, g, heuristic(child, capacity),
                node.moves + [move], child_key))
        iterations += 1

    if frontier:
        logger.info("gave up after %d iterations", iterations)
        return SearchOutcome(EXHAUSTED, iterations=iterations)
    # every reachable state was expanded
    logger.info("unsolvable: searched all %d reachable states", iterations)
    return SearchOutcome(UNSOLVABLE, iterations=iterations)


# =============================================================================


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def validate_tubes(tubes, capacity, max_iterations=MAX_ITERATIONS):
    """Checks that the puzzle is well formed.

    Raises a ValidationError naming the first problem found.
    """
    if not _is_int(capacity) or capacity <= 0:
        raise ValidationError(
            "capacity must be a positive integer", "capacity")
    if not _is_int(max_iterations) or max_iterations < 0:
        raise ValidationError(
            "max_iterations must be a non-negative integer", "max_iterations")
    if not isinstance(tubes, (list, tuple)):
        raise ValidationError("tubes must be a list of tubes", "tubes")
    if len(tubes) == 0:
        raise ValidationError("there must be at least one tube", "tubes")
    for i, tube in enumerate(tubes):
        if not isinstance(tube, (list, tuple)):
            raise ValidationError(
                f"tube {i+1} must be a list of colors", f"tubes.{i}")
        if len(tube) > capacity:
            raise ValidationError(
                f"tube {i+1} has {len(tube)} units, more than the capacity "
                f"of {capacity}",
                f"tubes.{i}")
        for j, color in enumerate(tube):
            if not _is_int(color) or color <= 0:
                raise ValidationError(
                    f"tube {i+1} has an invalid color: {color!r}",
                    f"tubes.{i}.{j}")
    if all(len(tube) == 0 for tube in tubes):
        raise ValidationError("all tubes are empty", "tubes")


def describe_moves(tubes, moves, capacity, mode=DEFAULT_MODE):
    """Returns the moves as dicts, with the number of units each pours."""
    state = make_state(tubes)
    described = []
    for move in moves:
        units = poured_count(state, move, capacity, mode)
        described.append(move.to_dict(units))
        state = apply_move(state, move, capacity, mode)
    return described


def _failure(reason, message=None, iterations=0):
    result = {
        "solvable": False,
        "moves": [],
        "reason": reason,
        "iterations": iterations,
    }
    if message is not None:
        result["error"] = message
    return result


def solve(tubes, capacity=DEFAULT_CAPACITY, mode=DEFAULT_MODE,
          max_iterations=MAX_ITERATIONS):
    """Solves the given puzzle.

    `tubes` is a list of tubes, each a list of positive color ids from
    the bottom to the top.

    Returns a dict with `solvable`, the `moves` as `{"from", "to",
    "count"}` dicts, the `reason` for the result, and the number of
    `iterations` used. Bad input or an unexpected failure is reported
    with `solvable` false and an `error` message; nothing is raised.
    """
    try:
        try:
            mode = Mode.parse(mode)
        except ValueError as e:
            raise ValidationError(str(e), "mode") from e
        validate_tubes(tubes, capacity, max_iterations)
    except ValidationError as e:
        logger.info("invalid puzzle (%s): %s", e.field, e.message)
        return _failure(INVALID, e.message)

    try:
        outcome = search(tubes, capacity, mode, max_iterations)
        if not outcome.solvable:
            return _failure(outcome.reason, iterations=outcome.iterations)
        moves = describe_moves(tubes, outcome.moves, capacity, mode)
    except Exception:
        logger.exception("failed while solving %r", tubes)
        return _failure(ERROR, INTERNAL_ERROR_MESSAGE)
    return {
        "solvable": True,
        "moves": moves,
        "reason": outcome.reason,
        "iterations": outcome.iterations,
    }


# =============================================================================


def parse_tube_lines(lines):
    """Reads tubes from lines of comma-separated colors.

    Colors may be numbers or names. Each distinct color gets an id, in
    order of appearance. Returns the tubes and a dict from id to the
    color as it was written.
    """
    tubes = []
    color_to_index = {}
    index_to_color = {}
    for line in lines:
        line = line.strip()
        tube = []
        for color in line.split(","):
            color = color.strip()
            if color == "":
                # empty slot
                continue
            if not color.isdigit():
                color = color.title()
            if color not in color_to_index:
                index = len(color_to_index) + 1
                color_to_index[color] = index
                index_to_color[index] = color
            tube.append(color_to_index[color])
        tubes.append(tube)
    return tubes, index_to_color


def print_moves(tubes, moves, capacity, mode=DEFAULT_MODE, names=None):
    state = make_state(tubes)
    print("Start:")
    print(format_state(state, capacity, names))
    for i, move in enumerate(moves):
        print()
        move = Move.from_dict(move)
        state = apply_move(state, move, capacity, mode)
        print(f"Step {i+1}: Pour tube {move.src+1} into tube {move.dst+1}")
        print(format_state(state, capacity, names))
    print()
    print("Num moves:", len(moves))


def _parse_args(argv):
    parser = argparse.ArgumentParser(
        description="Solves a tube sorting puzzle read from stdin.")
    parser.add_argument("-c", "--capacity", type=int, default=DEFAULT_CAPACITY,
                        help="the number of units a tube holds")
    parser.add_argument("-m", "--mode", default=DEFAULT_MODE.value,
                        help="single-unit (or nut) pours one unit at a time, "
                             "run (or water) pours the whole top color")
    parser.add_argument("--max-iterations", type=int, default=MAX_ITERATIONS,
                        help="the most states to expand before giving up")
    parser.add_argument("--json", action="store_true",
                        help="print the result as JSON")
    parser.add_argument("--debug", action="store_true",
                        help="show debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = _parse_args(argv)
    if args.debug:
        logging.basicConfig(level=logging.DEBUG)

    tubes, names = parse_tube_lines(sys.stdin)
    if len(tubes) == 0:
        print("No tube colors given")
        sys.exit(1)

    if not args.json:
        print("Solving...")
    result = solve(tubes, args.capacity, args.mode, args.max_iterations)
    if args.json:
        print(json.dumps(result, indent=2))
        if not result["solvable"]:
            sys.exit(1)
        return
    if "error" in result:
        print(result["error"])
        sys.exit(1)
    if not result["solvable"]:
        if result["reason"] == EXHAUSTED:
            print("Could not find a solution within "
                  f"{args.max_iterations} iterations")
        else:
            print("The given game has no solution")
        sys.exit(1)
    print_moves(tubes, result["moves"], args.capacity,
                Mode.parse(args.mode), names)


if __name__ == "__main__":
    main()

"""
Tests for the solver: heuristic, frontier, search outcomes, input
validation and the command line front end.
"""

import io
import json
import sys

import pytest

import tube_sorter
from tube_sorter import (
    EXHAUSTED,
    INTERNAL_ERROR_MESSAGE,
    INVALID,
    SOLVED,
    UNSOLVABLE,
    Frontier,
    SearchNode,
    ValidationError,
    describe_moves,
    heuristic,
    parse_tube_lines,
    search,
    solve,
    validate_tubes,
)
from tube_state import Mode, Move, is_goal, make_state, replay

EASY_START = [[1, 1, 2, 2], [2, 2, 1, 1], [], []]
TRIPLE_MIX = [[1, 2, 3, 1], [2, 3, 1, 2], [3, 1, 2, 3], [], []]


def final_state(tubes, result, capacity=4, mode=Mode.SINGLE_UNIT):
    *_, last = replay(tubes, result['moves'], capacity, mode)
    return last


# ========== Heuristic ==========


@pytest.mark.parametrize('tubes, expected', [
    ([[1, 2, 1]], 20),
    ([[1, 1]], 4),
    ([[1, 1, 1, 1]], 0),
    ([[]], 0),
    (EASY_START, 20),
    ([[1, 2], [3]], 10 + 6),
])
def test_heuristic(tubes, expected):
    assert heuristic(make_state(tubes), 4) == expected


def test_heuristic_weights():
    state = make_state([[1, 2], [3]])
    assert heuristic(state, 4, break_penalty=1, fill_penalty=0) == 1


# ========== Frontier ==========


def node(key, g, h):
    return SearchNode(state=(), g=g, h=h, moves=[], key=key)


def test_frontier_orders_by_f_then_insertion():
    frontier = Frontier()
    frontier.push(node('a', 0, 5))
    frontier.push(node('b', 0, 3))
    frontier.push(node('c', 1, 2))
    assert [frontier.pop().key for _ in range(3)] == ['b', 'c', 'a']
    assert not frontier


def test_frontier_update_in_place():
    frontier = Frontier()
    frontier.push(node('a', 3, 2))
    frontier.push(node('b', 0, 4))
    frontier.push(node('a', 1, 2))
    assert len(frontier) == 2
    assert frontier.get('a').g == 1
    first = frontier.pop()
    assert (first.key, first.g, first.order) == ('a', 1, 0)
    assert frontier.pop().key == 'b'
    # the outdated entry for 'a' is skipped
    with pytest.raises(IndexError):
        frontier.pop()


# ========== Scenarios ==========


def test_easy_start_solved():
    result = solve(EASY_START, 4, 'single-unit')
    assert result['solvable']
    assert result['reason'] == SOLVED
    assert 'error' not in result
    final = final_state(EASY_START, result)
    assert sorted(final) == [(), (), (1, 1, 1, 1), (2, 2, 2, 2)]


def test_too_few_units_unsolvable():
    result = solve([[1], [1]], 4)
    assert result['solvable'] is False
    assert result['moves'] == []
    assert result['reason'] == UNSOLVABLE
    assert 'error' not in result


def test_run_mode_single_move():
    tubes = [[1, 1, 1], [1]]
    result = solve(tubes, 4, 'run')
    assert result['solvable']
    assert len(result['moves']) == 1
    final = final_state(tubes, result, mode=Mode.RUN)
    assert sorted(final) == [(), (1, 1, 1, 1)]


@pytest.mark.parametrize('tubes', [[], [[], []]])
def test_empty_puzzle_invalid(tubes):
    result = solve(tubes, 4)
    assert result['solvable'] is False
    assert result['moves'] == []
    assert result['reason'] == INVALID
    assert result['error']


# ========== Search outcomes ==========


@pytest.mark.parametrize('tubes', [EASY_START, TRIPLE_MIX])
def test_replay_reaches_goal(tubes, mode):
    result = solve(tubes, 4, mode)
    assert result['solvable']
    assert is_goal(final_state(tubes, result, mode=mode), 4)


@pytest.fixture(params=list(Mode))
def mode(request):
    return request.param


def test_solutions_are_deterministic(mode):
    first = solve(TRIPLE_MIX, 4, mode)
    second = solve(TRIPLE_MIX, 4, mode)
    assert first['moves'] == second['moves']


def test_already_solved():
    result = solve([[1, 1, 1, 1], []], 4)
    assert result['solvable']
    assert result['moves'] == []


def test_budget_exhausted():
    result = solve(EASY_START, 4, max_iterations=0)
    assert result['solvable'] is False
    assert result['moves'] == []
    assert result['reason'] == EXHAUSTED


def test_no_moves_left_is_unsolvable():
    # both tubes are full and nothing can move
    outcome = search([[1, 2], [2, 1]], 2)
    assert outcome.reason == UNSOLVABLE
    assert outcome.iterations == 1
    assert not outcome.solvable


def test_internal_error(monkeypatch):
    def broken(state, capacity):
        raise RuntimeError('boom')

    monkeypatch.setattr(tube_sorter, 'heuristic', broken)
    result = solve(EASY_START, 4)
    assert result == {
        'solvable': False,
        'moves': [],
        'reason': 'error',
        'iterations': 0,
        'error': INTERNAL_ERROR_MESSAGE,
    }


def test_moves_carry_counts():
    tubes = [[1, 1, 1], [1]]
    assert describe_moves(tubes, [Move(0, 1)], 4, Mode.RUN) == [
        {'from': 0, 'to': 1, 'count': 3}]
    assert describe_moves(tubes, [Move(1, 0)], 4, Mode.RUN) == [
        {'from': 1, 'to': 0, 'count': 1}]
    result = solve(EASY_START, 4)
    assert all(move['count'] == 1 for move in result['moves'])


# ========== Validation ==========


@pytest.mark.parametrize('tubes, capacity, mode', [
    (EASY_START, 0, 'single-unit'),
    (EASY_START, -4, 'single-unit'),
    (EASY_START, '4', 'single-unit'),
    (EASY_START, True, 'single-unit'),
    (EASY_START, 4, 'sideways'),
    ('1,1,2,2', 4, 'single-unit'),
    (None, 4, 'single-unit'),
    ([1, 2], 4, 'single-unit'),
    ([[1, 1, 1, 1, 1], []], 4, 'single-unit'),
    ([[0], []], 4, 'single-unit'),
    ([[-1], []], 4, 'single-unit'),
    ([[1.5], []], 4, 'single-unit'),
    ([[True], []], 4, 'single-unit'),
])
def test_invalid_input(tubes, capacity, mode):
    result = solve(tubes, capacity, mode)
    assert result['solvable'] is False
    assert result['moves'] == []
    assert result['reason'] == INVALID
    assert result['error']


def test_validation_names_field():
    with pytest.raises(ValidationError) as exc_info:
        validate_tubes([[1], [1, 1, 1, 1, 1]], 4)
    assert exc_info.value.field == 'tubes.1'

    with pytest.raises(ValidationError) as exc_info:
        validate_tubes([[1, 'red']], 4)
    assert exc_info.value.field == 'tubes.0.1'


# ========== Command line ==========


def test_parse_tube_lines():
    tubes, names = parse_tube_lines(['red, blue\n', '\n', '1,2,red\n'])
    assert tubes == [[1, 2], [], [3, 4, 1]]
    assert names == {1: 'Red', 2: 'Blue', 3: '1', 4: '2'}


def test_main_prints_moves(monkeypatch, capsys):
    monkeypatch.setattr(sys, 'stdin', io.StringIO('red,red,blue,blue\n'
                                                  'blue,blue,red,red\n'
                                                  '\n'
                                                  '\n'))
    tube_sorter.main([])
    out = capsys.readouterr().out
    assert out.startswith('Solving...')
    assert 'Step 1: Pour tube' in out
    assert 'Num moves:' in out


def test_main_json(monkeypatch, capsys):
    monkeypatch.setattr(sys, 'stdin', io.StringIO('1,1,1\n1\n'))
    tube_sorter.main(['--json', '--mode', 'water'])
    result = json.loads(capsys.readouterr().out)
    assert result['solvable']
    assert len(result['moves']) == 1


def test_main_unsolvable(monkeypatch, capsys):
    monkeypatch.setattr(sys, 'stdin', io.StringIO('1\n1\n'))
    with pytest.raises(SystemExit) as exc_info:
        tube_sorter.main([])
    assert exc_info.value.code == 1
    assert 'no solution' in capsys.readouterr().out

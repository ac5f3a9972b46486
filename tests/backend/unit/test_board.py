from itertools import product

import pytest

from tictactoe.backend.board import LINES, Cell, Outcome, empty_board, evaluate, is_well_formed, mark_counts, place_mark

A = Cell.MARK_A
B = Cell.MARK_B
E = Cell.EMPTY


def _has_line(board: tuple[Cell, ...], mark: Cell) -> bool:
    return any(all(board[index] is mark for index in line) for line in LINES)


@pytest.mark.parametrize("line", LINES)
@pytest.mark.parametrize("mark, expected", [(A, Outcome.WINNER_A), (B, Outcome.WINNER_B)])
def test_evaluate_finds_winner_on_every_line_regardless_of_other_cells(line, mark, expected) -> None:
    opponent = B if mark is A else A
    others = [index for index in range(9) if index not in line]

    for filling in product((E, A, B), repeat=len(others)):
        cells = [E] * 9
        for index in line:
            cells[index] = mark
        for index, value in zip(others, filling):
            cells[index] = value
        board = tuple(cells)
        if _has_line(board, opponent):
            continue

        assert evaluate(board) is expected


def test_evaluate_full_boards_without_line_are_draws() -> None:
    checked = 0
    for cells in product((A, B), repeat=9):
        if _has_line(cells, A) or _has_line(cells, B):
            continue
        assert evaluate(cells) is Outcome.DRAW
        checked += 1

    assert checked > 0


def test_evaluate_open_boards_without_line_have_no_outcome() -> None:
    for cells in product((E, A, B), repeat=9):
        if E not in cells or _has_line(cells, A) or _has_line(cells, B):
            continue
        assert evaluate(cells) is Outcome.NONE


def test_evaluate_recognises_documented_draw_board() -> None:
    board = (A, B, A, A, B, B, B, A, A)

    assert evaluate(board) is Outcome.DRAW


def test_evaluate_empty_board_has_no_outcome() -> None:
    assert evaluate(empty_board()) is Outcome.NONE


def test_place_mark_returns_new_board_and_keeps_original() -> None:
    board = empty_board()

    next_board = place_mark(board, 4, A)

    assert board[4] is E
    assert next_board[4] is A
    assert mark_counts(next_board) == (1, 0)


def test_is_well_formed_checks_length_and_cell_types() -> None:
    assert is_well_formed(empty_board()) is True
    assert is_well_formed(empty_board()[:8]) is False
    assert is_well_formed((0,) * 9) is False


def test_evaluate_accepts_boards_stored_as_ints() -> None:
    assert evaluate([0] * 9) is Outcome.NONE
    assert evaluate([1, 1, 1, 2, 2, 0, 0, 0, 0]) is Outcome.WINNER_A
    assert evaluate([1, 1, 0, 2, 2, 2, 1, 0, 0]) is Outcome.WINNER_B
    assert evaluate([1, 2, 1, 1, 2, 2, 2, 1, 1]) is Outcome.DRAW
    assert mark_counts([1, 2, 0, 1, 0, 0, 0, 0, 0]) == (2, 1)

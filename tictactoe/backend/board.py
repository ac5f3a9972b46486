"""Board evaluation helpers for the 3x3 grid."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


BOARD_SIZE = 9

LINES: tuple[tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


class Cell(int, Enum):
    EMPTY = 0
    MARK_A = 1
    MARK_B = 2


class Outcome(str, Enum):
    NONE = "none"
    WINNER_A = "winner_a"
    WINNER_B = "winner_b"
    DRAW = "draw"


Board = tuple[Cell, ...]


def empty_board() -> Board:
    return tuple(Cell.EMPTY for _ in range(BOARD_SIZE))


def is_well_formed(board: Sequence[object]) -> bool:
    if len(board) != BOARD_SIZE:
        return False
    return all(isinstance(cell, Cell) for cell in board)


def mark_counts(board: Sequence[Cell]) -> tuple[int, int]:
    marks_a = sum(1 for cell in board if Cell(cell) is Cell.MARK_A)
    marks_b = sum(1 for cell in board if Cell(cell) is Cell.MARK_B)
    return marks_a, marks_b


def evaluate(board: Sequence[Cell]) -> Outcome:
    """Return the outcome for a well-formed board of cells or their int values.

    Every line is inspected; the first complete line decides the winner.
    A full board without a complete line is a draw.
    """
    cells = tuple(Cell(cell) for cell in board)
    for first, second, third in LINES:
        cell = cells[first]
        if cell is not Cell.EMPTY and cell is cells[second] and cell is cells[third]:
            return Outcome.WINNER_A if cell is Cell.MARK_A else Outcome.WINNER_B

    if Cell.EMPTY not in cells:
        return Outcome.DRAW
    return Outcome.NONE


def place_mark(board: Sequence[Cell], index: int, mark: Cell) -> Board:
    next_board = list(board)
    next_board[index] = mark
    return tuple(next_board)

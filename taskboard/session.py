from __future__ import annotations

from typing import Iterable, List, Optional

from . import mutator
from .errors import InvalidState, NotFound
from .models import Board, Rule


class Session:
    """The boards a client has loaded and which one it is looking at.

    Replaces any ambient "current board" global: the coordinator and the
    API edge receive a session explicitly.
    """

    def __init__(
        self,
        boards: Iterable[Board],
        rules: Iterable[Rule] = (),
        current_board_id: Optional[str] = None,
    ) -> None:
        self.boards: List[Board] = list(boards)
        self.rules: List[Rule] = list(rules)
        if not self.boards:
            raise InvalidState("a session needs at least one board")
        self.current_board_id = current_board_id or self.boards[0].id
        self._index(self.current_board_id)

    def _index(self, board_id: str) -> int:
        for i, board in enumerate(self.boards):
            if board.id == board_id:
                return i
        raise NotFound(f"board {board_id!r} not found", {"boardId": board_id})

    @property
    def board(self) -> Board:
        return self.boards[self._index(self.current_board_id)]

    def get(self, board_id: str) -> Board:
        return self.boards[self._index(board_id)]

    def select(self, board_id: str) -> Board:
        board = self.get(board_id)
        self.current_board_id = board.id
        return board

    def replace_board(self, board: Board) -> None:
        self.boards[self._index(board.id)] = board

    def add_board(self, board: Board, select: bool = True) -> None:
        self.boards.append(board)
        if select:
            self.current_board_id = board.id

    def remove_board(self, board_id: str) -> Board:
        """Drop ``board_id``; return the board that is current afterwards."""
        self.boards = mutator.delete_board(self.boards, board_id)
        if self.current_board_id == board_id:
            self.current_board_id = self.boards[0].id
        return self.board

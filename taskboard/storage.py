from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from . import config, mutator, rules
from .errors import NotFound
from .models import Action, Board, Column, Condition, CustomField, MoveIntent, Rule, Subtask, Task
from .utils import new_uuid

logger = logging.getLogger(__name__)

DEFAULT_BOARD_NAME = "My Board"


class Storage:
    """Authoritative store for boards and automation rules.

    Every board change loads a snapshot, runs it through the pure task
    mutator and saves the result, so backends only implement the small
    set of ``_load``/``_save`` hooks below.
    """

    # === Backend hooks ===
    def _all_boards(self) -> List[Board]:
        raise NotImplementedError

    def _load(self, board_id: str) -> Board:
        raise NotImplementedError

    def _save(self, board: Board) -> None:
        raise NotImplementedError

    def _drop(self, board_id: str) -> None:
        raise NotImplementedError

    def _all_rules(self) -> List[Rule]:
        raise NotImplementedError

    def _load_rule(self, rule_id: str) -> Rule:
        raise NotImplementedError

    def _save_rule(self, rule: Rule) -> None:
        raise NotImplementedError

    def _drop_rule(self, rule_id: str) -> None:
        raise NotImplementedError

    def _board_id_for_task(self, task_id: str) -> str:
        for board in self._all_boards():
            if mutator.has_task(board, task_id):
                return board.id
        raise NotFound(f"task {task_id!r} not found", {"taskId": task_id})

    def _board_for_task(self, task_id: str) -> Board:
        return self._load(self._board_id_for_task(task_id))

    # === Board operations ===
    def list_boards(self) -> List[Board]:
        return self._all_boards()

    def get_board(self, board_id: str) -> Board:
        return self._load(board_id)

    def create_board(self, name: str, column_titles: Sequence[str] = config.DEFAULT_COLUMNS) -> Board:
        board = Board(id=new_uuid(), name=mutator.clean_title(name, "name"))
        for title in column_titles:
            board, _ = mutator.create_column(board, title)
        self._save(board)
        logger.info("Created board %s (%s)", board.id, board.name)
        return board

    def ensure_default_board(self) -> Board:
        boards = self._all_boards()
        if boards:
            return boards[0]
        return self.create_board(DEFAULT_BOARD_NAME)

    def update_board(self, board_id: str, name: Optional[str] = None) -> Board:
        board = copy.deepcopy(self._load(board_id))
        if name is not None:
            board.name = mutator.clean_title(name, "name")
        self._save(board)
        return board

    def delete_board(self, board_id: str) -> None:
        mutator.delete_board(self._all_boards(), board_id)
        self._drop(board_id)
        logger.info("Deleted board %s", board_id)

    # === Column operations ===
    def create_column(self, board_id: str, title: str, color: Optional[str] = None) -> Column:
        board, column = mutator.create_column(self._load(board_id), title, color)
        self._save(board)
        return column

    def update_column(
        self,
        board_id: str,
        column_id: str,
        title: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Column:
        board, column = mutator.update_column(self._load(board_id), column_id, title, color)
        self._save(board)
        return column

    def move_column(self, board_id: str, column_id: str, new_index: int) -> Board:
        board = mutator.move_column(self._load(board_id), column_id, new_index)
        self._save(board)
        return board

    def delete_column(self, board_id: str, column_id: str) -> None:
        self._save(mutator.delete_column(self._load(board_id), column_id))

    # === Task operations ===
    def create_task(
        self,
        column_id: str,
        title: str,
        description: str = "",
        due_date: Optional[datetime] = None,
        subtasks: Sequence[Subtask] = (),
        custom_fields: Sequence[CustomField] = (),
    ) -> Task:
        for board in self._all_boards():
            if board.column(column_id) is not None:
                board, task = mutator.create_task(
                    board, column_id, title, description, due_date, subtasks, custom_fields
                )
                self._save(board)
                return task
        raise NotFound(f"column {column_id!r} not found", {"columnId": column_id})

    def get_task(self, task_id: str) -> Task:
        _, task = mutator.find_task(self._board_for_task(task_id), task_id)
        return task

    def update_task(self, task_id: str, **fields) -> Task:
        board, task = mutator.update_task(self._board_for_task(task_id), task_id, **fields)
        self._save(board)
        return task

    def move_task(
        self, task_id: str, source_column_id: str, dest_column_id: str, new_order: int
    ) -> Task:
        board, task = mutator.move_task(
            self._board_for_task(task_id), task_id, source_column_id, dest_column_id, new_order
        )
        self._save(board)
        return task

    def duplicate_task(self, task_id: str, target_column_id: Optional[str] = None) -> Task:
        board, task = mutator.duplicate_task(self._board_for_task(task_id), task_id, target_column_id)
        self._save(board)
        return task

    def delete_task(self, task_id: str) -> None:
        self._save(mutator.delete_task(self._board_for_task(task_id), task_id))

    # === Rule operations ===
    def list_rules(self) -> List[Rule]:
        return self._all_rules()

    def get_rule(self, rule_id: str) -> Rule:
        return self._load_rule(rule_id)

    def create_rule(self, rule: Rule) -> Rule:
        rule = copy.deepcopy(rule)
        rule.id = rule.id or new_uuid()
        self._save_rule(rule)
        return rule

    def update_rule(
        self,
        rule_id: str,
        name: Optional[str] = None,
        enabled: Optional[bool] = None,
        condition: Optional[Condition] = None,
        action: Optional[Action] = None,
    ) -> Rule:
        rule = copy.deepcopy(self._load_rule(rule_id))
        if name is not None:
            rule.name = mutator.clean_title(name, "name")
        if enabled is not None:
            rule.enabled = enabled
        if condition is not None:
            rule.condition = condition
        if action is not None:
            rule.action = action
        self._save_rule(rule)
        return rule

    def delete_rule(self, rule_id: str) -> None:
        self._load_rule(rule_id)
        self._drop_rule(rule_id)

    # === Automation ===
    def run_automation(
        self, board_id: str, now: Optional[datetime] = None
    ) -> Tuple[Board, List[MoveIntent]]:
        board, applied = rules.run(self._load(board_id), self._all_rules(), now)
        if applied:
            self._save(board)
        return board, applied


class MemoryStorage(Storage):
    """In-memory store for boards and rules."""

    def __init__(self) -> None:
        self.boards: Dict[str, Board] = {}
        self.rules: Dict[str, Rule] = {}

    def _all_boards(self) -> List[Board]:
        return [copy.deepcopy(b) for b in self.boards.values()]

    def _load(self, board_id: str) -> Board:
        try:
            return copy.deepcopy(self.boards[board_id])
        except KeyError:
            raise NotFound(f"board {board_id!r} not found", {"boardId": board_id}) from None

    def _save(self, board: Board) -> None:
        self.boards[board.id] = copy.deepcopy(board)

    def _drop(self, board_id: str) -> None:
        del self.boards[board_id]

    def _all_rules(self) -> List[Rule]:
        return [copy.deepcopy(r) for r in self.rules.values()]

    def _load_rule(self, rule_id: str) -> Rule:
        try:
            return copy.deepcopy(self.rules[rule_id])
        except KeyError:
            raise NotFound(f"rule {rule_id!r} not found", {"ruleId": rule_id}) from None

    def _save_rule(self, rule: Rule) -> None:
        self.rules[rule.id] = copy.deepcopy(rule)

    def _drop_rule(self, rule_id: str) -> None:
        del self.rules[rule_id]


def create_storage(backend: Optional[str] = None) -> Storage:
    backend = backend or config.STORAGE_BACKEND
    if backend == "sql":
        from .db import SqlStorage

        return SqlStorage(config.DATABASE_URL)
    if backend != "memory":
        raise ValueError(f"unknown storage backend {backend!r}")
    return MemoryStorage()


storage = create_storage()

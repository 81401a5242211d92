"""Board mutations as pure functions of (snapshot, inputs).

Every operation works on a deep copy of the board it is given and returns
the new board together with the entity it touched. Validation failures
raise before anything is returned, so the caller's snapshot never shows a
partial mutation.
"""
from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence, Tuple

from .errors import InvalidState, LastBoard, NotEmpty, NotFound
from .models import DUPLICATE_SUFFIX, Board, Column, CustomField, Subtask, Task
from .ordering import OrderedCollection
from .utils import new_uuid, now_utc

TASK_FIELDS = frozenset({"title", "description", "due_date", "subtasks", "custom_fields"})


# === Lookups ===


def get_column(board: Board, column_id: str) -> Column:
    column = board.column(column_id)
    if column is None:
        raise NotFound(f"column {column_id!r} not found", {"columnId": column_id})
    return column


def find_task(board: Board, task_id: str) -> Tuple[Column, Task]:
    for column in board.columns:
        for task in column.tasks:
            if task.id == task_id:
                return column, task
    raise NotFound(f"task {task_id!r} not found", {"taskId": task_id})


def has_task(board: Board, task_id: str) -> bool:
    return any(task.id == task_id for column in board.columns for task in column.tasks)


# === Helpers ===


def clean_title(value: str, what: str = "title") -> str:
    title = value.strip()
    if not title:
        raise InvalidState(f"{what} must not be blank", {"field": what})
    return title


def _fresh_subtasks(subtasks: Iterable[Subtask], keep_ids: bool = False) -> list[Subtask]:
    return [
        Subtask(
            id=st.id if keep_ids and st.id else new_uuid(),
            title=st.title,
            completed=bool(st.completed),
        )
        for st in subtasks
    ]


def _fresh_fields(fields: Iterable[CustomField], keep_ids: bool = False) -> list[CustomField]:
    out = [
        CustomField(id=cf.id if keep_ids and cf.id else new_uuid(), name=cf.name, value=cf.value)
        for cf in fields
    ]
    names = [cf.name for cf in out]
    if len(names) != len(set(names)):
        raise InvalidState("custom field names must be unique per task", {"names": names})
    return out


# === Tasks ===


def create_task(
    board: Board,
    column_id: str,
    title: str,
    description: str = "",
    due_date: Optional[datetime] = None,
    subtasks: Sequence[Subtask] = (),
    custom_fields: Sequence[CustomField] = (),
) -> Tuple[Board, Task]:
    board = copy.deepcopy(board)
    column = get_column(board, column_id)
    task = Task(
        id=new_uuid(),
        title=clean_title(title),
        description=description or "",
        status=column.title,
        due_date=due_date,
        subtasks=_fresh_subtasks(subtasks),
        custom_fields=_fresh_fields(custom_fields),
        created_at=now_utc(),
    )
    OrderedCollection(column.tasks).append(task)
    return board, task


def update_task(board: Board, task_id: str, **fields: Any) -> Tuple[Board, Task]:
    unknown = set(fields) - TASK_FIELDS
    if unknown:
        raise InvalidState(f"cannot update task fields {sorted(unknown)}", {"fields": sorted(unknown)})
    board = copy.deepcopy(board)
    _, task = find_task(board, task_id)
    if "title" in fields and fields["title"] is not None:
        task.title = clean_title(fields["title"])
    if "description" in fields and fields["description"] is not None:
        task.description = fields["description"]
    if "due_date" in fields:
        task.due_date = fields["due_date"]
    if "subtasks" in fields and fields["subtasks"] is not None:
        task.subtasks = _fresh_subtasks(fields["subtasks"], keep_ids=True)
    if "custom_fields" in fields and fields["custom_fields"] is not None:
        task.custom_fields = _fresh_fields(fields["custom_fields"], keep_ids=True)
    return board, task


def move_task(
    board: Board,
    task_id: str,
    source_column_id: str,
    dest_column_id: str,
    dest_index: int,
) -> Tuple[Board, Task]:
    board = copy.deepcopy(board)
    source = get_column(board, source_column_id)
    dest = get_column(board, dest_column_id)
    tasks = OrderedCollection(source.tasks)
    task = tasks.get(task_id)
    if task is None:
        raise NotFound(
            f"task {task_id!r} is not in column {source_column_id!r}",
            {"taskId": task_id, "columnId": source_column_id},
        )
    OrderedCollection.move_across(tasks, OrderedCollection(dest.tasks), task_id, dest_index)
    task.status = dest.title
    return board, task


def duplicate_task(
    board: Board, task_id: str, target_column_id: Optional[str] = None
) -> Tuple[Board, Task]:
    board = copy.deepcopy(board)
    column, original = find_task(board, task_id)
    target = get_column(board, target_column_id) if target_column_id else column
    clone = Task(
        id=new_uuid(),
        title=f"{original.title}{DUPLICATE_SUFFIX}",
        description=original.description,
        status=target.title,
        due_date=original.due_date,
        subtasks=_fresh_subtasks(original.subtasks),
        custom_fields=_fresh_fields(original.custom_fields),
        created_at=now_utc(),
    )
    OrderedCollection(target.tasks).append(clone)
    return board, clone


def delete_task(board: Board, task_id: str) -> Board:
    board = copy.deepcopy(board)
    column, _ = find_task(board, task_id)
    OrderedCollection(column.tasks).remove(task_id)
    return board


# === Columns ===


def create_column(board: Board, title: str, color: Optional[str] = None) -> Tuple[Board, Column]:
    board = copy.deepcopy(board)
    column = Column(id=new_uuid(), title=clean_title(title), color=color)
    OrderedCollection(board.columns).append(column)
    return board, column


def update_column(
    board: Board,
    column_id: str,
    title: Optional[str] = None,
    color: Optional[str] = None,
) -> Tuple[Board, Column]:
    board = copy.deepcopy(board)
    column = get_column(board, column_id)
    if title is not None:
        column.title = clean_title(title)
        # status mirrors the column title
        for task in column.tasks:
            task.status = column.title
    if color is not None:
        column.color = color
    return board, column


def move_column(board: Board, column_id: str, new_index: int) -> Board:
    board = copy.deepcopy(board)
    get_column(board, column_id)
    OrderedCollection(board.columns).move_within(column_id, new_index)
    return board


def delete_column(board: Board, column_id: str) -> Board:
    column = get_column(board, column_id)
    if column.tasks:
        raise NotEmpty(
            f"column {column.title!r} still holds {len(column.tasks)} task(s)",
            {"columnId": column_id, "taskCount": len(column.tasks)},
        )
    board = copy.deepcopy(board)
    OrderedCollection(board.columns).remove(column_id)
    return board


# === Boards ===


def delete_board(boards: Sequence[Board], board_id: str) -> list[Board]:
    remaining = [b for b in boards if b.id != board_id]
    if len(remaining) == len(boards):
        raise NotFound(f"board {board_id!r} not found", {"boardId": board_id})
    if not remaining:
        raise LastBoard("at least one board must remain", {"boardId": board_id})
    return remaining

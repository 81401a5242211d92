"""Automation rule engine.

Evaluation is a read-only scan of one board snapshot: every enabled rule is
checked against every task, and each satisfied ``move-to-column`` action
becomes a ``MoveIntent``. Intents are applied afterwards as one batch
through the task mutator. A pass never cascades; whether a changed board
deserves another pass is the caller's call.

Discovery order is columns (board order), then tasks (column order), then
rules (list order), which makes the batch deterministic for a snapshot. A
task matched by several rules gets one intent per rule; only the first
one moves it and the rest are dropped as stale when the batch is applied.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Collection, Iterable, Iterator, List, Optional, Sequence, Tuple

from . import config, mutator
from .errors import InvalidState, NotFound
from .models import (
    ALL_COMPLETED,
    CONTAINS,
    CUSTOM_FIELD,
    DUE_DATE,
    EQUALS,
    IS_OVERDUE,
    MOVE_TO_COLUMN,
    NOT_EQUALS,
    SUBTASKS_COMPLETED,
    Board,
    Column,
    Condition,
    MoveIntent,
    Rule,
    Task,
)
from .utils import as_utc, now_utc

logger = logging.getLogger(__name__)


class MalformedRule(ValueError):
    """A rule whose condition cannot be evaluated. Never escapes the engine."""


def is_overdue(task: Task, now: datetime, terminal_status: str) -> bool:
    if task.due_date is None:
        return False
    return as_utc(task.due_date) < now and task.status != terminal_status


def all_subtasks_completed(task: Task) -> bool:
    return bool(task.subtasks) and all(st.completed for st in task.subtasks)


def custom_field_matches(task: Task, condition: Condition) -> bool:
    if not condition.field:
        raise MalformedRule("custom-field condition without a field name")
    found = task.field_named(condition.field)
    if found is None:
        return False
    if condition.operator == EQUALS:
        return found.value == condition.value
    if condition.operator == NOT_EQUALS:
        return found.value != condition.value
    if condition.operator == CONTAINS:
        return (condition.value or "") in found.value
    raise MalformedRule(f"unknown custom-field operator {condition.operator!r}")


def condition_holds(
    condition: Condition,
    task: Task,
    now: datetime,
    terminal_status: Optional[str] = None,
) -> bool:
    """Return whether ``condition`` is satisfied by ``task``.

    Raises ``MalformedRule`` for condition shapes the engine does not know.
    """
    if condition.type == DUE_DATE and condition.operator == IS_OVERDUE:
        return is_overdue(task, now, terminal_status or config.TERMINAL_STATUS)
    if condition.type == SUBTASKS_COMPLETED and condition.operator == ALL_COMPLETED:
        return all_subtasks_completed(task)
    if condition.type == CUSTOM_FIELD:
        return custom_field_matches(task, condition)
    raise MalformedRule(f"unknown condition {condition.type!r}/{condition.operator!r}")


def _scan(
    board: Board, task_ids: Optional[Collection[str]] = None
) -> Iterator[Tuple[Column, Task]]:
    for column in board.columns:
        for task in column.tasks:
            if task_ids is None or task.id in task_ids:
                yield column, task


def _evaluate(
    board: Optional[Board],
    rules: Iterable[Rule],
    now: Optional[datetime],
    task_ids: Optional[Collection[str]],
    terminal_status: Optional[str],
) -> List[MoveIntent]:
    if board is None:
        raise InvalidState("no board snapshot to evaluate")
    enabled = [rule for rule in rules if rule.enabled]
    if not enabled:
        return []
    now = as_utc(now) if now else now_utc()

    intents: List[MoveIntent] = []
    broken: set[str] = set()
    moved: set[str] = set()
    # appended tasks land after anything already queued for the same column
    queued = {column.id: len(column.tasks) for column in board.columns}
    for column, task in _scan(board, task_ids):
        for rule in enabled:
            if rule.id in broken:
                continue
            try:
                holds = condition_holds(rule.condition, task, now, terminal_status)
            except MalformedRule as exc:
                logger.warning("Skipping rule %s (%s): %s", rule.id, rule.name, exc)
                broken.add(rule.id)
                continue
            if not holds:
                continue
            if rule.action.type != MOVE_TO_COLUMN:
                logger.warning("Skipping rule %s: unknown action %r", rule.id, rule.action.type)
                broken.add(rule.id)
                continue
            target = board.column(rule.action.target_column_id)
            if target is None:
                logger.warning(
                    "Skipping rule %s: target column %s does not exist",
                    rule.id,
                    rule.action.target_column_id,
                )
                continue
            if target.title == column.title:
                continue
            intents.append(
                MoveIntent(
                    task_id=task.id,
                    source_column_id=column.id,
                    dest_column_id=target.id,
                    new_order=queued[target.id],
                    rule_id=rule.id,
                )
            )
            if task.id in moved:
                continue
            # later intents for this task go stale once this one is applied
            moved.add(task.id)
            queued[target.id] += 1
            queued[column.id] -= 1
    return intents


def evaluate(
    board: Optional[Board],
    rules: Iterable[Rule],
    now: Optional[datetime] = None,
    terminal_status: Optional[str] = None,
) -> List[MoveIntent]:
    """Full rescan of ``board``; returns the move intents in discovery order."""
    return _evaluate(board, rules, now, None, terminal_status)


def evaluate_tasks(
    board: Optional[Board],
    rules: Iterable[Rule],
    task_ids: Collection[str],
    now: Optional[datetime] = None,
    terminal_status: Optional[str] = None,
) -> List[MoveIntent]:
    """Same as :func:`evaluate` restricted to ``task_ids``."""
    return _evaluate(board, rules, now, frozenset(task_ids), terminal_status)


def apply_intents(board: Board, intents: Sequence[MoveIntent]) -> Tuple[Board, List[MoveIntent]]:
    """Apply ``intents`` in order; return the new board and the intents that took effect."""
    applied: List[MoveIntent] = []
    for intent in intents:
        target = board.column(intent.dest_column_id)
        if target is None:
            logger.warning("Dropping move of %s: column %s is gone", intent.task_id, intent.dest_column_id)
            continue
        try:
            board, task = mutator.move_task(
                board,
                intent.task_id,
                intent.source_column_id,
                intent.dest_column_id,
                len(target.tasks),
            )
        except NotFound as exc:
            logger.info("Dropping stale move of %s: %s", intent.task_id, exc)
            continue
        logger.info("Rule %s moved task %r to %r", intent.rule_id, task.title, task.status)
        applied.append(intent)
    return board, applied


def run(
    board: Optional[Board],
    rules: Iterable[Rule],
    now: Optional[datetime] = None,
    terminal_status: Optional[str] = None,
) -> Tuple[Board, List[MoveIntent]]:
    intents = evaluate(board, rules, now, terminal_status)
    if not intents:
        return board, []  # type: ignore[return-value]
    return apply_intents(board, intents)  # type: ignore[arg-type]

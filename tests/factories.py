"""Small boards and rules built from plain ids."""
from datetime import datetime, timedelta, timezone

from taskboard.models import Action, Board, Column, Condition, Rule, Task

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
YESTERDAY = NOW - timedelta(days=1)
TOMORROW = NOW + timedelta(days=1)

TITLES = {"todo": "To Do", "doing": "Doing", "done": "Done", "completed": "Completed"}

OVERDUE = Condition(type="due-date", operator="is-overdue")
ALL_DONE = Condition(type="subtasks-completed", operator="all-completed")


def make_task(task_id, status, **kwargs):
    return Task(id=task_id, title=kwargs.pop("title", task_id.upper()), status=status, **kwargs)


def make_board(board_id="b1", **columns):
    """``make_board(todo=["t1"], doing=[task])``: column id -> tasks or task ids."""
    cols = []
    for column_id, tasks in columns.items():
        title = TITLES.get(column_id, column_id)
        cols.append(
            Column(
                id=column_id,
                title=title,
                tasks=[t if isinstance(t, Task) else make_task(t, title) for t in tasks],
            )
        )
    return Board(id=board_id, name="Board", columns=cols)


def move_rule(rule_id, condition, target, enabled=True):
    return Rule(
        id=rule_id,
        name=f"rule {rule_id}",
        enabled=enabled,
        condition=condition,
        action=Action(type="move-to-column", target_column_id=target),
    )


def field_is(name, operator, value):
    return Condition(type="custom-field", operator=operator, field=name, value=value)


def column_ids(board, column_id):
    return [t.id for t in board.column(column_id).tasks]

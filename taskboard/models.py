from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .utils import now_utc


# === Rule vocabulary ===

DUE_DATE = "due-date"
SUBTASKS_COMPLETED = "subtasks-completed"
CUSTOM_FIELD = "custom-field"

IS_OVERDUE = "is-overdue"
ALL_COMPLETED = "all-completed"
EQUALS = "equals"
NOT_EQUALS = "not-equals"
CONTAINS = "contains"

MOVE_TO_COLUMN = "move-to-column"

DUPLICATE_SUFFIX = " (Copy)"


# === Domain objects ===


@dataclass
class Subtask:
    id: str
    title: str
    completed: bool = False


@dataclass
class CustomField:
    id: str
    name: str
    value: str = ""


@dataclass
class Task:
    id: str
    title: str
    description: str = ""
    status: str = ""
    due_date: Optional[datetime] = None
    subtasks: List[Subtask] = field(default_factory=list)
    custom_fields: List[CustomField] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)

    def field_named(self, name: str) -> Optional[CustomField]:
        for custom in self.custom_fields:
            if custom.name == name:
                return custom
        return None


@dataclass
class Column:
    id: str
    title: str
    color: Optional[str] = None
    tasks: List[Task] = field(default_factory=list)


@dataclass
class Board:
    id: str
    name: str
    columns: List[Column] = field(default_factory=list)

    def column(self, column_id: str) -> Optional[Column]:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None


@dataclass
class Condition:
    type: str
    operator: str
    field: Optional[str] = None
    value: Optional[str] = None


@dataclass
class Action:
    type: str
    target_column_id: str


@dataclass
class Rule:
    id: str
    name: str
    condition: Condition
    action: Action
    enabled: bool = True


# === Intents ===


@dataclass(frozen=True)
class MoveIntent:
    task_id: str
    source_column_id: str
    dest_column_id: str
    new_order: int
    rule_id: Optional[str] = None


@dataclass(frozen=True)
class DuplicateIntent:
    task_id: str
    target_column_id: Optional[str] = None

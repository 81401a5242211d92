from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints

from .models import (
    Action,
    Board,
    Column,
    Condition,
    CustomField,
    MoveIntent,
    Rule,
    Subtask,
    Task,
)
from .utils import as_utc, parse_iso, to_iso

ConditionType = Literal["due-date", "subtasks-completed", "custom-field"]
ConditionOperator = Literal["is-overdue", "all-completed", "equals", "not-equals", "contains"]

# surrounding whitespace is dropped before the length checks
TaskTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
ColumnTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=80)]
FieldName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=80)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=140)]


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    requestId: Optional[str] = None


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str = "1.0.0"


class Ack(BaseModel):
    success: bool = True


# === Tasks ===


class SubtaskIn(BaseModel):
    id: Optional[str] = None
    title: TaskTitle
    completed: bool = False


class SubtaskOut(BaseModel):
    id: str
    title: str
    completed: bool


class CustomFieldIn(BaseModel):
    id: Optional[str] = None
    name: FieldName
    value: str = Field(default="", max_length=2000)


class CustomFieldOut(BaseModel):
    id: str
    name: str
    value: str


class TaskIn(BaseModel):
    columnId: str
    title: TaskTitle
    description: str = Field(default="", max_length=8000)
    dueDate: Optional[datetime] = None
    subtasks: list[SubtaskIn] = Field(default_factory=list)
    customFields: list[CustomFieldIn] = Field(default_factory=list)


class TaskPatch(BaseModel):
    title: Optional[TaskTitle] = None
    description: Optional[str] = Field(default=None, max_length=8000)
    dueDate: Optional[datetime] = None
    subtasks: Optional[list[SubtaskIn]] = None
    customFields: Optional[list[CustomFieldIn]] = None


class TaskMove(BaseModel):
    sourceColumnId: str
    destColumnId: str
    newOrder: int = Field(ge=0)


class TaskDuplicate(BaseModel):
    targetColumnId: Optional[str] = None


class TaskOut(BaseModel):
    id: str
    title: str
    description: str
    status: str
    dueDate: Optional[str] = None
    subtasks: list[SubtaskOut]
    customFields: list[CustomFieldOut]
    createdAt: str


# === Columns & boards ===


class ColumnIn(BaseModel):
    title: ColumnTitle
    color: Optional[str] = Field(default=None, max_length=32)


class ColumnPatch(BaseModel):
    title: Optional[ColumnTitle] = None
    color: Optional[str] = Field(default=None, max_length=32)


class ColumnMove(BaseModel):
    newOrder: int = Field(ge=0)


class ColumnOut(BaseModel):
    id: str
    title: str
    color: Optional[str] = None
    tasks: list[TaskOut]


class BoardIn(BaseModel):
    name: Name


class BoardPatch(BaseModel):
    name: Optional[Name] = None


class BoardOut(BaseModel):
    id: str
    name: str
    columns: list[ColumnOut]


# === Rules ===


class ConditionIn(BaseModel):
    type: ConditionType
    operator: ConditionOperator
    field: Optional[str] = None
    value: Optional[str] = None


class ActionIn(BaseModel):
    type: Literal["move-to-column"] = "move-to-column"
    targetColumnId: str


class RuleIn(BaseModel):
    name: Name
    enabled: bool = True
    condition: ConditionIn
    action: ActionIn


class RulePatch(BaseModel):
    name: Optional[Name] = None
    enabled: Optional[bool] = None
    condition: Optional[ConditionIn] = None
    action: Optional[ActionIn] = None


class ConditionOut(BaseModel):
    type: str
    operator: str
    field: Optional[str] = None
    value: Optional[str] = None


class ActionOut(BaseModel):
    type: str
    targetColumnId: str


class RuleOut(BaseModel):
    id: str
    name: str
    enabled: bool
    condition: ConditionOut
    action: ActionOut


class MoveIntentOut(BaseModel):
    taskId: str
    sourceColumnId: str
    destColumnId: str
    newOrder: int
    ruleId: Optional[str] = None


class AutomationResult(BaseModel):
    board: BoardOut
    intents: list[MoveIntentOut]


# === Domain -> wire ===


def task_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        dueDate=to_iso(task.due_date),
        subtasks=[SubtaskOut(id=st.id, title=st.title, completed=st.completed) for st in task.subtasks],
        customFields=[CustomFieldOut(id=cf.id, name=cf.name, value=cf.value) for cf in task.custom_fields],
        createdAt=to_iso(task.created_at) or "",
    )


def column_out(column: Column) -> ColumnOut:
    return ColumnOut(
        id=column.id,
        title=column.title,
        color=column.color,
        tasks=[task_out(t) for t in column.tasks],
    )


def board_out(board: Board) -> BoardOut:
    return BoardOut(id=board.id, name=board.name, columns=[column_out(c) for c in board.columns])


def rule_out(rule: Rule) -> RuleOut:
    return RuleOut(
        id=rule.id,
        name=rule.name,
        enabled=rule.enabled,
        condition=ConditionOut(
            type=rule.condition.type,
            operator=rule.condition.operator,
            field=rule.condition.field,
            value=rule.condition.value,
        ),
        action=ActionOut(type=rule.action.type, targetColumnId=rule.action.target_column_id),
    )


def intent_out(intent: MoveIntent) -> MoveIntentOut:
    return MoveIntentOut(
        taskId=intent.task_id,
        sourceColumnId=intent.source_column_id,
        destColumnId=intent.dest_column_id,
        newOrder=intent.new_order,
        ruleId=intent.rule_id,
    )


# === Wire -> domain ===


def subtasks_in(items: list[SubtaskIn]) -> list[Subtask]:
    return [Subtask(id=st.id or "", title=st.title, completed=st.completed) for st in items]


def custom_fields_in(items: list[CustomFieldIn]) -> list[CustomField]:
    return [CustomField(id=cf.id or "", name=cf.name, value=cf.value) for cf in items]


def due_date_in(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value else None


def task_patch_fields(payload: TaskPatch) -> dict[str, Any]:
    """Translate a patch into mutator keyword fields, keeping only what was sent."""
    sent = payload.model_fields_set
    fields: dict[str, Any] = {}
    if "title" in sent and payload.title is not None:
        fields["title"] = payload.title
    if "description" in sent and payload.description is not None:
        fields["description"] = payload.description
    if "dueDate" in sent:
        fields["due_date"] = due_date_in(payload.dueDate)
    if "subtasks" in sent and payload.subtasks is not None:
        fields["subtasks"] = subtasks_in(payload.subtasks)
    if "customFields" in sent and payload.customFields is not None:
        fields["custom_fields"] = custom_fields_in(payload.customFields)
    return fields


def task_from_wire(data: TaskOut) -> Task:
    return Task(
        id=data.id,
        title=data.title,
        description=data.description,
        status=data.status,
        due_date=parse_iso(data.dueDate),
        subtasks=[Subtask(id=st.id, title=st.title, completed=st.completed) for st in data.subtasks],
        custom_fields=[CustomField(id=cf.id, name=cf.name, value=cf.value) for cf in data.customFields],
        created_at=parse_iso(data.createdAt),  # type: ignore[arg-type]
    )


def board_from_wire(data: BoardOut) -> Board:
    return Board(
        id=data.id,
        name=data.name,
        columns=[
            Column(id=c.id, title=c.title, color=c.color, tasks=[task_from_wire(t) for t in c.tasks])
            for c in data.columns
        ],
    )


def rule_from_wire(rule_id: str, payload: RuleIn) -> Rule:
    return Rule(
        id=rule_id,
        name=payload.name.strip(),
        enabled=payload.enabled,
        condition=Condition(
            type=payload.condition.type,
            operator=payload.condition.operator,
            field=payload.condition.field,
            value=payload.condition.value,
        ),
        action=Action(type=payload.action.type, target_column_id=payload.action.targetColumnId),
    )

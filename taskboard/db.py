from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import NotFound
from .models import Action, Board, Column, Condition, CustomField, Rule, Subtask, Task
from .storage import Storage
from .utils import as_utc, now_utc


class Base(DeclarativeBase):
    pass


class BoardRow(Base):
    __tablename__ = "boards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(140))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    columns: Mapped[list[ColumnRow]] = relationship(
        back_populates="board", cascade="all, delete-orphan", order_by="ColumnRow.order"
    )


class ColumnRow(Base):
    __tablename__ = "columns"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    board_id: Mapped[str] = mapped_column(String(36), ForeignKey("boards.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(80))
    color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    order: Mapped[int] = mapped_column(Integer, index=True)

    board: Mapped[BoardRow] = relationship(back_populates="columns")
    tasks: Mapped[list[TaskRow]] = relationship(
        back_populates="column", cascade="all, delete-orphan", order_by="TaskRow.order"
    )


class TaskRow(Base):
    __tablename__ = "tasks"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    column_id: Mapped[str] = mapped_column(String(36), ForeignKey("columns.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(80))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    order: Mapped[int] = mapped_column(Integer, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    column: Mapped[ColumnRow] = relationship(back_populates="tasks")
    subtasks: Mapped[list[SubtaskRow]] = relationship(
        back_populates="task", cascade="all, delete-orphan", order_by="SubtaskRow.order"
    )
    custom_fields: Mapped[list[CustomFieldRow]] = relationship(
        back_populates="task", cascade="all, delete-orphan", order_by="CustomFieldRow.order"
    )


class SubtaskRow(Base):
    __tablename__ = "subtasks"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(200))
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    order: Mapped[int] = mapped_column(Integer)

    task: Mapped[TaskRow] = relationship(back_populates="subtasks")


class CustomFieldRow(Base):
    __tablename__ = "custom_fields"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(80))
    value: Mapped[str] = mapped_column(Text, default="")
    order: Mapped[int] = mapped_column(Integer)

    task: Mapped[TaskRow] = relationship(back_populates="custom_fields")

    __table_args__ = (UniqueConstraint("task_id", "name", name="uq_custom_field_name"),)


class RuleRow(Base):
    __tablename__ = "rules"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(140))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    condition_type: Mapped[str] = mapped_column(String(32))
    condition_field: Mapped[str | None] = mapped_column(String(80), nullable=True)
    condition_operator: Mapped[str] = mapped_column(String(32))
    condition_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_type: Mapped[str] = mapped_column(String(32))
    # weak reference: the column may be deleted later
    target_column_id: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


# === Row <-> domain ===


def _task(row: TaskRow) -> Task:
    return Task(
        id=row.id,
        title=row.title,
        description=row.description or "",
        status=row.status,
        due_date=as_utc(row.due_date) if row.due_date else None,
        subtasks=[Subtask(id=s.id, title=s.title, completed=s.is_completed) for s in row.subtasks],
        custom_fields=[CustomField(id=f.id, name=f.name, value=f.value) for f in row.custom_fields],
        created_at=as_utc(row.created_at),
    )


def _board(row: BoardRow) -> Board:
    return Board(
        id=row.id,
        name=row.name,
        columns=[
            Column(id=c.id, title=c.title, color=c.color, tasks=[_task(t) for t in c.tasks])
            for c in row.columns
        ],
    )


def _rule(row: RuleRow) -> Rule:
    return Rule(
        id=row.id,
        name=row.name,
        enabled=row.enabled,
        condition=Condition(
            type=row.condition_type,
            operator=row.condition_operator,
            field=row.condition_field,
            value=row.condition_value,
        ),
        action=Action(type=row.action_type, target_column_id=row.target_column_id),
    )


def _column_rows(board: Board) -> List[ColumnRow]:
    rows = []
    for ci, column in enumerate(board.columns):
        tasks = []
        for ti, task in enumerate(column.tasks):
            tasks.append(
                TaskRow(
                    id=task.id,
                    title=task.title,
                    description=task.description or None,
                    status=task.status,
                    due_date=as_utc(task.due_date) if task.due_date else None,
                    order=ti,
                    created_at=as_utc(task.created_at),
                    subtasks=[
                        SubtaskRow(id=s.id, title=s.title, is_completed=s.completed, order=si)
                        for si, s in enumerate(task.subtasks)
                    ],
                    custom_fields=[
                        CustomFieldRow(id=f.id, name=f.name, value=f.value, order=fi)
                        for fi, f in enumerate(task.custom_fields)
                    ],
                )
            )
        rows.append(ColumnRow(id=column.id, title=column.title, color=column.color, order=ci, tasks=tasks))
    return rows


class SqlStorage(Storage):
    """SQLAlchemy-backed store. Each board save is one transaction."""

    def __init__(self, url: str) -> None:
        options = {}
        if url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url == "sqlite://":
                options["poolclass"] = StaticPool
        self.engine = create_engine(url, **options)
        self.sessions = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def _clear_children(self, session: Session, board_id: str) -> None:
        opts = {"synchronize_session": False}
        column_ids = select(ColumnRow.id).where(ColumnRow.board_id == board_id)
        task_ids = select(TaskRow.id).where(TaskRow.column_id.in_(column_ids))
        session.execute(delete(SubtaskRow).where(SubtaskRow.task_id.in_(task_ids)), execution_options=opts)
        session.execute(delete(CustomFieldRow).where(CustomFieldRow.task_id.in_(task_ids)), execution_options=opts)
        session.execute(delete(TaskRow).where(TaskRow.column_id.in_(column_ids)), execution_options=opts)
        session.execute(delete(ColumnRow).where(ColumnRow.board_id == board_id), execution_options=opts)

    # === Boards ===
    def _all_boards(self) -> List[Board]:
        with self.sessions() as session:
            rows = session.scalars(select(BoardRow).order_by(BoardRow.created_at, BoardRow.id)).all()
            return [_board(row) for row in rows]

    def _load(self, board_id: str) -> Board:
        with self.sessions() as session:
            row = session.get(BoardRow, board_id)
            if row is None:
                raise NotFound(f"board {board_id!r} not found", {"boardId": board_id})
            return _board(row)

    def _save(self, board: Board) -> None:
        with self.sessions() as session, session.begin():
            row = session.get(BoardRow, board.id)
            if row is None:
                row = BoardRow(id=board.id, name=board.name)
                session.add(row)
            else:
                row.name = board.name
            self._clear_children(session, board.id)
            for column in _column_rows(board):
                column.board_id = board.id
                session.add(column)

    def _drop(self, board_id: str) -> None:
        with self.sessions() as session, session.begin():
            self._clear_children(session, board_id)
            session.execute(delete(BoardRow).where(BoardRow.id == board_id))

    def _board_id_for_task(self, task_id: str) -> str:
        with self.sessions() as session:
            board_id = session.scalar(
                select(ColumnRow.board_id).join(TaskRow, TaskRow.column_id == ColumnRow.id).where(TaskRow.id == task_id)
            )
        if board_id is None:
            raise NotFound(f"task {task_id!r} not found", {"taskId": task_id})
        return board_id

    # === Rules ===
    def _all_rules(self) -> List[Rule]:
        with self.sessions() as session:
            rows = session.scalars(select(RuleRow).order_by(RuleRow.created_at, RuleRow.id)).all()
            return [_rule(row) for row in rows]

    def _load_rule(self, rule_id: str) -> Rule:
        with self.sessions() as session:
            row = session.get(RuleRow, rule_id)
            if row is None:
                raise NotFound(f"rule {rule_id!r} not found", {"ruleId": rule_id})
            return _rule(row)

    def _save_rule(self, rule: Rule) -> None:
        with self.sessions() as session, session.begin():
            row: Optional[RuleRow] = session.get(RuleRow, rule.id)
            if row is None:
                row = RuleRow(id=rule.id)
                session.add(row)
            row.name = rule.name
            row.enabled = rule.enabled
            row.condition_type = rule.condition.type
            row.condition_field = rule.condition.field
            row.condition_operator = rule.condition.operator
            row.condition_value = rule.condition.value
            row.action_type = rule.action.type
            row.target_column_id = rule.action.target_column_id

    def _drop_rule(self, rule_id: str) -> None:
        with self.sessions() as session, session.begin():
            session.execute(delete(RuleRow).where(RuleRow.id == rule_id))

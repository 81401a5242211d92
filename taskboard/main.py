import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__, config
from .errors import InvalidState, NotFound, PersistenceFailure, TaskboardError
from .models import Action, Condition
from .schemas import (
    Ack,
    AutomationResult,
    BoardIn,
    BoardOut,
    BoardPatch,
    ColumnIn,
    ColumnMove,
    ColumnOut,
    ColumnPatch,
    ErrorEnvelope,
    Health,
    RuleIn,
    RuleOut,
    RulePatch,
    TaskDuplicate,
    TaskIn,
    TaskMove,
    TaskOut,
    TaskPatch,
    Version,
    board_out,
    column_out,
    custom_fields_in,
    due_date_in,
    intent_out,
    rule_from_wire,
    rule_out,
    subtasks_in,
    task_out,
    task_patch_fields,
)
from .storage import Storage, storage
from .utils import new_uuid

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    board = storage.ensure_default_board()
    logger.info("Serving board %s (%s)", board.id, board.name)
    yield


app = FastAPI(title="Taskboard API", version=__version__, lifespan=lifespan)


def get_storage() -> Storage:
    return storage


# === Error mapping ===

STATUS_FOR = {NotFound: 404, InvalidState: 409, PersistenceFailure: 503}


@app.exception_handler(TaskboardError)
async def taskboard_error(request: Request, exc: TaskboardError) -> JSONResponse:
    status = next((code for cls, code in STATUS_FOR.items() if isinstance(exc, cls)), 400)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ErrorEnvelope(code=exc.code, message=exc.message, details=exc.details, requestId=new_uuid())
    return JSONResponse(status_code=status, content=body.model_dump())


# === Health & metadata ===


@app.get("/v1/health", response_model=Health)
def health() -> Health:
    return Health()


@app.get("/v1/version", response_model=Version)
def version() -> Version:
    return Version(version=__version__)


# === Board endpoints ===


@app.get("/v1/boards", response_model=list[BoardOut])
def list_boards(store: Storage = Depends(get_storage)):
    return [board_out(b) for b in store.list_boards()]


@app.post("/v1/boards", response_model=BoardOut, status_code=201)
def create_board(payload: BoardIn, store: Storage = Depends(get_storage)):
    return board_out(store.create_board(payload.name))


@app.get("/v1/boards/{board_id}", response_model=BoardOut)
def get_board(board_id: str, store: Storage = Depends(get_storage)):
    return board_out(store.get_board(board_id))


@app.patch("/v1/boards/{board_id}", response_model=BoardOut)
def update_board(board_id: str, payload: BoardPatch, store: Storage = Depends(get_storage)):
    return board_out(store.update_board(board_id, payload.name))


@app.delete("/v1/boards/{board_id}", response_model=Ack)
def delete_board(board_id: str, store: Storage = Depends(get_storage)):
    store.delete_board(board_id)
    return Ack()


@app.post("/v1/boards/{board_id}/automation:run", response_model=AutomationResult)
def run_automation(board_id: str, store: Storage = Depends(get_storage)):
    board, applied = store.run_automation(board_id)
    return AutomationResult(board=board_out(board), intents=[intent_out(i) for i in applied])


# === Column endpoints ===


@app.post("/v1/boards/{board_id}/columns", response_model=ColumnOut, status_code=201)
def create_column(board_id: str, payload: ColumnIn, store: Storage = Depends(get_storage)):
    return column_out(store.create_column(board_id, payload.title, payload.color))


@app.patch("/v1/boards/{board_id}/columns/{column_id}", response_model=ColumnOut)
def update_column(
    board_id: str,
    column_id: str,
    payload: ColumnPatch,
    store: Storage = Depends(get_storage),
):
    return column_out(store.update_column(board_id, column_id, payload.title, payload.color))


@app.post("/v1/boards/{board_id}/columns/{column_id}:move", response_model=BoardOut)
def move_column(
    board_id: str,
    column_id: str,
    payload: ColumnMove,
    store: Storage = Depends(get_storage),
):
    return board_out(store.move_column(board_id, column_id, payload.newOrder))


@app.delete("/v1/boards/{board_id}/columns/{column_id}", response_model=Ack)
def delete_column(board_id: str, column_id: str, store: Storage = Depends(get_storage)):
    store.delete_column(board_id, column_id)
    return Ack()


# === Task endpoints ===


@app.post("/v1/tasks", response_model=TaskOut, status_code=201)
def create_task(payload: TaskIn, store: Storage = Depends(get_storage)):
    task = store.create_task(
        payload.columnId,
        payload.title,
        payload.description,
        due_date_in(payload.dueDate),
        subtasks_in(payload.subtasks),
        custom_fields_in(payload.customFields),
    )
    return task_out(task)


@app.get("/v1/tasks/{task_id}", response_model=TaskOut)
def get_task(task_id: str, store: Storage = Depends(get_storage)):
    return task_out(store.get_task(task_id))


@app.patch("/v1/tasks/{task_id}", response_model=TaskOut)
def update_task(task_id: str, payload: TaskPatch, store: Storage = Depends(get_storage)):
    return task_out(store.update_task(task_id, **task_patch_fields(payload)))


@app.post("/v1/tasks/{task_id}/move", response_model=TaskOut)
def move_task(task_id: str, payload: TaskMove, store: Storage = Depends(get_storage)):
    task = store.move_task(task_id, payload.sourceColumnId, payload.destColumnId, payload.newOrder)
    return task_out(task)


@app.post("/v1/tasks/{task_id}/duplicate", response_model=TaskOut)
def duplicate_task(task_id: str, payload: TaskDuplicate, store: Storage = Depends(get_storage)):
    return task_out(store.duplicate_task(task_id, payload.targetColumnId))


@app.delete("/v1/tasks/{task_id}", response_model=Ack)
def delete_task(task_id: str, store: Storage = Depends(get_storage)):
    store.delete_task(task_id)
    return Ack()


# === Rule endpoints ===


@app.get("/v1/rules", response_model=list[RuleOut])
def list_rules(store: Storage = Depends(get_storage)):
    return [rule_out(r) for r in store.list_rules()]


@app.post("/v1/rules", response_model=RuleOut, status_code=201)
def create_rule(payload: RuleIn, store: Storage = Depends(get_storage)):
    return rule_out(store.create_rule(rule_from_wire("", payload)))


@app.get("/v1/rules/{rule_id}", response_model=RuleOut)
def get_rule(rule_id: str, store: Storage = Depends(get_storage)):
    return rule_out(store.get_rule(rule_id))


@app.patch("/v1/rules/{rule_id}", response_model=RuleOut)
def update_rule(rule_id: str, payload: RulePatch, store: Storage = Depends(get_storage)):
    condition = None
    if payload.condition is not None:
        condition = Condition(
            type=payload.condition.type,
            operator=payload.condition.operator,
            field=payload.condition.field,
            value=payload.condition.value,
        )
    action = None
    if payload.action is not None:
        action = Action(type=payload.action.type, target_column_id=payload.action.targetColumnId)
    rule = store.update_rule(rule_id, payload.name, payload.enabled, condition, action)
    return rule_out(rule)


@app.delete("/v1/rules/{rule_id}", response_model=Ack)
def delete_rule(rule_id: str, store: Storage = Depends(get_storage)):
    store.delete_rule(rule_id)
    return Ack()

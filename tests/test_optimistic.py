import asyncio

import pytest

from factories import OVERDUE, YESTERDAY, move_rule
from taskboard.errors import PersistenceFailure
from taskboard.gateway import StorageGateway
from taskboard.models import Subtask
from taskboard.optimistic import MutationState, OptimisticCoordinator
from taskboard.session import Session
from taskboard.storage import MemoryStorage


class FlakyGateway(StorageGateway):
    """Storage gateway that can hold submissions and reject chosen tasks."""

    def __init__(self, storage, fail=(), gate=None, refetch_fails=False, held=None):
        super().__init__(storage)
        self.fail = set(fail)
        self.gate = gate
        self.refetch_fails = refetch_fails
        # tasks that wait on the gate; None holds every task
        self.held = None if held is None else set(held)
        self.calls = []

    async def _hold(self, kind, task_id):
        self.calls.append((kind, task_id))
        if self.gate is not None and (self.held is None or task_id in self.held):
            await self.gate.wait()
        if task_id in self.fail:
            raise PersistenceFailure(f"{kind} of {task_id} rejected")

    async def fetch_board(self, board_id):
        if self.refetch_fails:
            raise PersistenceFailure("offline")
        return await super().fetch_board(board_id)

    async def move_task(self, intent):
        await self._hold("move", intent.task_id)
        await super().move_task(intent)

    async def duplicate_task(self, intent):
        await self._hold("duplicate", intent.task_id)
        return await super().duplicate_task(intent)

    async def update_task(self, task_id, fields):
        await self._hold("update", task_id)
        return await super().update_task(task_id, fields)

    async def delete_task(self, task_id):
        await self._hold("delete", task_id)
        await super().delete_task(task_id)


def layout(board):
    return {c.title: [t.id for t in c.tasks] for c in board.columns}


def column_id(board, title):
    return next(c.id for c in board.columns if c.title == title)


@pytest.fixture
def store():
    return MemoryStorage()


@pytest.fixture
def board(store):
    board = store.create_board("Work", ("To Do", "In Progress", "Completed"))
    todo = board.columns[0].id
    store.create_task(todo, "Write report")
    store.create_task(todo, "Review", due_date=YESTERDAY)
    return store.get_board(board.id)


def coordinator_for(store, board, gateway=None, **kwargs):
    kwargs.setdefault("auto_evaluate", False)
    session = Session([store.get_board(board.id)])
    return OptimisticCoordinator(session, gateway or StorageGateway(store), **kwargs)


def first_task(board):
    return board.columns[0].tasks[0].id


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_move_is_confirmed(store, board):
    coordinator = coordinator_for(store, board)
    task_id = first_task(board)
    doing = column_id(board, "In Progress")

    task = await coordinator.move_task(task_id, board.columns[0].id, doing, 0)

    assert task.status == "In Progress"
    assert layout(coordinator.session.board)["In Progress"] == [task_id]
    assert layout(store.get_board(board.id)) == layout(coordinator.session.board)
    assert coordinator.history[-1].state is MutationState.CONFIRMED
    assert coordinator.pending == {}


@pytest.mark.asyncio
async def test_move_shows_locally_then_reverts_on_failure(store, board):
    task_id = first_task(board)
    gateway = FlakyGateway(store, fail={task_id}, gate=asyncio.Event())
    coordinator = coordinator_for(store, board, gateway)
    doing = column_id(board, "In Progress")

    running = asyncio.create_task(coordinator.move_task(task_id, board.columns[0].id, doing, 0))
    await settle()
    assert layout(coordinator.session.board)["In Progress"] == [task_id]
    assert coordinator.pending[task_id].state is MutationState.APPLIED_LOCALLY

    gateway.gate.set()
    with pytest.raises(PersistenceFailure):
        await running

    assert layout(coordinator.session.board) == layout(store.get_board(board.id))
    assert layout(coordinator.session.board)["In Progress"] == []
    assert coordinator.history[-1].state is MutationState.REVERTED
    assert coordinator.pending == {}


@pytest.mark.asyncio
async def test_revert_falls_back_to_snapshot_when_refetch_fails(store, board):
    task_id = first_task(board)
    gateway = FlakyGateway(store, fail={task_id}, refetch_fails=True)
    coordinator = coordinator_for(store, board, gateway)
    before = layout(coordinator.session.board)

    with pytest.raises(PersistenceFailure):
        await coordinator.move_task(task_id, board.columns[0].id, column_id(board, "Completed"), 0)

    assert layout(coordinator.session.board) == before


@pytest.mark.asyncio
async def test_cancelled_caller_still_resolves(store, board):
    task_id = first_task(board)
    gateway = FlakyGateway(store, gate=asyncio.Event())
    coordinator = coordinator_for(store, board, gateway)

    running = asyncio.create_task(
        coordinator.move_task(task_id, board.columns[0].id, column_id(board, "Completed"), 0)
    )
    await settle()
    running.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running

    gateway.gate.set()
    await coordinator.drain()
    assert coordinator.history[-1].state is MutationState.CONFIRMED
    assert layout(store.get_board(board.id))["Completed"] == [task_id]
    assert not coordinator._lock(task_id).locked()


@pytest.mark.asyncio
async def test_second_mutation_on_a_task_waits_for_the_first(store, board):
    task_id = first_task(board)
    gateway = FlakyGateway(store, gate=asyncio.Event())
    coordinator = coordinator_for(store, board, gateway)
    todo, doing, done = (c.id for c in board.columns)

    first = asyncio.create_task(coordinator.move_task(task_id, todo, doing, 0))
    second = asyncio.create_task(coordinator.move_task(task_id, doing, done, 0))
    await settle()
    assert gateway.calls == [("move", task_id)]

    gateway.gate.set()
    await asyncio.gather(first, second)
    assert gateway.calls == [("move", task_id), ("move", task_id)]
    assert layout(store.get_board(board.id))["Completed"] == [task_id]
    assert [m.state for m in coordinator.history] == [MutationState.CONFIRMED] * 2


@pytest.mark.asyncio
async def test_confirmation_timeout_reverts(store, board):
    task_id = first_task(board)
    gateway = FlakyGateway(store, gate=asyncio.Event())
    coordinator = coordinator_for(store, board, gateway, timeout=0.01)

    with pytest.raises(PersistenceFailure):
        await coordinator.move_task(task_id, board.columns[0].id, column_id(board, "Completed"), 0)
    assert layout(coordinator.session.board) == layout(store.get_board(board.id))


@pytest.mark.asyncio
async def test_duplicate_replaces_local_placeholder(store, board):
    coordinator = coordinator_for(store, board)
    task_id = first_task(board)

    created = await coordinator.duplicate_task(task_id)

    assert created.title == "Write report (Copy)"
    session_ids = layout(coordinator.session.board)["To Do"]
    assert session_ids == layout(store.get_board(board.id))["To Do"]
    assert session_ids[-1] == created.id


@pytest.mark.asyncio
async def test_update_and_delete(store, board):
    coordinator = coordinator_for(store, board)
    task_id = first_task(board)

    saved = await coordinator.update_task(task_id, title="Final report", subtasks=[Subtask(id="", title="proofread")])
    assert saved.title == "Final report"
    assert store.get_task(task_id).subtasks[0].title == "proofread"
    assert coordinator.session.board.columns[0].tasks[0].subtasks[0].id == saved.subtasks[0].id

    await coordinator.delete_task(task_id)
    assert task_id not in layout(coordinator.session.board)["To Do"]
    assert task_id not in layout(store.get_board(board.id))["To Do"]


@pytest.mark.asyncio
async def test_confirmed_move_triggers_automation(store, board):
    write, review = (t.id for t in board.columns[0].tasks)
    doing = column_id(board, "In Progress")
    rule = move_rule("r1", OVERDUE, doing)
    coordinator = coordinator_for(store, board, rules=[rule], auto_evaluate=True)

    await coordinator.move_task(write, board.columns[0].id, column_id(board, "Completed"), 0)

    assert layout(coordinator.session.board)["In Progress"] == [review]
    assert layout(store.get_board(board.id)) == layout(coordinator.session.board)
    assert coordinator.history[-1].kind == "automation"


@pytest.mark.asyncio
async def test_failed_automation_move_reverts_rest_of_batch(store, board):
    todo = board.columns[0].id
    extra = store.create_task(todo, "Chase invoice", due_date=YESTERDAY).id
    review = board.columns[0].tasks[1].id
    gateway = FlakyGateway(store, fail={review})
    rule = move_rule("r1", OVERDUE, column_id(board, "In Progress"))
    coordinator = coordinator_for(store, board, gateway, rules=[rule])

    confirmed = await coordinator.run_automation()

    assert confirmed == []
    assert gateway.calls == [("move", review)]
    assert [m.state for m in coordinator.history] == [MutationState.REVERTED] * 2
    assert layout(coordinator.session.board)["To Do"][1:] == [review, extra]
    assert coordinator.pending == {}


@pytest.mark.asyncio
async def test_automation_with_nothing_to_do(store, board):
    coordinator = coordinator_for(store, board, rules=[])
    assert await coordinator.run_automation() == []
    assert coordinator.history == []


@pytest.mark.asyncio
async def test_revert_keeps_other_tasks_awaiting_confirmation(store, board):
    write, review = (t.id for t in board.columns[0].tasks)
    todo, doing, done = (c.id for c in board.columns)
    gateway = FlakyGateway(store, fail={write}, gate=asyncio.Event(), held={review})
    coordinator = coordinator_for(store, board, gateway)

    moving = asyncio.create_task(coordinator.move_task(review, todo, doing, 0))
    await settle()
    with pytest.raises(PersistenceFailure):
        await coordinator.move_task(write, todo, done, 0)

    assert layout(coordinator.session.board) == {"To Do": [write], "In Progress": [review], "Completed": []}

    gateway.gate.set()
    await moving
    assert layout(coordinator.session.board) == layout(store.get_board(board.id))


@pytest.mark.asyncio
async def test_revert_keeps_pending_duplicate_placeholder(store, board):
    write, review = (t.id for t in board.columns[0].tasks)
    todo, _, done = (c.id for c in board.columns)
    gateway = FlakyGateway(store, fail={write}, gate=asyncio.Event(), held={review})
    coordinator = coordinator_for(store, board, gateway)

    copying = asyncio.create_task(coordinator.duplicate_task(review))
    await settle()
    with pytest.raises(PersistenceFailure):
        await coordinator.move_task(write, todo, done, 0)
    assert len(layout(coordinator.session.board)["To Do"]) == 3

    gateway.gate.set()
    created = await copying
    assert layout(coordinator.session.board) == layout(store.get_board(board.id))
    assert layout(coordinator.session.board)["To Do"][-1] == created.id


@pytest.mark.asyncio
async def test_cancelled_automation_releases_task_locks(store, board):
    write, review = (t.id for t in board.columns[0].tasks)
    store.update_task(write, due_date=YESTERDAY)
    gateway = FlakyGateway(store, gate=asyncio.Event(), held={review})
    rule = move_rule("r1", OVERDUE, column_id(board, "In Progress"))
    coordinator = coordinator_for(store, board, gateway, rules=[rule])

    updating = asyncio.create_task(coordinator.update_task(review, title="Review v2"))
    await settle()
    automation = asyncio.create_task(coordinator.run_automation())
    await settle()
    assert coordinator._lock(write).locked()

    automation.cancel()
    with pytest.raises(asyncio.CancelledError):
        await automation
    gateway.gate.set()
    await updating

    assert not coordinator._lock(write).locked()
    saved = await asyncio.wait_for(coordinator.update_task(write, title="Report v2"), 1.0)
    assert saved.title == "Report v2"


@pytest.mark.asyncio
async def test_automation_reads_rules_added_to_the_session(store, board):
    write, review = (t.id for t in board.columns[0].tasks)
    coordinator = coordinator_for(store, board, auto_evaluate=True)
    coordinator.session.rules.append(move_rule("r1", OVERDUE, column_id(board, "In Progress")))

    await coordinator.move_task(write, board.columns[0].id, column_id(board, "Completed"), 0)

    assert layout(coordinator.session.board)["In Progress"] == [review]
    assert layout(store.get_board(board.id)) == layout(coordinator.session.board)

"""Optimistic updates against a persistence collaborator.

A user mutation is applied to the session snapshot straight away, then
submitted to the gateway. Each submission is tracked as a
``PendingMutation`` whose state is one of:

    APPLIED_LOCALLY -> CONFIRMED
                    -> REVERTED

On failure the snapshot is replaced by a fresh copy fetched from the
gateway rather than by undoing the local change, so writes made by other
clients in the meantime are not lost. Mutations of other tasks that are
still awaiting confirmation are replayed onto the fetched copy, so the
snapshot keeps showing them until they resolve.

Only one mutation per task may be pending; later ones wait on a per-task
lock. Resolution runs in its own asyncio task shielded from the caller,
so a caller that gives up still leaves the mutation confirmed or reverted.
"""
from __future__ import annotations

import asyncio
import copy
import enum
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from . import config, mutator, rules
from .errors import PersistenceFailure, TaskboardError
from .gateway import PersistenceGateway
from .models import Board, DuplicateIntent, MoveIntent, Rule, Task
from .ordering import OrderedCollection
from .session import Session
from .utils import new_uuid

logger = logging.getLogger(__name__)

Replay = Callable[[Board], Board]


class MutationState(str, enum.Enum):
    APPLIED_LOCALLY = "applied-locally"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass
class PendingMutation:
    kind: str
    task_id: str
    board_id: str
    before: Board = field(repr=False)
    id: str = field(default_factory=new_uuid)
    state: MutationState = MutationState.APPLIED_LOCALLY
    result: Any = None
    error: Optional[BaseException] = None
    # re-applies the local change to another snapshot
    replay: Optional[Replay] = field(default=None, repr=False)
    batch: Optional[str] = None
    seq: int = 0

    @property
    def resolved(self) -> bool:
        return self.state is not MutationState.APPLIED_LOCALLY


def _append_task(board: Board, column_id: str, task: Task) -> Board:
    board = copy.deepcopy(board)
    OrderedCollection(mutator.get_column(board, column_id).tasks).append(copy.deepcopy(task))
    return board


class OptimisticCoordinator:
    def __init__(
        self,
        session: Session,
        gateway: PersistenceGateway,
        rules: Optional[Sequence[Rule]] = None,
        auto_evaluate: bool = config.AUTO_EVALUATE,
        timeout: Optional[float] = config.CONFIRM_TIMEOUT,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self._rules: Optional[List[Rule]] = list(rules) if rules is not None else None
        self.auto_evaluate = auto_evaluate
        self.timeout = timeout
        self.pending: Dict[str, PendingMutation] = {}
        self.history: List[PendingMutation] = []
        self._locks: Dict[str, asyncio.Lock] = {}
        self._automation = asyncio.Lock()
        self._inflight: set[asyncio.Task] = set()
        self._seq = itertools.count(1)

    @property
    def rules(self) -> List[Rule]:
        """Rules given at construction, otherwise the session's current rules."""
        return self._rules if self._rules is not None else self.session.rules

    # === Bookkeeping ===

    def _lock(self, task_id: str) -> asyncio.Lock:
        return self._locks.setdefault(task_id, asyncio.Lock())

    def _begin(
        self,
        kind: str,
        task_id: str,
        before: Board,
        after: Board,
        replay: Optional[Replay] = None,
        batch: Optional[str] = None,
    ) -> PendingMutation:
        pending = PendingMutation(
            kind=kind,
            task_id=task_id,
            board_id=before.id,
            before=before,
            replay=replay,
            batch=batch,
            seq=next(self._seq),
        )
        self.session.replace_board(after)
        self.pending[task_id] = pending
        return pending

    def _finish(self, pending: PendingMutation) -> None:
        if self.pending.get(pending.task_id) is pending:
            del self.pending[pending.task_id]
        self.history.append(pending)
        lock = self._locks.get(pending.task_id)
        if lock is not None and lock.locked():
            lock.release()

    def _unresolved_besides(self, pending: PendingMutation) -> List[PendingMutation]:
        others = [
            p
            for p in self.pending.values()
            if p is not pending
            and not p.resolved
            and p.board_id == pending.board_id
            and (pending.batch is None or p.batch != pending.batch)
        ]
        return sorted(others, key=lambda p: p.seq)

    def _replay(self, board: Board, pendings: List[PendingMutation]) -> Board:
        for other in pendings:
            if other.replay is None:
                continue
            try:
                board = other.replay(board)
            except TaskboardError as exc:
                logger.warning("Dropping local %s of task %s after refetch: %s", other.kind, other.task_id, exc)
        return board

    async def _revert(self, pending: PendingMutation, exc: BaseException) -> None:
        pending.error = exc
        pending.state = MutationState.REVERTED
        logger.warning("Reverting %s of task %s: %s", pending.kind, pending.task_id, exc)
        try:
            board = await self.gateway.fetch_board(pending.board_id)
            keep = self._unresolved_besides(pending)
        except Exception:
            logger.exception("Refetch of board %s failed; restoring last known snapshot", pending.board_id)
            board = pending.before
            # the snapshot already holds everything that started earlier
            keep = [p for p in self._unresolved_besides(pending) if p.seq > pending.seq]
        self.session.replace_board(self._replay(board, keep))

    async def _submit(self, submit: Callable[[], Awaitable[Any]]) -> Any:
        if self.timeout is None:
            return await submit()
        return await asyncio.wait_for(submit(), self.timeout)

    async def _settle(
        self,
        pending: PendingMutation,
        submit: Callable[[], Awaitable[Any]],
        on_success: Optional[Callable[[Any], None]] = None,
    ) -> None:
        try:
            try:
                result = await self._submit(submit)
            except Exception as exc:
                await self._revert(pending, exc)
                return
            pending.result = result
            pending.state = MutationState.CONFIRMED
            if on_success is not None:
                on_success(result)
        finally:
            self._finish(pending)

    async def _shielded(self, coro: Awaitable[Any]) -> Any:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _resolve(
        self,
        pending: PendingMutation,
        submit: Callable[[], Awaitable[Any]],
        on_success: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        await self._shielded(self._settle(pending, submit, on_success))
        if pending.state is MutationState.REVERTED:
            raise PersistenceFailure(
                f"{pending.kind} of task {pending.task_id} was not saved",
                {"taskId": pending.task_id, "mutationId": pending.id},
            ) from pending.error
        return pending.result

    async def _acquire(self, task_id: str) -> asyncio.Lock:
        lock = self._lock(task_id)
        await lock.acquire()
        return lock

    async def drain(self) -> None:
        """Wait until every in-flight mutation is confirmed or reverted."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _replace_task(self, placeholder_id: str, task: Task) -> None:
        board = copy.deepcopy(self.session.board)
        if placeholder_id != task.id and mutator.has_task(board, task.id):
            # a refetch already brought in the stored task
            self.session.replace_board(mutator.delete_task(board, placeholder_id))
            return
        for column in board.columns:
            for i, existing in enumerate(column.tasks):
                if existing.id == placeholder_id:
                    column.tasks[i] = task
                    self.session.replace_board(board)
                    return

    # === Mutations ===

    async def move_task(
        self,
        task_id: str,
        source_column_id: str,
        dest_column_id: str,
        dest_index: int,
    ) -> Task:
        lock = await self._acquire(task_id)
        before = self.session.board
        try:
            after, task = mutator.move_task(before, task_id, source_column_id, dest_column_id, dest_index)
        except Exception:
            lock.release()
            raise
        dest = after.column(dest_column_id)
        intent = MoveIntent(
            task_id=task_id,
            source_column_id=source_column_id,
            dest_column_id=dest_column_id,
            new_order=[t.id for t in dest.tasks].index(task_id),  # type: ignore[union-attr]
        )
        pending = self._begin(
            "move",
            task_id,
            before,
            after,
            lambda b: mutator.move_task(b, task_id, source_column_id, dest_column_id, dest_index)[0],
        )
        await self._resolve(pending, lambda: self.gateway.move_task(intent))
        await self._after_confirm()
        return task

    async def duplicate_task(self, task_id: str, target_column_id: Optional[str] = None) -> Task:
        lock = await self._acquire(task_id)
        before = self.session.board
        try:
            after, placeholder = mutator.duplicate_task(before, task_id, target_column_id)
        except Exception:
            lock.release()
            raise
        landed, _ = mutator.find_task(after, placeholder.id)
        pending = self._begin(
            "duplicate",
            task_id,
            before,
            after,
            lambda b: _append_task(b, landed.id, placeholder),
        )
        intent = DuplicateIntent(task_id=task_id, target_column_id=target_column_id)
        created = await self._resolve(
            pending,
            lambda: self.gateway.duplicate_task(intent),
            lambda saved: self._replace_task(placeholder.id, saved),
        )
        await self._after_confirm()
        return created

    async def update_task(self, task_id: str, **fields: Any) -> Task:
        lock = await self._acquire(task_id)
        before = self.session.board
        try:
            after, _ = mutator.update_task(before, task_id, **fields)
        except Exception:
            lock.release()
            raise
        pending = self._begin(
            "update",
            task_id,
            before,
            after,
            lambda b: mutator.update_task(b, task_id, **fields)[0],
        )
        saved = await self._resolve(
            pending,
            lambda: self.gateway.update_task(task_id, fields),
            lambda saved: self._replace_task(task_id, saved),
        )
        await self._after_confirm()
        return saved

    async def delete_task(self, task_id: str) -> None:
        lock = await self._acquire(task_id)
        before = self.session.board
        try:
            after = mutator.delete_task(before, task_id)
        except Exception:
            lock.release()
            raise
        pending = self._begin("delete", task_id, before, after, lambda b: mutator.delete_task(b, task_id))
        await self._resolve(pending, lambda: self.gateway.delete_task(task_id))

    # === Automation ===

    async def _after_confirm(self) -> None:
        if self.auto_evaluate:
            await self.run_automation()

    async def run_automation(self) -> List[MoveIntent]:
        """One rule pass over the current snapshot; returns the confirmed moves."""
        async with self._automation:
            intents = rules.evaluate(self.session.board, self.rules)
            if not intents:
                return []
            locks: Dict[str, asyncio.Lock] = {}
            try:
                for task_id in dict.fromkeys(i.task_id for i in intents):
                    locks[task_id] = await self._acquire(task_id)
                # the snapshot may have moved on while waiting for the locks
                before = self.session.board
                fresh = [i for i in rules.evaluate(before, self.rules) if i.task_id in locks]
                after, applied = rules.apply_intents(before, fresh)
            except BaseException:
                for lock in locks.values():
                    lock.release()
                raise
            moved = {i.task_id for i in applied}
            for task_id, lock in locks.items():
                if task_id not in moved:
                    lock.release()
            if not applied:
                return []
            batch = new_uuid()
            pendings = [
                self._begin(
                    "automation",
                    i.task_id,
                    before,
                    after,
                    lambda b, intent=i: rules.apply_intents(b, [intent])[0],
                    batch,
                )
                for i in applied
            ]
            return await self._shielded(self._settle_batch(applied, pendings))

    async def _settle_batch(
        self, intents: List[MoveIntent], pendings: List[PendingMutation]
    ) -> List[MoveIntent]:
        confirmed: List[MoveIntent] = []
        for n, (intent, pending) in enumerate(zip(intents, pendings)):
            await self._settle(pending, lambda intent=intent: self.gateway.move_task(intent))
            if pending.state is MutationState.REVERTED:
                # the refetched board no longer carries the rest of the batch
                for rest in pendings[n + 1 :]:
                    rest.state = MutationState.REVERTED
                    rest.error = pending.error
                    self._finish(rest)
                break
            confirmed.append(intent)
        return confirmed

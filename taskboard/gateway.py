"""Persistence collaborators the optimistic coordinator confirms against.

``StorageGateway`` talks to a ``Storage`` in the same process;
``HttpGateway`` talks to the HTTP API with ``httpx``. Both report every
rejection as ``PersistenceFailure``.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

from .errors import PersistenceFailure, TaskboardError
from .models import Board, DuplicateIntent, MoveIntent, Task
from .schemas import BoardOut, TaskOut, board_from_wire, task_from_wire
from .storage import Storage
from .utils import to_iso


class PersistenceGateway(Protocol):
    async def fetch_board(self, board_id: str) -> Board: ...

    async def move_task(self, intent: MoveIntent) -> None: ...

    async def duplicate_task(self, intent: DuplicateIntent) -> Task: ...

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task: ...

    async def delete_task(self, task_id: str) -> None: ...


class StorageGateway:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except TaskboardError as exc:
            raise PersistenceFailure(exc.message, {"code": exc.code, **exc.details}) from exc

    async def fetch_board(self, board_id: str) -> Board:
        return await self._call(self.storage.get_board, board_id)

    async def move_task(self, intent: MoveIntent) -> None:
        await self._call(
            self.storage.move_task,
            intent.task_id,
            intent.source_column_id,
            intent.dest_column_id,
            intent.new_order,
        )

    async def duplicate_task(self, intent: DuplicateIntent) -> Task:
        return await self._call(self.storage.duplicate_task, intent.task_id, intent.target_column_id)

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        return await self._call(self.storage.update_task, task_id, **fields)

    async def delete_task(self, task_id: str) -> None:
        await self._call(self.storage.delete_task, task_id)


def task_fields_to_wire(fields: dict[str, Any]) -> dict[str, Any]:
    body: dict[str, Any] = {}
    if "title" in fields:
        body["title"] = fields["title"]
    if "description" in fields:
        body["description"] = fields["description"]
    if "due_date" in fields:
        body["dueDate"] = to_iso(fields["due_date"])
    if "subtasks" in fields:
        body["subtasks"] = [
            {"id": st.id or None, "title": st.title, "completed": st.completed} for st in fields["subtasks"]
        ]
    if "custom_fields" in fields:
        body["customFields"] = [
            {"id": cf.id or None, "name": cf.name, "value": cf.value} for cf in fields["custom_fields"]
        ]
    return body


class HttpGateway:
    """Client for the ``/v1`` HTTP API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = 10.0,
    ) -> None:
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, json: Optional[dict] = None) -> Any:
        try:
            response = await self.client.request(method, f"/v1{url}", json=json)
        except httpx.HTTPError as exc:
            raise PersistenceFailure(f"{method} {url} failed: {exc}") from exc
        if response.is_error:
            try:
                error = response.json()
            except ValueError:
                error = {}
            if not isinstance(error, dict):
                error = {}
            message = error.get("message") or f"HTTP {response.status_code}"
            raise PersistenceFailure(message, {"status": response.status_code, "code": error.get("code")})
        return response.json()

    async def fetch_board(self, board_id: str) -> Board:
        data = await self._request("GET", f"/boards/{board_id}")
        return board_from_wire(BoardOut.model_validate(data))

    async def move_task(self, intent: MoveIntent) -> None:
        await self._request(
            "POST",
            f"/tasks/{intent.task_id}/move",
            {
                "sourceColumnId": intent.source_column_id,
                "destColumnId": intent.dest_column_id,
                "newOrder": intent.new_order,
            },
        )

    async def duplicate_task(self, intent: DuplicateIntent) -> Task:
        data = await self._request(
            "POST", f"/tasks/{intent.task_id}/duplicate", {"targetColumnId": intent.target_column_id}
        )
        return task_from_wire(TaskOut.model_validate(data))

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        data = await self._request("PATCH", f"/tasks/{task_id}", task_fields_to_wire(fields))
        return task_from_wire(TaskOut.model_validate(data))

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

"""
Test helpers for driving interleaved requests.
"""

import asyncio
import itertools
import json
from typing import Any, Dict, List, Tuple

import httpx


T0 = "2024-01-01T00:00:00.000Z"
OPTIMISTIC_STAMP = "2026-10-19T12:00:00.000Z"


class FakeClock:
    """Manually advanced clock for staleness tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Gate:
    """An awaitable request that resolves only when the test says so.

    Must be created inside a running event loop.
    """

    def __init__(self):
        self.calls = 0
        self._future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

    async def __call__(self) -> Any:
        self.calls += 1
        return await self._future

    def resolve(self, value: Any) -> None:
        self._future.set_result(value)

    def fail(self, error: BaseException) -> None:
        self._future.set_exception(error)


async def settle_tasks() -> None:
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(5):
        await asyncio.sleep(0)


class FakeComplianceApi:
    """In-memory compliance REST API served through ``httpx.MockTransport``.

    ``fail`` makes the next matching request return an error body and
    ``pause`` holds the next matching request until the returned future is
    resolved.
    """

    prefix = "/api"

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.systems: Dict[str, Dict[str, Any]] = {}
        self.baselines: Dict[str, Dict[str, Any]] = {}
        self.templates: List[Dict[str, Any]] = []
        self.requests: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self._pauses: Dict[Tuple[str, str], "asyncio.Future[None]"] = {}
        self._ids = itertools.count(100)
        self._ticks = itertools.count(1)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, method: str, path: str, status_code: int, message: str) -> None:
        self._failures[(method, path)] = (status_code, message)

    def pause(self, method: str, path: str) -> "asyncio.Future[None]":
        future = asyncio.get_running_loop().create_future()
        self._pauses[(method, path)] = future
        return future

    def count(self, method: str, path: str) -> int:
        return self.requests.count((method, path))

    def stamp(self) -> str:
        return f"2024-01-02T00:00:{next(self._ticks) % 60:02d}.000Z"

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path[len(self.prefix):]
        self.requests.append((method, path))

        pause = self._pauses.pop((method, path), None)
        if pause is not None:
            await pause

        failure = self._failures.pop((method, path), None)
        if failure is not None:
            return httpx.Response(failure[0], json={"message": failure[1]})

        body = json.loads(request.content) if request.content else {}
        parts = [part for part in path.split("/") if part]
        return self._route(method, parts, dict(request.url.params), body)

    def _route(self, method: str, parts: List[str], params: Dict[str, str], body: Dict[str, Any]) -> httpx.Response:
        if parts[0] == "products":
            return self._crud(self.products, "products", "Product", method, parts, params, body)
        if parts[0] == "systems":
            return self._crud(self.systems, "systems", "System", method, parts, params, body)
        if parts[0] == "baselines":
            return self._baselines(method, parts, body)
        return httpx.Response(404, json={"message": "Not found"})

    def _crud(self, store: Dict[str, Dict[str, Any]], envelope: str, label: str,
              method: str, parts: List[str], params: Dict[str, str], body: Dict[str, Any]) -> httpx.Response:
        if len(parts) == 1:
            if method == "GET":
                rows = [row for row in store.values()
                        if all(str(row.get(name)) == value for name, value in params.items())]
                return httpx.Response(200, json={envelope: rows, "total": len(rows)})
            entity_id = f"{envelope[0]}{next(self._ids)}"
            store[entity_id] = {**body, "id": entity_id, "updatedAt": self.stamp()}
            return httpx.Response(201, json=store[entity_id])

        entity_id = parts[1]
        if entity_id not in store:
            return httpx.Response(404, json={"message": f"{label} not found"})
        if method == "GET":
            return httpx.Response(200, json=store[entity_id])
        if method == "PUT":
            store[entity_id] = {**store[entity_id], **body, "id": entity_id, "updatedAt": self.stamp()}
            return httpx.Response(200, json=store[entity_id])
        del store[entity_id]
        return httpx.Response(204)

    def _baselines(self, method: str, parts: List[str], body: Dict[str, Any]) -> httpx.Response:
        if parts == ["baselines"]:
            if method == "GET":
                return httpx.Response(200, json={"data": list(self.baselines.values())})
            product_id = body["productId"]
            self.baselines[product_id] = {**body, "id": f"b{next(self._ids)}", "updatedAt": self.stamp()}
            return httpx.Response(201, json={"data": self.baselines[product_id]})
        if parts == ["baselines", "templates"]:
            return httpx.Response(200, json={"data": self.templates})

        product_id = parts[2]
        if len(parts) == 4:
            return self._apply_template(product_id, body)
        if product_id not in self.baselines:
            return httpx.Response(404, json={"message": "Baseline not found"})
        if method == "GET":
            return httpx.Response(200, json={"data": self.baselines[product_id]})
        if method == "PUT":
            self.baselines[product_id] = {**self.baselines[product_id], **body, "updatedAt": self.stamp()}
            return httpx.Response(200, json={"data": self.baselines[product_id]})
        del self.baselines[product_id]
        return httpx.Response(204)

    def _apply_template(self, product_id: str, body: Dict[str, Any]) -> httpx.Response:
        control_ids = list(body.get("controlIds") or [])
        if body.get("templateId"):
            template = next((t for t in self.templates if t["id"] == body["templateId"]), None)
            if template is None:
                return httpx.Response(404, json={"message": "Template not found"})
            control_ids = list(template["controlIds"])

        baseline = self.baselines.get(product_id) or {
            "id": f"b{next(self._ids)}", "productId": product_id, "controlIds": []
        }
        existing = list(baseline["controlIds"])
        added = [cid for cid in control_ids if cid not in existing]
        baseline = {**baseline, "controlIds": existing + added, "updatedAt": self.stamp()}
        self.baselines[product_id] = baseline
        summary = {"added": len(added), "skipped": len(control_ids) - len(added), "total": len(baseline["controlIds"])}
        return httpx.Response(200, json={"data": baseline, "summary": summary})

"""Unit tests for the rate-limited client wrapper."""

import asyncio
import time

import pytest

from relay.infra.runtime.interceptor import (
    RateLimitedBuilder,
    create_rate_limited_client,
    get_rate_limiter_metrics,
)


class FakeQuery:
    """Fluent builder resolving through ``execute`` or ``await``."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.steps = []
        self.limit_value = None

    def select(self, columns="*"):
        self.steps.append(("select", columns))
        return self

    def update(self, values):
        self.steps.append(("update", values))
        return self

    def eq(self, column, value):
        self.steps.append(("eq", column, value))
        return self

    def describe(self):
        return f"{self.table}:{len(self.steps)}"

    async def execute(self):
        self.client.executed.append((self.table, list(self.steps)))
        if self.table == "broken":
            raise ValueError("relation does not exist")
        return {"table": self.table, "steps": list(self.steps)}

    def __await__(self):
        return self.execute().__await__()


class SyncQuery:
    """Builder with a blocking ``execute`` and no ``__await__``."""

    def __init__(self, table):
        self.table = table

    def eq(self, column, value):
        return self

    def execute(self):
        return [{"table": self.table}]


class FakeClient:

    def __init__(self):
        self.executed = []
        self.url = "https://db.example.test"
        self.token = "secret"

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, fn, params=None):
        return FakeQuery(self, f"rpc:{fn}")

    def auth_header(self):
        return {"Authorization": f"Bearer {self.token}"}


def wrap(client=None, metrics=None, **kwargs):
    kwargs.setdefault("tokens_per_second", 100.0)
    kwargs.setdefault("burst_size", 50)
    return create_rate_limited_client(client or FakeClient(), metrics=metrics, **kwargs)


class TestRateLimitedClient:

    @pytest.mark.asyncio
    async def test_chain_resolves_to_underlying_result(self, metrics):
        client = wrap(metrics=metrics)
        result = await client.table("deals").update({"stage": "won"}).eq("id", 7).execute()
        assert result == {
            "table": "deals",
            "steps": [("update", {"stage": "won"}), ("eq", "id", 7)],
        }

    @pytest.mark.asyncio
    async def test_intermediate_steps_stay_wrapped_and_unqueued(self, metrics):
        client = wrap(metrics=metrics)
        builder = client.table("deals").select("id, value").eq("stage", "lead")

        assert isinstance(builder, RateLimitedBuilder)
        assert builder.describe() == "deals:2"
        assert client.queue.get_stats()["total_enqueued"] == 0
        assert client.wrapped.executed == []

    @pytest.mark.asyncio
    async def test_only_terminal_step_goes_through_queue(self, metrics):
        client = wrap(metrics=metrics)
        await client.table("deals").select().eq("id", 1).execute()
        await client.rpc("pipeline_summary").execute()

        assert client.queue.get_stats()["total_enqueued"] == 2
        assert get_rate_limiter_metrics(client)["total_requests"] == 2

    @pytest.mark.asyncio
    async def test_requests_behind_running_operation_count_as_queued(self, metrics):
        gate = asyncio.Event()

        class GatedQuery:
            async def execute(self):
                await gate.wait()
                return "done"

        class GatedClient:
            def table(self, name):
                return GatedQuery()

        client = wrap(GatedClient(), metrics=metrics)

        first = client.table("deals").execute()
        await asyncio.sleep(0)
        # First operation admitted and still running; nothing left queued.
        assert client.queue.depth == 0
        second = client.table("contacts").execute()
        gate.set()
        assert await asyncio.gather(first, second) == ["done", "done"]

        stats = get_rate_limiter_metrics(client)
        assert stats["total_requests"] == 2
        assert stats["queued_requests"] == 1

        await client.table("notes").execute()
        assert get_rate_limiter_metrics(client)["queued_requests"] == 1

    @pytest.mark.asyncio
    async def test_awaiting_builder_is_rate_limited(self, metrics):
        client = wrap(metrics=metrics)
        result = await client.table("contacts").select("email")
        assert result["table"] == "contacts"
        assert client.queue.get_stats()["total_admitted"] == 1

    @pytest.mark.asyncio
    async def test_non_builder_members_pass_through(self, metrics):
        raw = FakeClient()
        client = wrap(raw, metrics=metrics)
        assert client.url == "https://db.example.test"
        raw.token = "rotated"
        assert client.auth_header() == {"Authorization": "Bearer rotated"}
        builder = client.table("deals")
        assert builder.limit_value is None
        assert builder.table == "deals"

    @pytest.mark.asyncio
    async def test_errors_propagate_unchanged(self, metrics):
        client = wrap(metrics=metrics)
        with pytest.raises(ValueError, match="relation does not exist"):
            await client.table("broken").select().execute()
        assert (await client.table("ok").execute())["table"] == "ok"

    @pytest.mark.asyncio
    async def test_rate_limiting_delays_instead_of_failing(self, metrics):
        client = wrap(metrics=metrics, tokens_per_second=50.0, burst_size=1)
        started = time.monotonic()
        results = await asyncio.gather(
            *(client.table(f"t{i}").execute() for i in range(3))
        )
        elapsed = time.monotonic() - started

        assert [r["table"] for r in results] == ["t0", "t1", "t2"]
        assert elapsed >= 0.03
        assert get_rate_limiter_metrics(client)["rate_limit_hits"] >= 2

    @pytest.mark.asyncio
    async def test_sync_execute_is_queued(self, metrics):
        class SyncClient:
            def table(self, name):
                return SyncQuery(name)

        client = wrap(SyncClient(), metrics=metrics)
        assert await client.table("deals").eq("id", 1).execute() == [{"table": "deals"}]

    @pytest.mark.asyncio
    async def test_awaiting_non_awaitable_builder_raises(self, metrics):
        class SyncClient:
            def table(self, name):
                return SyncQuery(name)

        client = wrap(SyncClient(), metrics=metrics)
        with pytest.raises(TypeError, match="execute"):
            await client.table("deals")

    @pytest.mark.asyncio
    async def test_custom_entry_points_and_hook(self, metrics):
        class Collection:
            def __init__(self):
                self.filters = []

            def where(self, **filters):
                self.filters.append(filters)
                return self

            async def fetch(self):
                return self.filters

        class DocClient:
            def collection(self, name):
                return Collection()

        client = wrap(
            DocClient(),
            metrics=metrics,
            builder_methods=("collection",),
            resolve_hook="fetch",
        )
        assert await client.collection("deals").where(stage="won").fetch() == [{"stage": "won"}]
        assert client.queue.get_stats()["total_enqueued"] == 1

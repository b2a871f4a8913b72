import asyncio

import pytest

from artstudio.bridge.correlation import CorrelationTable, new_correlation_id
from artstudio.exceptions import BridgeTimeoutError, PendingRequestEvictedError


def test_new_correlation_ids_are_unique_and_prefixed():
    ids = {new_correlation_id("cart") for _ in range(200)}
    assert len(ids) == 200
    assert all(item.startswith("cart_") for item in ids)


def test_resolve_settles_once_and_ignores_late_results():
    async def scenario():
        table = CorrelationTable()
        request = table.register("cart_1", timeout=5)
        assert "cart_1" in table
        assert table.resolve("cart_1", {"ok": True}) is True
        assert await request.future == {"ok": True}
        # Duplicate and unknown results are inert.
        assert table.resolve("cart_1", {"ok": False}) is False
        assert table.resolve("cart_unknown", {"ok": True}) is False
        assert table.resolve(None, {"ok": True}) is False
        return len(table)

    assert asyncio.run(scenario()) == 0


def test_timeout_rejects_and_later_result_is_ignored():
    async def scenario():
        table = CorrelationTable()
        request = table.register("cart_2", timeout=0.01)
        with pytest.raises(BridgeTimeoutError) as excinfo:
            await request.future
        assert excinfo.value.correlation_id == "cart_2"
        assert excinfo.value.error_type == "bridge_timeout"
        assert "cart_2" not in table
        assert table.resolve("cart_2", {"ok": True}) is False

    asyncio.run(scenario())


def test_capacity_evicts_oldest_pending_request():
    async def scenario():
        table = CorrelationTable(max_pending=2)
        first = table.register("a", timeout=5)
        table.register("b", timeout=5)
        table.register("c", timeout=5)
        assert len(table) == 2
        assert "a" not in table and "b" in table and "c" in table
        with pytest.raises(PendingRequestEvictedError) as excinfo:
            await first.future
        assert excinfo.value.correlation_id == "a"
        table.reject_all(lambda cid: PendingRequestEvictedError("closed", correlation_id=cid))

    asyncio.run(scenario())


def test_register_rejects_duplicate_id():
    async def scenario():
        table = CorrelationTable()
        table.register("dup", timeout=5)
        with pytest.raises(ValueError):
            table.register("dup", timeout=5)
        table.discard("dup")
        assert len(table) == 0

    asyncio.run(scenario())


def test_reject_all_settles_every_pending_request():
    async def scenario():
        table = CorrelationTable()
        futures = [table.register(f"r{i}", timeout=5).future for i in range(3)]
        count = table.reject_all(lambda cid: PendingRequestEvictedError("closed", correlation_id=cid))
        results = await asyncio.gather(*futures, return_exceptions=True)
        return count, results

    count, results = asyncio.run(scenario())
    assert count == 3
    assert all(isinstance(item, PendingRequestEvictedError) for item in results)

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from retail_core.endpoints import (
    PRESET_ENDPOINTS,
    EndpointRegistry,
    InMemoryEndpointCollaborator,
    draft_from_preset,
    with_header,
    without_header,
)
from retail_core.models import APIEndpoint, EndpointDraft


def _endpoint(eid="e1", enabled=True, url="https://api.example.com/products"):
    return APIEndpoint(id=eid, name="Products", url=url, enabled=enabled)


def _mock_collaborator(*endpoints):
    collab = MagicMock()
    collab.list.return_value = list(endpoints)
    collab.test = AsyncMock(return_value=True)
    collab.sync = AsyncMock(return_value=None)
    return collab


class TestPassThrough:
    def test_save_adds_new_draft(self):
        collab = _mock_collaborator()
        draft = EndpointDraft(name="Products", url="https://api.example.com/products")
        EndpointRegistry(collab).save(draft)
        collab.add.assert_called_once_with(draft)
        collab.update.assert_not_called()

    def test_save_updates_when_editing(self):
        collab = _mock_collaborator(_endpoint())
        draft = EndpointDraft(name="Renamed", url="https://api.example.com/v2", method="PUT")
        EndpointRegistry(collab).save(draft, editing_id="e1")
        collab.update.assert_called_once_with(
            "e1",
            {"name": "Renamed", "url": "https://api.example.com/v2", "method": "PUT", "headers": {}, "enabled": True},
        )

    def test_delete_requires_confirmation(self):
        collab = _mock_collaborator(_endpoint())
        registry = EndpointRegistry(collab)
        seen = []

        assert registry.delete("e1", lambda ep: seen.append(ep) or False) is False
        collab.delete.assert_not_called()
        assert seen[0].id == "e1"

        assert registry.delete("e1", lambda ep: True) is True
        collab.delete.assert_called_once_with("e1")


class TestBusyFlags:
    def test_test_reports_collaborator_result(self):
        collab = _mock_collaborator(_endpoint())
        collab.test.return_value = False
        registry = EndpointRegistry(collab)
        assert asyncio.run(registry.test("e1")) is False
        assert not registry.is_testing("e1")

    def test_concurrent_test_for_same_id_is_rejected(self):
        async def scenario():
            gate = asyncio.Event()
            calls = []

            async def slow_test(endpoint_id):
                calls.append(endpoint_id)
                await gate.wait()
                return True

            collab = _mock_collaborator(_endpoint("e1"), _endpoint("e2"))
            collab.test = slow_test
            registry = EndpointRegistry(collab)

            first = asyncio.create_task(registry.test("e1"))
            other = asyncio.create_task(registry.test("e2"))
            await asyncio.sleep(0)
            assert registry.is_testing("e1")
            duplicate = await registry.test("e1")
            gate.set()
            return await first, await other, duplicate, calls, registry.is_testing("e1")

        first, other, duplicate, calls, still_busy = asyncio.run(scenario())
        assert (first, other, duplicate) == (True, True, None)
        assert sorted(calls) == ["e1", "e2"]
        assert still_busy is False

    def test_failed_test_clears_flag_and_reports_false(self, caplog):
        collab = _mock_collaborator(_endpoint())
        collab.test.side_effect = RuntimeError("connection refused")
        registry = EndpointRegistry(collab)
        assert asyncio.run(registry.test("e1")) is False
        assert not registry.is_testing("e1")
        assert "endpoint test failed" in caplog.text

    def test_sync_success_and_failure(self):
        collab = _mock_collaborator(_endpoint())
        registry = EndpointRegistry(collab)
        assert asyncio.run(registry.sync("e1")) is True

        collab.sync.side_effect = TimeoutError()
        assert asyncio.run(registry.sync("e1")) is False
        assert not registry.is_syncing("e1")

    def test_sync_skips_disabled_endpoint(self):
        collab = _mock_collaborator(_endpoint(enabled=False))
        assert asyncio.run(EndpointRegistry(collab).sync("e1")) is None
        collab.sync.assert_not_awaited()

    def test_test_and_sync_flags_are_independent(self):
        async def scenario():
            gate = asyncio.Event()

            async def slow_sync(endpoint_id):
                await gate.wait()

            collab = _mock_collaborator(_endpoint())
            collab.sync = slow_sync
            registry = EndpointRegistry(collab)
            pending = asyncio.create_task(registry.sync("e1"))
            await asyncio.sleep(0)
            tested = await registry.test("e1")
            busy = registry.is_syncing("e1")
            gate.set()
            return tested, busy, await pending

        assert asyncio.run(scenario()) == (True, True, True)

    def test_concurrent_sync_for_same_id_is_rejected(self):
        async def scenario():
            gate = asyncio.Event()
            calls = []

            async def slow_sync(endpoint_id):
                calls.append(endpoint_id)
                await gate.wait()

            collab = _mock_collaborator(_endpoint())
            collab.sync = slow_sync
            registry = EndpointRegistry(collab)

            first = asyncio.create_task(registry.sync("e1"))
            await asyncio.sleep(0)
            duplicate = await registry.sync("e1")
            gate.set()
            return await first, duplicate, calls, registry.is_syncing("e1")

        first, duplicate, calls, still_busy = asyncio.run(scenario())
        assert (first, duplicate) == (True, None)
        assert calls == ["e1"]
        assert still_busy is False


class TestInMemoryCollaborator:
    def test_lifecycle(self):
        store = InMemoryEndpointCollaborator()
        registry = EndpointRegistry(store)
        registry.save(EndpointDraft(name="Products", url="https://api.example.com/products", headers={"X-Key": "k"}))
        (ep,) = registry.endpoints()
        assert len(ep.id) == 32
        assert ep.last_sync is None

        registry.save(EndpointDraft(name="Products v2", url="ftp://files.example.com", enabled=True), editing_id=ep.id)
        updated = registry.get(ep.id)
        assert updated.name == "Products v2"
        assert updated.headers == {}
        assert asyncio.run(registry.test(ep.id)) is False

        store.update(ep.id, {"url": "http://api.example.com"})
        assert asyncio.run(registry.test(ep.id)) is True
        assert asyncio.run(registry.sync(ep.id)) is True
        assert registry.get(ep.id).last_sync is not None

        assert registry.delete(ep.id, lambda _: True)
        assert registry.endpoints() == []

    def test_unknown_id_and_bad_method(self):
        store = InMemoryEndpointCollaborator([_endpoint()])
        with pytest.raises(KeyError):
            store.update("missing", {"name": "x"})
        with pytest.raises(KeyError):
            store.delete("missing")
        with pytest.raises(ValueError):
            store.update("e1", {"method": "PATCH"})

    def test_disabled_endpoint_fails_test(self):
        store = InMemoryEndpointCollaborator([_endpoint(enabled=False)])
        assert asyncio.run(store.test("e1")) is False


def test_presets_and_header_helpers():
    assert [p.name for p in PRESET_ENDPOINTS] == ["Shopify Products", "WooCommerce Products", "Square Inventory"]
    draft = draft_from_preset("Square Inventory")
    assert draft.method == "POST"
    assert draft.enabled is True
    draft.headers["X-Extra"] = "1"
    assert "X-Extra" not in PRESET_ENDPOINTS[2].headers
    with pytest.raises(KeyError):
        draft_from_preset("Etsy")

    headers = with_header({}, "Authorization", "Bearer t")
    assert headers == {"Authorization": "Bearer t"}
    assert with_header(headers, "", "v") == headers
    assert with_header(headers, "X-Key", "") == headers
    assert without_header(headers, "Authorization") == {}

"""
Unit tests for the in-memory document store.
"""

import itertools

import pytest

from service_marketplace.app.adapters import InMemoryDocumentStore


class TestInMemoryDocumentStore:
    """Test cases for InMemoryDocumentStore."""

    @pytest.fixture
    def store(self):
        counter = itertools.count(1)
        return InMemoryDocumentStore(id_factory=lambda: f"doc-{next(counter)}")

    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_timestamps(self, store):
        document = await store.insert("orders", {"title": "Paint fence"})

        assert document["id"] == "doc-1"
        assert document["createdAt"] == document["updatedAt"]
        assert await store.get("orders", "doc-1") == document

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store):
        """Mutating a returned document does not touch the stored one."""
        document = await store.insert("orders", {"tags": ["a"]})
        document["tags"].append("b")

        fetched = await store.get("orders", document["id"])
        fetched["tags"].append("c")

        assert (await store.get("orders", document["id"]))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_find_filters_and_sorts(self, store):
        await store.insert("orders", {"category": "plumbing", "price": 10})
        await store.insert("orders", {"category": "cleaning", "price": 30})
        await store.insert("orders", {"category": "plumbing", "price": 20})

        found = await store.find("orders", {"category": "plumbing", "status": None}, sort_by="price", descending=True)

        assert [document["price"] for document in found] == [20, 10]
        assert await store.count("orders") == 3

    @pytest.mark.asyncio
    async def test_list_fields_match_by_membership(self, store):
        await store.insert("chats", {"participants": ["u1", "u2"]})
        await store.insert("chats", {"participants": ["u3", "u4"]})

        found = await store.find_one("chats", {"participants": "u2"})

        assert found["participants"] == ["u1", "u2"]
        assert await store.find_one("chats", {"participants": "u9"}) is None

    @pytest.mark.asyncio
    async def test_update(self, store):
        document = await store.insert("orders", {"status": "PENDING"})

        updated = await store.update("orders", document["id"], {"status": "ACCEPTED", "id": "other"})

        assert updated["status"] == "ACCEPTED"
        assert updated["id"] == document["id"]
        assert await store.update("orders", "missing", {"status": "ACCEPTED"}) is None

    @pytest.mark.asyncio
    async def test_update_many(self, store):
        await store.insert("notifications", {"userId": "u1", "isRead": False})
        await store.insert("notifications", {"userId": "u1", "isRead": False})
        await store.insert("notifications", {"userId": "u2", "isRead": False})

        assert await store.update_many("notifications", {"userId": "u1"}, {"isRead": True}) == 2
        assert await store.count("notifications", {"isRead": False}) == 1

    @pytest.mark.asyncio
    async def test_delete(self, store):
        document = await store.insert("messages", {"chatId": "c1"})

        assert (await store.delete("messages", document["id"]))["chatId"] == "c1"
        assert await store.delete("messages", document["id"]) is None
        assert await store.get("messages", document["id"]) is None

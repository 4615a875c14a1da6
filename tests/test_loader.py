"""Tests for the hierarchical document loader."""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from docloader.common.config import LoaderConfig
from docloader.common.metrics import MetricsCollector
from docloader.document_store.base import DocumentStoreQueryError, WriteMode
from docloader.document_store.factory import create_loader
from docloader.loader import (
    CollectionPathLengthMismatchError,
    DelimiterInNameError,
    DocumentPathLengthMismatchError,
    EmptyPathConfigurationError,
    FailurePolicy,
    HierarchicalDocumentLoader,
)

JANE = {
    "firstName": "Jane",
    "lastName": "Doe",
    "role": "student",
    "id": "jdoe",
    "path": "users/jdoe",
}
JOHN_SMITH = {
    "firstName": "John",
    "lastName": "Smith",
    "role": "student",
    "id": "jsmith",
    "path": "users/jsmith",
}
POST_1 = {
    "title": "Post 1",
    "content": "This is post 1",
    "id": "post1",
    "path": "users/jdoe/posts/post1",
}


class TestConstruction:
    """Loader construction and path helpers."""

    def test_rejects_missing_collection_names(self, store):
        with pytest.raises(EmptyPathConfigurationError, match="Collection names must be specified."):
            HierarchicalDocumentLoader(store, [])

    def test_rejects_collection_names_with_slashes(self, store):
        with pytest.raises(DelimiterInNameError, match="Collection names cannot contain slashes"):
            HierarchicalDocumentLoader(store, ["people/users"])

    def test_collection_path(self, store):
        assert HierarchicalDocumentLoader(store, ["users"]).collection_path() == "users"
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        assert user_posts.collection_path(["jdoe"]) == "users/jdoe/posts"

    def test_document_path(self, store):
        assert HierarchicalDocumentLoader(store, ["users"]).document_path(["jdoe"]) == "users/jdoe"
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        assert user_posts.document_path(["jdoe", "post1"]) == "users/jdoe/posts/post1"

    def test_single_string_is_one_name(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        assert users.document_path("jdoe") == "users/jdoe"

    def test_loaders_do_not_share_caches(self, store):
        first = HierarchicalDocumentLoader(store, ["users"])
        second = HierarchicalDocumentLoader(store, ["users"])
        assert first.cache is not second.cache


class TestFetchById:
    """Reads by document name."""

    @pytest.mark.asyncio
    async def test_gets_document(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        assert await users.fetch_by_id(["jdoe"]) == JANE

    @pytest.mark.asyncio
    async def test_gets_document_two_in(self, store):
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        assert await user_posts.fetch_by_id(["jdoe", "post1"]) == POST_1

    @pytest.mark.asyncio
    async def test_missing_document_is_none(self, empty_store):
        users = HierarchicalDocumentLoader(empty_store, ["users"])
        assert await users.fetch_by_id(["jdoe"]) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("doc_names", [[], ["jdoe", "post1", "likes"]])
    async def test_rejects_wrong_number_of_names(self, store, doc_names):
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        with pytest.raises(DocumentPathLengthMismatchError):
            await user_posts.fetch_by_id(doc_names)
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_rejects_names_with_slashes(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        with pytest.raises(DelimiterInNameError, match="Document names cannot contain slashes"):
            await users.fetch_by_id(["jdoe/posts"])
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_concurrent_reads_are_batched(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])

        results = await asyncio.gather(
            users.fetch_by_id(["jdoe"]),
            users.fetch_by_id(["jdoe"]),
            users.fetch_by_id(["jsmith"]),
        )

        assert results == [JANE, JANE, JOHN_SMITH]
        assert store.batches == [["users/jdoe", "users/jsmith"]]

    @pytest.mark.asyncio
    async def test_does_not_re_request_document(self, store):
        await store.write_document("users/changingjoe", {"firstName": "Same", "lastName": "Joe"})
        users = HierarchicalDocumentLoader(store, ["users"])
        await users.fetch_by_id(["changingjoe"])

        await store.write_document("users/changingjoe", {"firstName": "Changed", "lastName": "Joe"})
        user = await users.fetch_by_id(["changingjoe"])

        assert user["firstName"] == "Same"
        assert store.reads == 1

    @pytest.mark.asyncio
    async def test_read_errors_are_isolated_and_absent(self, store_factory):
        store = store_factory({"users/jdoe": {"firstName": "Jane"}}, broken=["users/flaky"])
        users = HierarchicalDocumentLoader(store, ["users"])

        jane, flaky = await asyncio.gather(
            users.fetch_by_id(["jdoe"]),
            users.fetch_by_id(["flaky"]),
        )

        assert jane["firstName"] == "Jane"
        assert flaky is None
        assert store.batches == [["users/jdoe", "users/flaky"]]

    @pytest.mark.asyncio
    async def test_cached_failure_is_not_retried(self, empty_store):
        users = HierarchicalDocumentLoader(empty_store, ["users"], failure_policy=FailurePolicy.CACHE)
        assert await users.fetch_by_id(["jdoe"]) is None

        await empty_store.write_document("users/jdoe", {"firstName": "Jane"})

        assert await users.fetch_by_id(["jdoe"]) is None
        assert empty_store.reads == 1

    @pytest.mark.asyncio
    async def test_evicted_failure_is_retried(self, empty_store):
        users = HierarchicalDocumentLoader(empty_store, ["users"], failure_policy=FailurePolicy.EVICT)
        assert await users.fetch_by_id(["jdoe"]) is None

        await empty_store.write_document("users/jdoe", {"firstName": "Jane"})

        assert (await users.fetch_by_id(["jdoe"]))["firstName"] == "Jane"
        assert empty_store.reads == 2


class TestFetchByQuery:
    """Queries and the cache priming they perform."""

    @pytest.mark.asyncio
    async def test_gets_documents(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        results = await users.fetch_by_query(lambda q: q.where("role", "==", "student"))
        assert results == [JANE, JOHN_SMITH]

    @pytest.mark.asyncio
    async def test_gets_documents_two_in(self, store):
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        results = await user_posts.fetch_by_query(lambda q: q.where("title", "==", "Post 1"), ["jdoe"])
        assert results == [POST_1]

    @pytest.mark.asyncio
    async def test_keeps_store_order(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        results = await users.fetch_by_query(lambda q: q.order_by("lastName", "DESCENDING").limit(2))
        assert [record["id"] for record in results] == ["jsmith", "jdoe"]

    @pytest.mark.asyncio
    async def test_primes_results(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        await users.fetch_by_query(lambda q: q.where("role", "==", "student"))

        assert await users.fetch_by_id(["jdoe"]) == JANE
        assert await users.fetch_by_id(["jsmith"]) == JOHN_SMITH
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_does_not_re_request_document(self, store):
        await store.write_document("users/changingjoe", {"firstName": "Same", "lastName": "Joe"})
        users = HierarchicalDocumentLoader(store, ["users"])
        await users.fetch_by_query(lambda q: q.where("firstName", "==", "Same"))

        await store.write_document("users/changingjoe", {"firstName": "Changed", "lastName": "Joe"})
        user = await users.fetch_by_id(["changingjoe"])

        assert user == {
            "firstName": "Same",
            "lastName": "Joe",
            "id": "changingjoe",
            "path": "users/changingjoe",
        }
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_rejects_wrong_number_of_names(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        with pytest.raises(CollectionPathLengthMismatchError):
            await users.fetch_by_query(lambda q: q, ["jdoe"])

    @pytest.mark.asyncio
    async def test_rejects_names_with_slashes(self, store):
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        with pytest.raises(DelimiterInNameError):
            await user_posts.fetch_by_query(lambda q: q, ["jdoe/posts"])

    @pytest.mark.asyncio
    async def test_query_errors_propagate(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        with pytest.raises(DocumentStoreQueryError):
            await users.fetch_by_query(lambda q: q.where("role", "~=", "student"))

    @pytest.mark.asyncio
    async def test_fetch_all(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        results = await users.fetch_all()
        assert [record["id"] for record in results] == ["jdoe", "johndoe", "jsmith"]

    @pytest.mark.asyncio
    async def test_fetch_all_two_in(self, store):
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])
        assert await user_posts.fetch_all(["jdoe"]) == [POST_1]
        assert await user_posts.fetch_all(["jsmith"]) == []


class TestCollectionGroupQuery:
    """Queries across every collection sharing the template's last name."""

    @pytest.mark.asyncio
    async def test_matches_any_ancestor_and_primes_by_store_path(self, store_factory):
        store = store_factory({
            "users/jdoe/posts/post1": {"title": "Post 1", "published": True},
            "users/jsmith/posts/post2": {"title": "Post 2", "published": True},
            "users/jsmith/posts/post3": {"title": "Post 3", "published": False},
            "groups/g1/posts/post4": {"title": "Post 4", "published": True},
            "users/jdoe": {"firstName": "Jane"},
        })
        user_posts = HierarchicalDocumentLoader(store, ["users", "posts"])

        results = await user_posts.fetch_by_collection_group_query(
            lambda q: q.where("published", "==", True)
        )

        assert [record["path"] for record in results] == [
            "groups/g1/posts/post4",
            "users/jdoe/posts/post1",
            "users/jsmith/posts/post2",
        ]
        assert (await user_posts.fetch_by_id(["jsmith", "post2"]))["title"] == "Post 2"
        assert store.batches == []


class TestCreateDoc:
    """Writes, id generation and read-back priming."""

    @pytest.mark.asyncio
    async def test_create_then_fetch_served_from_cache(self, empty_store):
        users = HierarchicalDocumentLoader(empty_store, ["users"])
        assert await users.fetch_by_id(["jdoe"]) is None

        created = await users.create_doc({"firstName": "Jane"}, True, ["jdoe"])
        fetched = await users.fetch_by_id(["jdoe"])

        expected = {"id": "jdoe", "path": "users/jdoe", "firstName": "Jane"}
        assert created == expected
        assert fetched == expected
        # One read for the miss, one for the read-back, none for the last fetch
        assert empty_store.reads == 2

    @pytest.mark.asyncio
    async def test_writes_exact_document(self, empty_store):
        users = HierarchicalDocumentLoader(empty_store, ["users"])
        await users.create_doc({"firstName": "Jane"}, True, ["jdoe"])
        assert await empty_store.get_document("users/jdoe") == {"firstName": "Jane"}

    @pytest.mark.asyncio
    async def test_generates_id_under_collection(self, empty_store):
        user_posts = HierarchicalDocumentLoader(empty_store, ["users", "posts"])

        created = await user_posts.create_doc({"title": "Hello"}, True, ["jdoe"])

        assert created["path"] == f"users/jdoe/posts/{created['id']}"
        assert len(created["id"]) == 20
        assert created["path"] in empty_store
        reads = empty_store.reads
        assert await user_posts.fetch_by_id(["jdoe", created["id"]]) == created
        assert empty_store.reads == reads

    @pytest.mark.asyncio
    async def test_merge_keeps_existing_fields(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        created = await users.create_doc({"role": "tutor"}, False, ["jdoe"])
        assert created == {**JANE, "role": "tutor"}

    @pytest.mark.asyncio
    async def test_overwrite_replaces_document(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        created = await users.create_doc({"role": "tutor"}, True, ["jdoe"])
        assert created == {"role": "tutor", "id": "jdoe", "path": "users/jdoe"}

    @pytest.mark.asyncio
    async def test_refreshes_cached_document(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        assert await users.fetch_by_id(["jdoe"]) == JANE

        await users.create_doc({"role": "tutor"}, False, ["jdoe"])

        assert (await users.fetch_by_id(["jdoe"]))["role"] == "tutor"

    @pytest.mark.asyncio
    async def test_returns_read_back_not_payload(self, store_factory):
        class StampingStore(store_factory):
            async def write_document(self, path, payload, mode=WriteMode.REPLACE):
                await super().write_document(path, {**payload, "createdBy": "store"}, mode)

        users = HierarchicalDocumentLoader(StampingStore(), ["users"])
        created = await users.create_doc({"firstName": "Jane"}, True, ["jdoe"])
        assert created["createdBy"] == "store"

    @pytest.mark.asyncio
    async def test_injected_fields_are_not_written(self, empty_store):
        users = HierarchicalDocumentLoader(empty_store, ["users"])
        await users.create_doc({"firstName": "Jane", "id": "other", "path": "x/y"}, True, ["jdoe"])
        assert await empty_store.get_document("users/jdoe") == {"firstName": "Jane"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("doc_names", [[], ["jdoe", "post1", "likes"]])
    async def test_rejects_wrong_number_of_names(self, empty_store, doc_names):
        user_posts = HierarchicalDocumentLoader(empty_store, ["users", "posts"])
        with pytest.raises(CollectionPathLengthMismatchError):
            await user_posts.create_doc({"title": "Hello"}, True, doc_names)
        assert len(empty_store) == 0

    @pytest.mark.asyncio
    async def test_rejects_names_with_slashes(self, empty_store):
        user_posts = HierarchicalDocumentLoader(empty_store, ["users", "posts"])
        with pytest.raises(DelimiterInNameError):
            await user_posts.create_doc({"title": "Hello"}, True, ["jdoe/posts"])
        assert len(empty_store) == 0


class TestCacheManagement:

    @pytest.mark.asyncio
    async def test_prime_and_clear(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])

        primed = users.prime(["jdoe"], {"firstName": "Primed"})
        assert primed == {"firstName": "Primed", "id": "jdoe", "path": "users/jdoe"}
        assert await users.fetch_by_id(["jdoe"]) == primed
        assert store.batches == []

        users.clear(["jdoe"])
        assert await users.fetch_by_id(["jdoe"]) == JANE
        assert store.batches == [["users/jdoe"]]

    @pytest.mark.asyncio
    async def test_records_metrics(self, store):
        collector = MetricsCollector("test-service", registry=CollectorRegistry())
        users = HierarchicalDocumentLoader(store, ["users"], metrics=collector)

        await users.fetch_by_query(lambda q: q.where("role", "==", "student"))
        await asyncio.gather(users.fetch_by_id(["jdoe"]), users.fetch_by_id(["johndoe"]))

        registry = collector.registry
        assert registry.get_sample_value("docloader_cache_primes_total", {"loader": "users"}) == 2
        assert registry.get_sample_value("docloader_cache_hits_total", {"loader": "users"}) == 1
        assert registry.get_sample_value("docloader_batches_total", {"loader": "users"}) == 1
        assert registry.get_sample_value(
            "docloader_store_operations_total", {"operation": "run_query", "status": "ok"}
        ) == 1


def test_create_loader_from_config(store):
    config = LoaderConfig(docloader_cache_failures=False, docloader_metrics_enabled=False)
    loader = create_loader(["users", "posts"], config=config, store=store)

    assert loader.collection_names == ("users", "posts")
    assert loader.store is store
    assert loader.cache.failure_policy is FailurePolicy.EVICT


class TestCancellation:
    """Cancelled awaiters and batches never surface as fetch errors."""

    @pytest.mark.asyncio
    async def test_cancelled_cache_entry_is_fetched_again(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        users.cache.load("users/jdoe").cancel()

        assert await users.fetch_by_id(["jdoe"]) == JANE
        assert store.batches == [["users/jdoe"]]

    @pytest.mark.asyncio
    async def test_cancelled_awaiter_does_not_affect_siblings(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])
        cancelled = asyncio.ensure_future(users.fetch_by_id(["jdoe"]))
        sibling = asyncio.ensure_future(users.fetch_by_id(["jdoe"]))
        await asyncio.sleep(0)

        cancelled.cancel()

        assert await sibling == JANE
        await asyncio.gather(cancelled, return_exceptions=True)
        assert cancelled.cancelled()
        assert await users.fetch_by_id(["jdoe"]) == JANE
        assert store.batches == [["users/jdoe"]]

    @pytest.mark.asyncio
    async def test_cancelled_batch_is_absent_then_retried(self, store_factory):
        class InterruptedStore(store_factory):
            async def get_documents(self, paths):
                if not self.batches:
                    self.batches.append(list(paths))
                    raise asyncio.CancelledError()
                return await super().get_documents(paths)

        store = InterruptedStore({"users/jdoe": {"firstName": "Jane"}})
        users = HierarchicalDocumentLoader(store, ["users"])

        assert await users.fetch_by_id(["jdoe"]) is None
        assert (await users.fetch_by_id(["jdoe"]))["firstName"] == "Jane"
        assert store.batches == [["users/jdoe"], ["users/jdoe"]]


class TestRecordIsolation:
    """Returned records are copies of what the cache holds."""

    @pytest.mark.asyncio
    async def test_mutating_fetched_record_does_not_change_cache(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])

        first = await users.fetch_by_id(["jdoe"])
        first["firstName"] = "Mutated"

        assert (await users.fetch_by_id(["jdoe"]))["firstName"] == "Jane"

    @pytest.mark.asyncio
    async def test_mutating_query_result_does_not_change_cache(self, store):
        users = HierarchicalDocumentLoader(store, ["users"])

        results = await users.fetch_all()
        results[0]["firstName"] = "Mutated"

        assert (await users.fetch_by_id([results[0]["id"]]))["firstName"] != "Mutated"
        assert store.batches == []


def test_prime_before_event_loop_starts(store):
    users = HierarchicalDocumentLoader(store, ["users"])
    users.prime(["jdoe"], {"firstName": "Primed"})

    assert asyncio.run(users.fetch_by_id(["jdoe"])) == {
        "firstName": "Primed",
        "id": "jdoe",
        "path": "users/jdoe",
    }
    assert store.batches == []

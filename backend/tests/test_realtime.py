"""
Tests for real-time Firestore subscriptions.
- Reference shape follows segment count (odd = collection, even = document).
- Falsy path never subscribes and stops loading.
- Setup errors land in state.error instead of raising.
- update() tears down the old watch; late snapshots from it are dropped.
- No state changes after close().
- A watch the SDK stops on its own surfaces as an error.
"""
import asyncio
import threading
import time
import pytest
from unittest.mock import MagicMock

from fakes import FakeFirestore
from services.realtime import (
    COLLECTION,
    DOCUMENT,
    CollectionSubscription,
    DocumentSubscription,
    InvalidPathError,
    QueryOptions,
    SubscriptionClosedError,
    apply_query_options,
    reference_kind,
    subscribe_collection,
    subscribe_document,
)


@pytest.fixture
def db():
    db = FakeFirestore()
    db.seed("restaurants/r1/orders/o1", {"total": 10, "status": "new", "createdAt": 1})
    db.seed("restaurants/r1/orders/o2", {"total": 25, "status": "done", "createdAt": 2})
    db.seed("restaurants/r1/orders/o3", {"total": 40, "status": "new", "createdAt": 3})
    db.seed("restaurants/r2/orders/x1", {"total": 99, "status": "new", "createdAt": 1})
    db.seed("restaurants/r1/meta/settings", {"name": "Luigi's"})
    return db


class TestReferenceKind:

    @pytest.mark.parametrize("path,kind", [
        ("restaurants", COLLECTION),
        ("restaurants/r1", DOCUMENT),
        ("restaurants/r1/orders", COLLECTION),
        ("restaurants/r1/meta/settings", DOCUMENT),
        ("restaurants/r1/orders/o1/items", COLLECTION),
        ("/restaurants/r1/orders/", COLLECTION),
    ])
    def test_kind_follows_segment_count(self, path, kind):
        assert reference_kind(path) == kind

    def test_empty_path_is_invalid(self):
        with pytest.raises(InvalidPathError):
            reference_kind("")


class TestQueryOptions:

    def test_accepts_camel_case_order_by(self):
        options = QueryOptions.coerce({"orderBy": [{"field": "createdAt", "direction": "desc"}], "limit": 5})
        assert options.order_by[0].field == "createdAt"
        assert options.limit == 5

    def test_cache_key_is_stable(self):
        a = QueryOptions.coerce({"where": [{"field": "status", "operator": "==", "value": "new"}]})
        b = QueryOptions.coerce({"where": [{"field": "status", "value": "new"}]})
        assert a.cache_key() == b.cache_key()

    def test_unsupported_operator_rejected(self, db):
        options = QueryOptions.coerce({"where": [{"field": "a", "operator": "like", "value": 1}]})
        with pytest.raises(ValueError, match="Unsupported"):
            apply_query_options(db.collection("restaurants/r1/orders"), options)


class TestCollectionSubscription:

    def test_initial_snapshot_populates_data(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        state = sub.state
        assert state.loading is False
        assert state.error is None
        assert {doc["id"] for doc in state.data} == {"o1", "o2", "o3"}
        assert all("total" in doc for doc in state.data)

    def test_query_options_filter_sort_and_limit(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders", {
            "where": [{"field": "status", "operator": "==", "value": "new"}],
            "orderBy": [{"field": "createdAt", "direction": "desc"}],
            "limit": 1,
        })
        assert [doc["id"] for doc in sub.data] == ["o3"]

    def test_falsy_path_does_not_subscribe(self):
        db = MagicMock()
        sub = subscribe_collection(db, None)
        assert sub.loading is False
        assert sub.data == []
        assert sub.error is None
        db.collection.assert_not_called()

    def test_document_path_is_an_error_state(self, db):
        sub = subscribe_collection(db, "restaurants/r1")
        assert sub.loading is False
        assert isinstance(sub.error, InvalidPathError)
        assert db.watches == []

    def test_setup_failure_is_captured(self):
        db = MagicMock()
        db.collection.return_value.on_snapshot.side_effect = RuntimeError("permission denied")
        sub = subscribe_collection(db, "restaurants/r1/orders")
        assert sub.loading is False
        assert str(sub.error) == "permission denied"

    def test_writes_are_pushed_to_listeners(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        seen = []
        sub.add_listener(seen.append)

        db.collection("restaurants/r1/orders").document("o4").set({"total": 5, "createdAt": 4})

        assert seen
        assert "o4" in {doc["id"] for doc in seen[-1].data}

    def test_update_resubscribes_and_drops_stale_snapshots(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        first_watch = db.watches[0]

        assert sub.update("restaurants/r2/orders") is True
        assert first_watch.unsubscribed
        assert [doc["id"] for doc in sub.data] == ["x1"]

        # Late delivery from the torn-down watch.
        first_watch.fire()
        assert [doc["id"] for doc in sub.data] == ["x1"]

    def test_update_with_same_inputs_is_a_no_op(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders", {"limit": 2})
        assert sub.update("restaurants/r1/orders", {"limit": 2}) is False
        assert len(db.watches) == 1

    def test_update_changes_options(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders", {"limit": 3})
        sub.update("restaurants/r1/orders", {"limit": 1, "orderBy": [{"field": "createdAt"}]})
        assert [doc["id"] for doc in sub.data] == ["o1"]

    def test_update_keeps_previous_data_while_loading(self):
        db = MagicMock()
        sub = CollectionSubscription(db, "restaurants/r1/orders").start()
        callback = db.collection.return_value.on_snapshot.call_args[0][0]
        doc = MagicMock(exists=True, id="o1")
        doc.to_dict.return_value = {"total": 1}
        callback([doc], [], None)
        assert sub.data == [{"id": "o1", "total": 1}]

        sub.update("restaurants/r2/orders")
        assert sub.loading is True
        assert sub.data == [{"id": "o1", "total": 1}]

    def test_no_updates_after_close(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        watch = db.watches[0]
        seen = []
        sub.add_listener(seen.append)

        sub.close()
        assert watch.unsubscribed
        assert seen[-1].closed is True
        before = list(sub.data)

        watch.fire()
        db.collection("restaurants/r1/orders").document("o9").set({"total": 1, "createdAt": 9})
        assert sub.data == before
        assert len(seen) == 1

    def test_closed_subscription_cannot_restart(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        sub.close()
        sub.close()
        with pytest.raises(SubscriptionClosedError):
            sub.start()
        with pytest.raises(SubscriptionClosedError):
            sub.update("restaurants/r2/orders")

    def test_context_manager_closes(self, db):
        with CollectionSubscription(db, "restaurants/r1/orders") as sub:
            assert len(sub.data) == 3
        assert sub.closed
        assert db.watches[0].unsubscribed

    def test_nested_subcollection(self, db):
        db.seed("restaurants/r1/orders/o1/items/i1", {"qty": 1})
        sub = subscribe_collection(db, "restaurants/r1/orders/o1/items")
        assert sub.data == [{"id": "i1", "qty": 1}]
        assert sub.error is None

    def test_stopped_watch_becomes_error(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        seen = []
        sub.add_listener(seen.append)
        assert sub.check_alive() is True
        assert seen == []

        db.watches[0].stop()

        assert sub.check_alive() is False
        assert isinstance(sub.error, ConnectionError)
        assert str(sub.error) == "Listener stopped"
        assert sub.loading is False
        assert seen[-1].error is sub.error
        # Reported once.
        sub.check_alive()
        assert len(seen) == 1

    def test_stopped_watch_before_first_snapshot(self):
        db = MagicMock()
        sub = CollectionSubscription(db, "restaurants/r1/orders").start()
        assert sub.loading is True
        db.collection.return_value.on_snapshot.return_value.is_active = False

        sub.check_alive()
        assert sub.loading is False
        assert isinstance(sub.error, ConnectionError)

    def _blocking_unsubscribe(self, db):
        """Make unsubscribe() join a delivery thread that needs the subscription lock."""
        callback = db.collection.return_value.on_snapshot.call_args[0][0]
        delivery = threading.Thread(target=callback, args=([], [], None))
        watch = db.collection.return_value.on_snapshot.return_value

        def unsubscribe():
            delivery.start()
            delivery.join(timeout=1)
        watch.unsubscribe.side_effect = unsubscribe
        return delivery

    def test_close_unsubscribes_outside_the_lock(self):
        db = MagicMock()
        sub = CollectionSubscription(db, "restaurants/r1/orders").start()
        delivery = self._blocking_unsubscribe(db)

        started = time.monotonic()
        sub.close()
        assert time.monotonic() - started < 0.5
        assert not delivery.is_alive()
        assert sub.closed

    def test_update_unsubscribes_outside_the_lock(self):
        db = MagicMock()
        sub = CollectionSubscription(db, "restaurants/r1/orders").start()
        delivery = self._blocking_unsubscribe(db)

        started = time.monotonic()
        assert sub.update("restaurants/r2/orders") is True
        assert time.monotonic() - started < 0.5
        assert not delivery.is_alive()
        # Stale delivery from the old watch did not touch the new one.
        assert sub.loading is True


class TestDocumentSubscription:

    def test_document_snapshot(self, db):
        sub = subscribe_document(db, "restaurants/r1/meta/settings")
        assert sub.data == {"id": "settings", "name": "Luigi's"}
        assert sub.loading is False

    def test_missing_document_is_none(self, db):
        sub = subscribe_document(db, "restaurants/r9/meta/settings")
        assert sub.data is None
        assert sub.loading is False
        assert sub.error is None

    def test_collection_path_is_an_error_state(self, db):
        sub = subscribe_document(db, "restaurants/r1/orders")
        assert isinstance(sub.error, InvalidPathError)

    def test_follows_writes(self, db):
        sub = subscribe_document(db, "restaurants/r1/meta/settings")
        db.document("restaurants/r1/meta/settings").set({"timezone": "UTC"}, merge=True)
        assert sub.data["timezone"] == "UTC"
        assert sub.data["name"] == "Luigi's"

    def test_update_takes_no_query_options(self, db):
        sub = subscribe_document(db, "restaurants/r1/meta/settings")
        with pytest.raises(TypeError):
            sub.update("restaurants/r2/meta/settings", {"limit": 1})
        assert sub.update("restaurants/r2/meta/settings") is True
        assert sub.data is None


class TestAsyncUpdates:

    @pytest.mark.asyncio
    async def test_updates_yield_current_then_new_states(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        updates = sub.updates()

        first = await updates.__anext__()
        assert len(first.data) == 3

        db.collection("restaurants/r1/orders").document("o4").set({"total": 5, "createdAt": 4})
        second = await asyncio.wait_for(updates.__anext__(), timeout=1)
        assert len(second.data) == 4
        await updates.aclose()

    @pytest.mark.asyncio
    async def test_updates_end_on_close(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        states = []

        async def consume():
            async for state in sub.updates():
                states.append(state)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        sub.close()
        await asyncio.wait_for(task, timeout=1)
        assert states[-1].closed is True

    @pytest.mark.asyncio
    async def test_stopped_watch_is_reported(self, db):
        sub = subscribe_collection(db, "restaurants/r1/orders")
        sub.watch_check_interval = 0.01
        updates = sub.updates()
        first = await updates.__anext__()
        assert first.error is None

        db.watches[0].stop()
        state = await asyncio.wait_for(updates.__anext__(), timeout=1)
        assert isinstance(state.error, ConnectionError)
        assert state.loading is False
        await updates.aclose()

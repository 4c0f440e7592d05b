"""Real-time Firestore subscriptions.

Turns a slash-separated path plus declarative query options into a live
`{data, loading, error}` state that follows the server:

- 1/3/5... segments -> collection reference, 2/4/... -> document reference.
  The shape is decided by segment count alone.
- A falsy path skips subscribing (loading becomes False, nothing is opened).
- Errors while opening the channel or handling a snapshot are stored in
  `error`; they are never raised to the caller.
- `update()` with a different path or options tears the previous watch down
  before opening the next one.
- `close()` always unsubscribes; snapshots delivered afterwards are dropped.
- A watch the SDK stops by itself is reported as `ConnectionError` by
  `check_alive()`, which `updates()` calls whenever it has been idle.

Watch callbacks arrive on the Firestore SDK's background thread. State is
guarded by a lock and every (re)subscribe bumps a generation counter, so a
late callback from a torn-down watch can never overwrite newer state.
"""
import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel, Field, ConfigDict

from models import SortDirection
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list

logger = logging.getLogger(__name__)

COLLECTION = "collection"
DOCUMENT = "document"

# Web SDK operator spellings that differ from the Python client.
OPERATOR_ALIASES = {
    "array-contains": "array_contains",
    "array-contains-any": "array_contains_any",
}
SUPPORTED_OPERATORS = {
    "<", "<=", "==", "!=", ">=", ">",
    "in", "not-in", "array_contains", "array_contains_any",
}

_DIRECTIONS = {
    SortDirection.ASC: firestore.Query.ASCENDING,
    SortDirection.DESC: firestore.Query.DESCENDING,
}


class InvalidPathError(ValueError):
    """Path does not have the shape the subscription needs."""


class SubscriptionClosedError(RuntimeError):
    pass


# ============================================================================
# QUERY OPTIONS
# ============================================================================

class WhereClause(BaseModel):
    field: str
    operator: str = "=="
    value: Any = None


class OrderByClause(BaseModel):
    field: str
    direction: SortDirection = SortDirection.ASC


class QueryOptions(BaseModel):
    """Declarative query: equality/range filters, sort fields, result limit."""
    model_config = ConfigDict(populate_by_name=True)

    where: List[WhereClause] = Field(default_factory=list)
    order_by: List[OrderByClause] = Field(default_factory=list, alias="orderBy")
    limit: Optional[int] = Field(default=None, ge=1)

    @classmethod
    def coerce(cls, options) -> "QueryOptions":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(options)

    def cache_key(self) -> str:
        """Stable identity used to decide whether a re-subscribe is needed."""
        return json.dumps(self.model_dump(mode="json", by_alias=True), sort_keys=True, default=str)


def split_path(path: Optional[str]) -> List[str]:
    return [part for part in (path or "").split("/") if part]


def reference_kind(path: str) -> str:
    segments = split_path(path)
    if not segments:
        raise InvalidPathError("Path is empty")
    return COLLECTION if len(segments) % 2 == 1 else DOCUMENT


def resolve_reference(db, path: str):
    """Collection reference for odd segment counts, document reference for even."""
    segments = split_path(path)
    if reference_kind(path) == COLLECTION:
        return db.collection(*segments)
    return db.document(*segments)


def apply_query_options(ref, options: QueryOptions):
    """Apply filters, then ordering, then limit."""
    query = ref
    for clause in options.where:
        op = OPERATOR_ALIASES.get(clause.operator, clause.operator)
        if op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported where operator: {clause.operator}")
        query = query.where(filter=FieldFilter(clause.field, op, clause.value))
    for clause in options.order_by:
        query = query.order_by(clause.field, direction=_DIRECTIONS[clause.direction])
    if options.limit:
        query = query.limit(options.limit)
    return query


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

@dataclass(frozen=True)
class SubscriptionState:
    data: Any
    loading: bool
    error: Optional[BaseException] = None
    closed: bool = False


class _Subscription:
    kind = None
    # Seconds `updates()` waits for a snapshot before checking the watch is still alive.
    watch_check_interval = 5.0

    def __init__(self, db, path: Optional[str], options=None):
        self._db = db
        self._path = path
        self._options = QueryOptions.coerce(options)
        self._lock = threading.RLock()
        self._watch = None
        self._generation = 0
        self._started = False
        self._closed = False
        self._listeners: List[Callable[[SubscriptionState], None]] = []
        self.data = self._empty()
        self.loading = True
        self.error: Optional[BaseException] = None

    # -- overridden per shape -------------------------------------------------

    def _empty(self):
        raise NotImplementedError

    def _target(self):
        raise NotImplementedError

    def _convert(self, snapshot):
        raise NotImplementedError

    # -- public API -----------------------------------------------------------

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def options(self) -> QueryOptions:
        return self._options

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> SubscriptionState:
        with self._lock:
            return SubscriptionState(self.data, self.loading, self.error, self._closed)

    def add_listener(self, listener: Callable[[SubscriptionState], None]) -> Callable[[], None]:
        """Register a state observer; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return remove

    def start(self):
        with self._lock:
            if self._closed:
                raise SubscriptionClosedError(f"Subscription to {self._path!r} is closed")
            if self._started:
                return self
            self._started = True
            self._open()
            self._notify()
        return self

    def update(self, path: Optional[str], options=None) -> bool:
        """Re-point the subscription. Returns True if a new watch was opened."""
        options = QueryOptions.coerce(options)
        with self._lock:
            if self._closed:
                raise SubscriptionClosedError(f"Subscription to {self._path!r} is closed")
            if path == self._path and options.cache_key() == self._options.cache_key():
                return False
            old_watch = self._detach()
            self._path = path
            self._options = options
            self.loading = True
            self.error = None
            if self._started:
                self._open()
                self._notify()
        # The SDK joins its delivery thread here; that thread may be waiting on our lock.
        self._unsubscribe(old_watch)
        return True

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            old_watch = self._detach()
            self._notify()
            self._listeners.clear()
        self._unsubscribe(old_watch)

    def check_alive(self) -> bool:
        """Surface a watch the SDK stopped on its own (permission denied, stream error).

        The SDK closes the stream and drops the callback without delivering the
        error, so this is the only way the state learns about it.
        """
        with self._lock:
            if self._closed or self._watch is None:
                return not self._closed
            if getattr(self._watch, "is_active", True):
                return True
            logger.error("Firestore listener stopped path=%s", self._path)
            self._watch = None
            self._generation += 1
            self.error = ConnectionError("Listener stopped")
            self.loading = False
            self._notify()
            return False

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    async def updates(self):
        """Async iterator of state snapshots, ending when the subscription closes."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def push(state: SubscriptionState):
            loop.call_soon_threadsafe(queue.put_nowait, state)

        remove = self.add_listener(push)
        try:
            state = self.state
            yield state
            while not state.closed:
                try:
                    state = await asyncio.wait_for(queue.get(), timeout=self.watch_check_interval)
                except asyncio.TimeoutError:
                    self.check_alive()
                    continue
                yield state
        finally:
            remove()

    # -- internals ------------------------------------------------------------

    def _open(self):
        self._generation += 1
        generation = self._generation
        if not self._path:
            self.loading = False
            return
        try:
            target = self._target()

            def on_snapshot(snapshot, changes, read_time):
                self._handle_snapshot(generation, snapshot)

            self._watch = target.on_snapshot(on_snapshot)
        except Exception as e:
            logger.error("Error setting up Firestore listener path=%s: %s", self._path, e)
            self._watch = None
            self.error = e
            self.loading = False

    def _detach(self):
        watch, self._watch = self._watch, None
        return watch

    def _unsubscribe(self, watch):
        if watch is None:
            return
        try:
            watch.unsubscribe()
        except Exception as e:
            logger.warning("Firestore listener unsubscribe failed path=%s: %s", self._path, e)

    def _handle_snapshot(self, generation: int, snapshot):
        with self._lock:
            if self._closed or generation != self._generation:
                logger.debug("Dropping stale snapshot path=%s", self._path)
                return
            try:
                self.data = self._convert(snapshot)
                self.error = None
            except Exception as e:
                logger.error("Firestore listener error path=%s: %s", self._path, e)
                self.error = e
            self.loading = False
            self._notify()

    def _notify(self):
        state = SubscriptionState(self.data, self.loading, self.error, self._closed)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error("Subscription listener failed path=%s: %s", self._path, e)


class CollectionSubscription(_Subscription):
    """Live list of `{id, **fields}` for a collection path plus query options."""
    kind = COLLECTION

    def _empty(self):
        return []

    def _target(self):
        if reference_kind(self._path) != COLLECTION:
            raise InvalidPathError(
                f"Collection path needs an odd number of segments: {self._path!r}"
            )
        return apply_query_options(resolve_reference(self._db, self._path), self._options)

    def _convert(self, snapshot):
        return snapshots_to_list(snapshot)


class DocumentSubscription(_Subscription):
    """Live single document (`{id, **fields}` or None when it does not exist)."""
    kind = DOCUMENT

    def __init__(self, db, path: Optional[str]):
        super().__init__(db, path)

    def _empty(self):
        return None

    def _target(self):
        if reference_kind(self._path) != DOCUMENT:
            raise InvalidPathError(
                f"Document path needs an even number of segments: {self._path!r}"
            )
        return resolve_reference(self._db, self._path)

    def _convert(self, snapshot):
        # Document watches deliver a one-element list of snapshots.
        if isinstance(snapshot, (list, tuple)):
            snapshot = snapshot[0] if snapshot else None
        return snapshot_to_dict(snapshot)

    def update(self, path: Optional[str]) -> bool:
        """Re-point at another document. Documents take no query options."""
        return super().update(path)


def subscribe_collection(db, path: Optional[str], options=None) -> CollectionSubscription:
    return CollectionSubscription(db, path, options).start()


def subscribe_document(db, path: Optional[str]) -> DocumentSubscription:
    return DocumentSubscription(db, path).start()

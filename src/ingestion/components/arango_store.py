"""
ArangoDB adapter for the document store contract.

Merge operations are compiled into a single AQL statement so that every
upsert is one atomic server-side round trip. Store failures are classified
here, once, into ErrorKind values; nothing above this module looks at
ArangoDB error numbers.
"""

from contextlib import contextmanager
from typing import Any, Iterator

import requests
from arango import ArangoClient
from arango.database import StandardDatabase
from arango.exceptions import ArangoClientError, ArangoServerError
from arango.http import DefaultHTTPClient
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_random

from src.utils import logger
from src.utils.exceptions import ErrorKind, StoreConfigurationError, StoreError
from src.ingestion.config import settings
from src.ingestion.components.store import (
    Assign,
    BucketIncrement,
    Increment,
    Max,
    MergeOp,
    SetUnion,
)
from src.ingestion.documents.models import (
    BEACON_COLLECTION,
    FILES_COLLECTION,
    HOTSPOT_COLLECTION,
    WITNESS_EDGE_COLLECTION,
)


# ArangoDB error numbers
ERROR_CONFLICT = 1200
ERROR_DOCUMENT_NOT_FOUND = 1202
ERROR_UNIQUE_CONSTRAINT_VIOLATED = 1210
ERROR_SHUTTING_DOWN = 30
ERROR_CLUSTER_TIMEOUT = 1457
ERROR_CLUSTER_BACKEND_UNAVAILABLE = 1999

CONFLICT_CODES = frozenset({ERROR_CONFLICT, ERROR_UNIQUE_CONSTRAINT_VIOLATED})
TRANSIENT_CODES = frozenset({ERROR_SHUTTING_DOWN, ERROR_CLUSTER_TIMEOUT, ERROR_CLUSTER_BACKEND_UNAVAILABLE})
TRANSIENT_HTTP_CODES = frozenset({408, 429, 500, 502, 503, 504})

EDGE_COLLECTIONS = frozenset({WITNESS_EDGE_COLLECTION})

INDEXES: dict[str, list[dict[str, Any]]] = {
    FILES_COLLECTION: [
        {"type": "persistent", "name": "file_ts", "fields": ["unix_ts"], "sparse": True},
        {"type": "persistent", "name": "file_size", "fields": ["size"], "sparse": True},
    ],
    BEACON_COLLECTION: [
        {"type": "persistent", "name": "beacon_pub_key", "fields": ["pub_key"]},
        {"type": "persistent", "name": "beacon_ingest_time", "fields": ["ingest_time_unix"], "sparse": True},
        {"type": "geo", "name": "beacon_geo_index", "fields": ["geo"], "geoJson": True},
    ],
    WITNESS_EDGE_COLLECTION: [
        {"type": "persistent", "name": "witness_count", "fields": ["count"]},
        {"type": "persistent", "name": "beacon_witness_distance", "fields": ["distance"]},
    ],
    HOTSPOT_COLLECTION: [
        {"type": "geo", "name": "hotspot_geo_index", "fields": ["geo"], "geoJson": True},
        {"type": "geo", "name": "hotspot_parent_geo_index", "fields": ["parent_geo"], "geoJson": True},
    ],
}

UPSERT_QUERY = """
UPSERT { _key: @key }
INSERT @doc
UPDATE %s
IN @@collection
"""

UPDATE_QUERY = """
FOR doc IN @@collection
  FILTER doc._key == @key
  UPDATE doc WITH %s IN @@collection
  RETURN NEW
"""

KEYS_WHERE_QUERY = """
FOR doc IN @@collection
  FILTER doc.@field == @value
  RETURN doc._key
"""


def classify_error(error: Exception) -> ErrorKind:
    """Map a python-arango / transport exception onto an ErrorKind."""
    if isinstance(error, ArangoServerError):
        if error.error_code in CONFLICT_CODES:
            return ErrorKind.CONFLICT
        if error.error_code in TRANSIENT_CODES or error.http_code in TRANSIENT_HTTP_CODES:
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def compile_merge(ops: list[MergeOp], ref: str) -> tuple[str, dict[str, Any]]:
    """
    Compile merge operations into an AQL object expression.

    Args:
        ops: Merge operations, applied field by field
        ref: AQL variable holding the existing document ("OLD" inside UPSERT)

    Returns:
        Tuple of (AQL object literal, bind variables)
    """
    parts: list[str] = []
    bind_vars: dict[str, Any] = {}

    for i, op in enumerate(ops):
        param = f"m{i}"
        field = f"`{op.field}`"
        old = f"{ref}.{field}"

        if isinstance(op, Assign):
            expr = f"@{param}"
            bind_vars[param] = op.value
        elif isinstance(op, Increment):
            expr = f"NOT_NULL({old}, 0) + @{param}"
            bind_vars[param] = op.by
        elif isinstance(op, BucketIncrement):
            expr = f"MERGE(NOT_NULL({old}, {{}}), {{ [@{param}]: NOT_NULL({old}[@{param}], 0) + 1 }})"
            bind_vars[param] = op.bucket
        elif isinstance(op, SetUnion):
            expr = f"UNION_DISTINCT(NOT_NULL({old}, []), @{param})"
            bind_vars[param] = list(op.values)
        elif isinstance(op, Max):
            expr = f"MAX([{old}, @{param}])"
            bind_vars[param] = op.value
        else:
            raise TypeError(f"Unsupported merge operation: {op!r}")

        parts.append(f"{field}: {expr}")

    return "{ " + ", ".join(parts) + " }", bind_vars


def _is_conflict(error: BaseException) -> bool:
    return isinstance(error, StoreError) and error.is_conflict


class ArangoStore:
    """
    DocumentStore backed by ArangoDB.

    Handles:
    - Connecting with basic auth or JWT
    - Bootstrapping the database, collections and indexes
    - Compiling merge policies into single AQL upserts
    - Re-running upserts that lose a write-write race
    """

    def __init__(
        self,
        endpoint: str | None = None,
        username: str | None = None,
        password: str | None = None,
        database: str | None = None,
        auth_method: str | None = None,
        pool_size: int | None = None,
        conflict_retries: int | None = None,
        db: StandardDatabase | None = None,
    ):
        """
        Initialize the ArangoDB store.

        Args:
            endpoint: ArangoDB HTTP endpoint
            username: Database user
            password: Database password
            database: Database name
            auth_method: "basic" or "jwt"
            pool_size: HTTP connection pool size
            conflict_retries: Attempts for an upsert that hits a conflict
            db: Pre-built database handle (skips connecting)
        """
        self.endpoint = endpoint or settings.store.endpoint
        self.username = username or settings.store.username
        self.password = password or settings.store.password
        self.database = database or settings.store.database
        self.auth_method = auth_method or settings.store.auth_method
        self.pool_size = pool_size or settings.store.pool_size
        self.conflict_retries = conflict_retries or settings.store.conflict_retries

        self._client: ArangoClient | None = None
        self._db = db if db is not None else self._connect()

        logger.info(f"ArangoStore initialized for database: {self.database}")

    def _connect(self) -> StandardDatabase:
        """Create the client and database handle."""
        try:
            self._client = ArangoClient(
                hosts=self.endpoint,
                http_client=DefaultHTTPClient(
                    pool_connections=self.pool_size,
                    pool_maxsize=self.pool_size,
                ),
            )
            return self._client.db(
                self.database,
                username=self.username,
                password=self.password,
                auth_method=self.auth_method,
            )
        except (ArangoServerError, ArangoClientError, requests.RequestException) as e:
            raise StoreConfigurationError(f"Failed to connect to ArangoDB at {self.endpoint}: {e}")

    @contextmanager
    def _store_errors(self, collection: str) -> Iterator[None]:
        """Translate driver exceptions into classified StoreErrors."""
        try:
            yield
        except StoreError:
            raise
        except (ArangoServerError, ArangoClientError, requests.RequestException) as e:
            kind = classify_error(e)
            code = getattr(e, "error_code", None)
            raise StoreError(
                f"{collection}: {e}",
                kind=kind,
                collection=collection,
                code=code,
            ) from e

    def _execute(self, collection: str, query: str, bind_vars: dict[str, Any]) -> list[Any]:
        with self._store_errors(collection):
            cursor = self._db.aql.execute(query, bind_vars={**bind_vars, "@collection": collection})
            return list(cursor)

    def ensure_schema(self) -> None:
        """Create the database, collections and indexes when missing."""
        if self._client is not None:
            with self._store_errors("_system"):
                sys_db = self._client.db(
                    "_system",
                    username=self.username,
                    password=self.password,
                    auth_method=self.auth_method,
                )
                if not sys_db.has_database(self.database):
                    logger.info(f"Creating database: {self.database}")
                    sys_db.create_database(self.database)

        for name, indexes in INDEXES.items():
            with self._store_errors(name):
                if not self._db.has_collection(name):
                    logger.info(f"Creating collection: {name}")
                    self._db.create_collection(name, edge=name in EDGE_COLLECTIONS)
                collection = self._db.collection(name)
                for index in indexes:
                    collection.add_index(index)
            logger.debug(f"Ensured {len(indexes)} indexes on {name}")

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._store_errors(collection):
            return self._db.collection(collection).get(key)

    def insert(self, collection: str, doc: dict[str, Any]) -> None:
        with self._store_errors(collection):
            self._db.collection(collection).insert(doc, silent=True)

    def upsert_merge(
        self,
        collection: str,
        key: str,
        insert_doc: dict[str, Any],
        ops: list[MergeOp],
    ) -> None:
        update_expr, bind_vars = compile_merge(ops, ref="OLD")
        query = UPSERT_QUERY % update_expr
        bind_vars.update({"key": key, "doc": {**insert_doc, "_key": key}})

        # Two concurrent UPSERTs on a new key can both take the INSERT branch;
        # the loser sees a conflict and succeeds on the UPDATE branch next time.
        for attempt in Retrying(
            retry=retry_if_exception(_is_conflict),
            stop=stop_after_attempt(self.conflict_retries),
            wait=wait_random(min=0.01, max=0.2),
            before_sleep=lambda state: logger.debug(
                f"Upsert conflict on {collection}/{key}, attempt {state.attempt_number}"
            ),
            reraise=True,
        ):
            with attempt:
                self._execute(collection, query, bind_vars)

    def update(self, collection: str, key: str, ops: list[MergeOp]) -> dict[str, Any]:
        update_expr, bind_vars = compile_merge(ops, ref="doc")
        rows = self._execute(collection, UPDATE_QUERY % update_expr, {**bind_vars, "key": key})
        if not rows:
            raise StoreError(
                f"document not found: {collection}/{key}",
                kind=ErrorKind.FATAL,
                collection=collection,
                code=ERROR_DOCUMENT_NOT_FOUND,
            )
        return rows[0]

    def keys_where(self, collection: str, field: str, value: Any) -> set[str]:
        rows = self._execute(collection, KEYS_WHERE_QUERY, {"field": field, "value": value})
        return set(rows)


def create_arango_store() -> ArangoStore:
    """Create a new ArangoDB store with default settings."""
    return ArangoStore()


__all__ = [
    "ArangoStore",
    "create_arango_store",
    "classify_error",
    "compile_merge",
]

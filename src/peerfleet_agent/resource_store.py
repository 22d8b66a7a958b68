"""Cluster resource store.

`ResourceStore` is the narrow contract the reconciler consumes: get, list
by labels, create, update, delete, and create-or-update driven by a mutate
function. `SqliteResourceStore` is the reference implementation. It keeps
objects as normalized JSON rows and plays the cluster's part:
- Assigns uid, resourceVersion and creationTimestamp
- Rejects stale updates (resourceVersion mismatch)
- Allocates a cluster IP for every new service
- Cascades deletion to objects owned by a removed fleet
"""

import copy
import ipaddress
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ConflictError, NotFound, StoreError
from .json_utils import json_dumps
from .resources import OperationResult, ResourceKind, new_object

logger = logging.getLogger(__name__)

Mutator = Callable[[Dict[str, Any]], None]


class ResourceStore:
    """Base class for resource stores.

    Implementations provide get/list/create/update/delete and raise
    NotFound for absent objects and StoreError for everything else.
    """

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        raise NotImplementedError

    def list(self, kind: ResourceKind, namespace: str, labels: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def create(self, kind: ResourceKind, obj: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, kind: ResourceKind, obj: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        raise NotImplementedError

    def delete_owned(self, owner_uid: str) -> int:
        """Delete every object controlled by `owner_uid`. Returns the count."""
        raise NotImplementedError

    def create_or_update(
        self, kind: ResourceKind, namespace: str, name: str, mutate: Mutator
    ) -> Tuple[Dict[str, Any], OperationResult]:
        """Create the object or bring it in line with `mutate`.

        `mutate` receives the live object (or a fresh skeleton when absent)
        and edits it in place. Nothing is written when the mutated object
        equals the live one.
        """
        try:
            current = self.get(kind, namespace, name)
        except NotFound:
            obj = new_object(kind, namespace, name)
            mutate(obj)
            self._check_key(kind, obj, namespace, name)
            return self.create(kind, obj), OperationResult.CREATED

        desired = copy.deepcopy(current)
        mutate(desired)
        self._check_key(kind, desired, namespace, name)
        if desired == current:
            return current, OperationResult.UNCHANGED
        return self.update(kind, desired), OperationResult.UPDATED

    @staticmethod
    def _check_key(kind: ResourceKind, obj: Dict[str, Any], namespace: str, name: str) -> None:
        meta = obj.get("metadata", {})
        if meta.get("name") != name or meta.get("namespace") != namespace:
            raise StoreError("mutate function changed the object key", kind=ResourceKind(kind).value, name=name)


def _matches(obj_labels: Dict[str, str], selector: Optional[Dict[str, str]]) -> bool:
    if not selector:
        return True
    return all(obj_labels.get(k) == v for k, v in selector.items())


class SqliteResourceStore(ResourceStore):
    """Resource store persisted in SQLite.

    Use ":memory:" for a throwaway store. Every write (create, update,
    delete) is counted in `writes`.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS resources (
            kind TEXT NOT NULL,
            namespace TEXT NOT NULL,
            name TEXT NOT NULL,
            uid TEXT NOT NULL,
            owner_uid TEXT,
            resource_version INTEGER NOT NULL,
            body TEXT NOT NULL,
            PRIMARY KEY (kind, namespace, name)
        );

        CREATE TABLE IF NOT EXISTS cluster_ips (
            address TEXT PRIMARY KEY,
            namespace TEXT NOT NULL,
            name TEXT NOT NULL
        );
    """

    SERVICE_NETWORK = ipaddress.ip_network("10.96.0.0/16")

    def __init__(self, db_path: str = ":memory:", timeout: float = 5.0):
        """Open (and create if needed) the store.

        Args:
            db_path: SQLite file path, or ":memory:"
            timeout: seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.timeout = timeout
        self.writes = 0
        self._lock = threading.RLock()
        logger.info(f"Opening resource store at {db_path}")
        try:
            self.db = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
            self.db.row_factory = sqlite3.Row
            self.db.executescript(self.SCHEMA)
            self.db.commit()
        except sqlite3.Error as e:
            raise StoreError(f"unable to open resource store {db_path}: {e}")

    def close(self) -> None:
        self.db.close()

    def _execute(self, sql: str, params=()) -> sqlite3.Cursor:
        try:
            return self.db.execute(sql, params)
        except sqlite3.Error as e:
            # includes "database is locked" once the busy timeout expires
            raise StoreError(f"resource store error: {e}")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except sqlite3.Error as e:
            raise StoreError(f"resource store commit failed: {e}")

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        kind = ResourceKind(kind)
        with self._lock:
            row = self._execute(
                "SELECT body FROM resources WHERE kind=? AND namespace=? AND name=?",
                (kind.value, namespace, name),
            ).fetchone()
        if row is None:
            raise NotFound(kind.value, namespace, name)
        return _load(row["body"])

    def list(self, kind: ResourceKind, namespace: str, labels: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        kind = ResourceKind(kind)
        with self._lock:
            rows = self._execute(
                "SELECT body FROM resources WHERE kind=? AND namespace=? ORDER BY name",
                (kind.value, namespace),
            ).fetchall()
        objects = [_load(row["body"]) for row in rows]
        return [o for o in objects if _matches(o["metadata"].get("labels", {}), labels)]

    def create(self, kind: ResourceKind, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = ResourceKind(kind)
        obj = copy.deepcopy(obj)
        meta = obj["metadata"]
        namespace, name = meta["namespace"], meta["name"]

        with self._lock:
            exists = self._execute(
                "SELECT 1 FROM resources WHERE kind=? AND namespace=? AND name=?",
                (kind.value, namespace, name),
            ).fetchone()
            if exists:
                raise ConflictError(f"{kind.value} {namespace}/{name} already exists", kind=kind.value, name=name)

            meta["uid"] = str(uuid.uuid4())
            meta["resourceVersion"] = "1"
            meta["creationTimestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            if kind == ResourceKind.ENDPOINT:
                spec = obj.setdefault("spec", {})
                if not spec.get("clusterIP"):
                    spec["clusterIP"] = self._allocate_ip(namespace, name)

            self._execute(
                "INSERT INTO resources (kind, namespace, name, uid, owner_uid, resource_version, body) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (kind.value, namespace, name, meta["uid"], _owner_uid(obj), 1, json_dumps(obj, normalize=True)),
            )
            self._commit()
            self.writes += 1

        logger.debug(f"Created {kind.value} {namespace}/{name}")
        return obj

    def update(self, kind: ResourceKind, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = ResourceKind(kind)
        obj = copy.deepcopy(obj)
        meta = obj["metadata"]
        namespace, name = meta["namespace"], meta["name"]

        with self._lock:
            row = self._execute(
                "SELECT resource_version, body FROM resources WHERE kind=? AND namespace=? AND name=?",
                (kind.value, namespace, name),
            ).fetchone()
            if row is None:
                raise NotFound(kind.value, namespace, name)
            if str(row["resource_version"]) != str(meta.get("resourceVersion")):
                raise ConflictError(
                    f"{kind.value} {namespace}/{name} was modified (resourceVersion "
                    f"{meta.get('resourceVersion')} != {row['resource_version']})",
                    kind=kind.value,
                    name=name,
                )

            live = _load(row["body"])
            # server-managed fields cannot be changed by clients
            for field in ("uid", "creationTimestamp"):
                meta[field] = live["metadata"][field]
            if kind == ResourceKind.ENDPOINT:
                obj.setdefault("spec", {})["clusterIP"] = live["spec"]["clusterIP"]

            version = row["resource_version"] + 1
            meta["resourceVersion"] = str(version)
            self._execute(
                "UPDATE resources SET resource_version=?, owner_uid=?, body=? "
                "WHERE kind=? AND namespace=? AND name=?",
                (version, _owner_uid(obj), json_dumps(obj, normalize=True), kind.value, namespace, name),
            )
            self._commit()
            self.writes += 1

        logger.debug(f"Updated {kind.value} {namespace}/{name} (resourceVersion {version})")
        return obj

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        kind = ResourceKind(kind)
        with self._lock:
            cursor = self._execute(
                "DELETE FROM resources WHERE kind=? AND namespace=? AND name=?",
                (kind.value, namespace, name),
            )
            if cursor.rowcount == 0:
                raise NotFound(kind.value, namespace, name)
            if kind == ResourceKind.ENDPOINT:
                self._execute("DELETE FROM cluster_ips WHERE namespace=? AND name=?", (namespace, name))
            self._commit()
            self.writes += 1
        logger.debug(f"Deleted {kind.value} {namespace}/{name}")

    def delete_owned(self, owner_uid: str) -> int:
        with self._lock:
            rows = self._execute(
                "SELECT kind, namespace, name FROM resources WHERE owner_uid=? ORDER BY kind, name",
                (owner_uid,),
            ).fetchall()
            for row in rows:
                self.delete(ResourceKind(row["kind"]), row["namespace"], row["name"])
        if rows:
            logger.info(f"Cascade deleted {len(rows)} object(s) owned by {owner_uid}")
        return len(rows)

    def count(self) -> int:
        with self._lock:
            return self._execute("SELECT COUNT(*) FROM resources").fetchone()[0]

    def _allocate_ip(self, namespace: str, name: str) -> str:
        used = {row["address"] for row in self._execute("SELECT address FROM cluster_ips").fetchall()}
        # skip network, gateway (.1) and the cluster DNS address (.10)
        for offset, address in enumerate(self.SERVICE_NETWORK.hosts(), start=1):
            if offset in (1, 10) or str(address) in used:
                continue
            self._execute(
                "INSERT INTO cluster_ips (address, namespace, name) VALUES (?, ?, ?)",
                (str(address), namespace, name),
            )
            return str(address)
        raise StoreError(f"service network {self.SERVICE_NETWORK} exhausted", kind=ResourceKind.ENDPOINT.value, name=name)


def _load(body: str) -> Dict[str, Any]:
    return json.loads(body)


def _owner_uid(obj: Dict[str, Any]) -> Optional[str]:
    for ref in obj.get("metadata", {}).get("ownerReferences", []):
        if ref.get("controller"):
            return ref.get("uid")
    return None

from datetime import timezone
from pathlib import Path
from typing import Optional, List, Dict, Any
import json
import os
import sqlite3
import threading
import uuid
import logging

from git import Actor, Repo, InvalidGitRepositoryError
from git.exc import GitError

from .errors import StoreError
from .json_utils import atomic_write_json, json_dumps
from .models import FleetIdentity, FleetSpec

logger = logging.getLogger(__name__)

AGENT_ACTOR = Actor("peerfleet-agent", "agent@peerfleet.local")


class FleetStore:
    """Manage fleet specifications and fleet status.

    Uses:
    - Git repo: one JSON export per fleet under exports/fleets/<ns>/<name>.json
    - SQLite: fleet index (derived from exports) and fleet status

    Key invariant: exports/ are the single source of truth for fleet specs.
    The `fleets` table is derived and rebuilt from exports on startup.
    Status is not versioned; it lives only in SQLite.
    """

    EXPORTS_DIR = "exports"
    FLEETS_DIR = "fleets"

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS fleets (
            namespace TEXT NOT NULL,
            name TEXT NOT NULL,
            uid TEXT NOT NULL,
            spec TEXT NOT NULL,
            PRIMARY KEY (namespace, name)
        );

        CREATE TABLE IF NOT EXISTS fleet_status (
            namespace TEXT NOT NULL,
            name TEXT NOT NULL,
            nodes_count INTEGER,
            revision TEXT,
            last_result TEXT,
            last_error TEXT,
            reconciled_at TEXT,
            PRIMARY KEY (namespace, name)
        );
    """

    STATUS_FIELDS = ("nodes_count", "revision", "last_result", "last_error", "reconciled_at")

    def __init__(self, path: Optional[str] = None, db_path: Optional[str] = None, timeout: float = 5.0):
        """Initialize FleetStore with a git repo and SQLite index.

        Args:
            path: Path to repo root (default: ./state)
            db_path: Path to SQLite file (default: {path}/.peerfleet.db)
            timeout: seconds to wait on a locked database
        """
        self.path = Path(path or "state").resolve()
        self.db_path = Path(db_path or str(self.path / ".peerfleet.db"))
        self.timeout = timeout
        self._lock = threading.RLock()

        logger.info(f"Initializing FleetStore at {self.path}")

        self.repo: Optional[Repo] = None
        self.db: Optional[sqlite3.Connection] = None

        self._init_repo()
        self._init_db()
        logger.info("FleetStore initialization complete")

    def _init_repo(self) -> None:
        """Initialize the git repo if missing."""
        self.path.mkdir(parents=True, exist_ok=True)
        try:
            self.repo = Repo(self.path)
            logger.debug(f"Found existing repo at {self.path}")
        except InvalidGitRepositoryError:
            self.repo = Repo.init(self.path)
            (self.path / ".gitignore").write_text("*.db\n*.tmp\n")
            self.repo.index.add([".gitignore"])
            self.repo.index.commit("Initialize fleet repo", author=AGENT_ACTOR, committer=AGENT_ACTOR)
            logger.info(f"Initialized fleet repo at {self.path}")

    def _init_db(self) -> None:
        """Open SQLite and rebuild the fleet index from exports."""
        try:
            self.db = sqlite3.connect(str(self.db_path), timeout=self.timeout, check_same_thread=False)
            self.db.row_factory = sqlite3.Row
            self.db.executescript(self.SCHEMA)
            self._import_exports()
        except sqlite3.Error as e:
            raise StoreError(f"unable to open fleet index {self.db_path}: {e}")

    def _import_exports(self) -> None:
        """Reload the fleets table from the exports in the work tree."""
        self.db.execute("DELETE FROM fleets")
        fleets_dir = self.path / self.EXPORTS_DIR / self.FLEETS_DIR
        count = 0
        for export_path in sorted(fleets_dir.glob("*/*.json")):
            with open(export_path) as f:
                data = json.load(f)
            self.db.execute(
                "INSERT INTO fleets (namespace, name, uid, spec) VALUES (?, ?, ?, ?)",
                (data["namespace"], data["name"], data["uid"], json_dumps(data, normalize=True)),
            )
            count += 1
        self.db.commit()
        logger.debug(f"Imported {count} fleet export(s)")

    def _export_rel_path(self, identity: FleetIdentity) -> str:
        return os.path.join(self.EXPORTS_DIR, self.FLEETS_DIR, identity.namespace, f"{identity.name}.json")

    def get_fleet(self, identity: FleetIdentity) -> Optional[FleetSpec]:
        """Get a fleet spec, or None when it does not exist."""
        with self._lock:
            row = self.db.execute(
                "SELECT spec FROM fleets WHERE namespace=? AND name=?",
                (identity.namespace, identity.name),
            ).fetchone()
        if row is None:
            return None
        return FleetSpec.from_dict(json.loads(row["spec"]))

    def list_fleets(self) -> List[FleetIdentity]:
        with self._lock:
            rows = self.db.execute("SELECT namespace, name FROM fleets ORDER BY namespace, name").fetchall()
        return [FleetIdentity(row["namespace"], row["name"]) for row in rows]

    def put_fleet(self, fleet: FleetSpec, message: Optional[str] = None) -> str:
        """Write a fleet spec export and commit it.

        The fleet keeps the uid it was first stored with; a new fleet always
        gets a fresh one, whatever uid the caller set. Writing an identical
        spec makes no commit.

        Returns: short commit SHA (revision)
        """
        identity = fleet.identity
        with self._lock:
            existing = self.get_fleet(identity)
            # the uid names the owner of every cluster object; callers never pick it
            fleet.uid = existing.uid if existing is not None else str(uuid.uuid4())

            rel_path = self._export_rel_path(identity)
            data = fleet.to_dict()
            atomic_write_json(self.path / rel_path, data)

            try:
                self.repo.index.add([rel_path])
                if self.repo.index.diff("HEAD"):
                    verb = "Update" if existing is not None else "Create"
                    self.repo.index.commit(
                        message or f"{verb} fleet {identity}", author=AGENT_ACTOR, committer=AGENT_ACTOR
                    )
                    logger.info(f"{verb}d fleet {identity}")
                else:
                    logger.debug(f"Fleet {identity} unchanged, nothing to commit")
            except GitError as e:
                raise StoreError(f"unable to commit fleet {identity}: {e}")

            self.db.execute(
                "INSERT OR REPLACE INTO fleets (namespace, name, uid, spec) VALUES (?, ?, ?, ?)",
                (identity.namespace, identity.name, fleet.uid, json_dumps(data, normalize=True)),
            )
            self.db.commit()
            return self.revision(identity)

    def delete_fleet(self, identity: FleetIdentity) -> Optional[FleetSpec]:
        """Remove a fleet spec and its status.

        Returns: the removed fleet, or None if it did not exist
        """
        with self._lock:
            fleet = self.get_fleet(identity)
            if fleet is None:
                return None
            rel_path = self._export_rel_path(identity)
            try:
                self.repo.index.remove([rel_path], working_tree=True)
                self.repo.index.commit(f"Delete fleet {identity}", author=AGENT_ACTOR, committer=AGENT_ACTOR)
            except GitError as e:
                raise StoreError(f"unable to delete fleet {identity}: {e}")
            self.db.execute("DELETE FROM fleets WHERE namespace=? AND name=?", (identity.namespace, identity.name))
            self.db.execute(
                "DELETE FROM fleet_status WHERE namespace=? AND name=?", (identity.namespace, identity.name)
            )
            self.db.commit()
        logger.info(f"Deleted fleet {identity}")
        return fleet

    def revision(self, identity: FleetIdentity) -> Optional[str]:
        """Short SHA of the last commit that touched the fleet's export."""
        with self._lock:
            try:
                commits = list(self.repo.iter_commits(paths=self._export_rel_path(identity), max_count=1))
            except GitError as e:
                raise StoreError(f"unable to read revision of fleet {identity}: {e}")
        return commits[0].hexsha[:10] if commits else None

    def history(self, identity: FleetIdentity, limit: int = 20) -> List[Dict[str, Any]]:
        """Commits that touched the fleet's export, newest first."""
        with self._lock:
            try:
                commits = list(self.repo.iter_commits(paths=self._export_rel_path(identity), max_count=limit))
            except GitError as e:
                raise StoreError(f"unable to read history of fleet {identity}: {e}")
        return [
            {
                "revision": commit.hexsha[:10],
                "message": commit.message.strip(),
                "author": commit.author.name,
                "committed_at": commit.committed_datetime.astimezone(timezone.utc).isoformat(),
            }
            for commit in commits
        ]

    def get_status(self, identity: FleetIdentity) -> Dict[str, Any]:
        with self._lock:
            row = self.db.execute(
                f"SELECT {', '.join(self.STATUS_FIELDS)} FROM fleet_status WHERE namespace=? AND name=?",
                (identity.namespace, identity.name),
            ).fetchone()
        if row is None:
            return {field: None for field in self.STATUS_FIELDS}
        return dict(row)

    def update_status(self, identity: FleetIdentity, **fields) -> bool:
        """Merge `fields` into the fleet status.

        Returns: True if the status changed (and was written)
        """
        unknown = set(fields) - set(self.STATUS_FIELDS)
        if unknown:
            raise ValueError(f"unknown status field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            current = self.get_status(identity)
            status = dict(current, **fields)
            if status == current:
                return False
            try:
                self.db.execute(
                    f"INSERT OR REPLACE INTO fleet_status (namespace, name, {', '.join(self.STATUS_FIELDS)}) "
                    f"VALUES (?, ?, {', '.join(['?'] * len(self.STATUS_FIELDS))})",
                    (identity.namespace, identity.name, *[status[f] for f in self.STATUS_FIELDS]),
                )
                self.db.commit()
            except sqlite3.Error as e:
                raise StoreError(f"unable to update status of fleet {identity}: {e}")
        logger.debug(f"Status of fleet {identity} updated: {fields}")
        return True

    def close(self) -> None:
        self.db.close()

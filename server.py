import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict

# Ensure `src/` is on sys.path so we can import our package during development
sys.path.insert(0, str(Path(__file__).resolve().parent.joinpath("src")))

from fastapi import Body, FastAPI, HTTPException
from datetime import datetime, timezone

from peerfleet_agent.config import Settings
from peerfleet_agent.errors import PeerfleetError
from peerfleet_agent.executor import Executor, ReconcileResult
from peerfleet_agent.fleet_store import FleetStore
from peerfleet_agent.models import FleetIdentity, FleetSpec
from peerfleet_agent.naming import fleet_labels
from peerfleet_agent.planner import NodeResourcePlanner
from peerfleet_agent.reconciler import FleetReconciler
from peerfleet_agent.resource_store import SqliteResourceStore
from peerfleet_agent.resources import ResourceKind


# Configure logging
def setup_logging(log_dir: Path = Path("logs"), level: str = "DEBUG"):
    """Configure colored console and file logging."""

    # Create logs directory if it doesn't exist
    log_dir.mkdir(parents=True, exist_ok=True)

    # Get root logger
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_formatter = _ColoredFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler (rotating to prevent huge logs)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "peerfleet-agent.log",
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5
    )
    file_handler.setLevel(level)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    return logger


class _ColoredFormatter(logging.Formatter):
    """Custom formatter with ANSI color codes."""

    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        # color a copy so the file handler gets the plain level name
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


# Setup logging before creating the app
settings = Settings.from_env()
logger = setup_logging(settings.log_dir, settings.log_level)
logger.info("Peerfleet Agent server starting...")

app = FastAPI(title="Peerfleet Agent API", version="0.1.0")


@app.on_event("startup")
def _init_stores():
    """Open the fleet and resource stores and attach the executor to app.state."""
    try:
        current = Settings.from_env()
        logger.info(f"Initializing stores under {current.root_path}")
        fleet_store = FleetStore(path=str(current.state_path), timeout=current.store_timeout)
        current.resources_db.parent.mkdir(parents=True, exist_ok=True)
        resource_store = SqliteResourceStore(str(current.resources_db), timeout=current.store_timeout)
        reconciler = FleetReconciler(fleet_store, resource_store, NodeResourcePlanner(current.images))

        app.state.settings = current
        app.state.fleet_store = fleet_store
        app.state.resource_store = resource_store
        app.state.executor = Executor(fleet_store, reconciler)
        logger.info("Stores initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize stores: {e}", exc_info=True)
        raise


def _redacted(fleet: FleetSpec) -> Dict[str, Any]:
    """Fleet export with key material masked."""
    data = fleet.to_dict()
    for node in data["nodes"]:
        if node.get("nodekey"):
            node["nodekey"] = "***"
        if node.get("import_account"):
            node["import_account"] = {"private_key": "***", "password": "***"}
    return data


def _require_fleet(identity: FleetIdentity) -> FleetSpec:
    fleet = app.state.fleet_store.get_fleet(identity)
    if fleet is None:
        logger.warning(f"Fleet not found: {identity}")
        raise HTTPException(status_code=404, detail=f"Fleet not found: {identity}")
    return fleet


@app.get("/health")
async def health():
    logger.debug("Health check requested")
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Fleet Endpoints

@app.get("/api/fleets")
@app.get("/api/fleets/")
def list_fleets():
    """List all fleets with their last reconciliation status."""
    try:
        fleet_store = app.state.fleet_store
        identities = fleet_store.list_fleets()
        logger.info(f"Found {len(identities)} fleets")
        return {
            "ok": True,
            "fleets": [
                {
                    "namespace": identity.namespace,
                    "name": identity.name,
                    "status": fleet_store.get_status(identity),
                }
                for identity in identities
            ]
        }
    except PeerfleetError as e:
        logger.error(f"Failed to list fleets: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/fleets/{namespace}/{name}")
def get_fleet(namespace: str, name: str):
    identity = FleetIdentity(namespace, name)
    fleet = _require_fleet(identity)
    return {
        "ok": True,
        "fleet": _redacted(fleet),
        "status": app.state.fleet_store.get_status(identity),
    }


@app.put("/api/fleets/{namespace}/{name}")
def put_fleet(namespace: str, name: str, body: Dict[str, Any] = Body(...)):
    """Store a fleet spec (one git commit) and reconcile it.

    The body's name and namespace, when present, must match the path. A uid
    in the body is ignored; the fleet store owns it.
    """
    identity = FleetIdentity(namespace, name)
    body.pop("uid", None)
    for key, value in (("namespace", namespace), ("name", name)):
        if body.setdefault(key, value) != value:
            raise HTTPException(status_code=422, detail=f"{key} {body[key]!r} does not match the path")
    try:
        fleet = FleetSpec.from_dict(body)
    except ValueError as e:
        logger.warning(f"Rejected spec for fleet {identity}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    try:
        revision = app.state.fleet_store.put_fleet(fleet)
    except PeerfleetError as e:
        logger.error(f"Failed to store fleet {identity}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    response = app.state.executor.reconcile(identity)
    return {
        "ok": response.result != ReconcileResult.FAILED,
        "revision": revision,
        "uid": fleet.uid,
        "reconcile": response.to_dict(),
    }


@app.delete("/api/fleets/{namespace}/{name}")
def delete_fleet(namespace: str, name: str):
    """Remove a fleet spec and every resource the fleet owns."""
    identity = FleetIdentity(namespace, name)
    try:
        fleet = app.state.fleet_store.delete_fleet(identity)
        if fleet is None:
            raise HTTPException(status_code=404, detail=f"Fleet not found: {identity}")
        deleted = app.state.resource_store.delete_owned(fleet.uid)
    except PeerfleetError as e:
        logger.error(f"Failed to delete fleet {identity}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    logger.info(f"Fleet {identity} deleted with {deleted} owned resources")
    return {"ok": True, "deleted": deleted}


@app.post("/api/fleets/{namespace}/{name}/reconcile")
def reconcile_fleet(namespace: str, name: str):
    identity = FleetIdentity(namespace, name)
    _require_fleet(identity)
    response = app.state.executor.reconcile(identity)
    return {"ok": response.result != ReconcileResult.FAILED, **response.to_dict()}


@app.get("/api/fleets/{namespace}/{name}/resources")
def get_fleet_resources(namespace: str, name: str):
    """Live objects labelled with the fleet, per kind."""
    identity = FleetIdentity(namespace, name)
    _require_fleet(identity)
    try:
        resources = {
            kind.value: [
                {
                    "name": obj["metadata"]["name"],
                    "uid": obj["metadata"]["uid"],
                    "resourceVersion": obj["metadata"]["resourceVersion"],
                }
                for obj in app.state.resource_store.list(kind, namespace, fleet_labels(name))
            ]
            for kind in ResourceKind
        }
    except PeerfleetError as e:
        logger.error(f"Failed to list resources of fleet {identity}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True, "resources": resources}


@app.get("/api/fleets/{namespace}/{name}/history")
def get_fleet_history(namespace: str, name: str, limit: int = 20):
    identity = FleetIdentity(namespace, name)
    _require_fleet(identity)
    try:
        history = app.state.fleet_store.history(identity, limit=limit)
    except PeerfleetError as e:
        logger.error(f"Failed to read history of fleet {identity}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True, "history": history}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting Peerfleet Agent server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)

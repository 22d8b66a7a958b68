import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .clients import DEFAULT_IMAGES
from .models import SoftwareFamily


@dataclass
class Settings:
    """Agent settings, read from PEERFLEET_* environment variables."""
    root_path: Path = Path(".")
    store_timeout: float = 5.0
    log_dir: Path = Path("logs")
    log_level: str = "DEBUG"
    host: str = "0.0.0.0"
    port: int = 2380
    images: Dict[SoftwareFamily, str] = field(default_factory=lambda: dict(DEFAULT_IMAGES))

    @property
    def state_path(self) -> Path:
        """Git repo holding fleet spec exports."""
        return self.root_path / "data" / "fleets"

    @property
    def resources_db(self) -> Path:
        return self.root_path / "data" / "resources.db"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        images = dict(DEFAULT_IMAGES)
        for family in SoftwareFamily:
            override = env.get(f"PEERFLEET_{family.name}_IMAGE")
            if override:
                images[family] = override
        try:
            return cls(
                root_path=Path(env.get("PEERFLEET_ROOT_PATH", ".")),
                store_timeout=float(env.get("PEERFLEET_STORE_TIMEOUT", "5")),
                log_dir=Path(env.get("PEERFLEET_LOG_DIR", "logs")),
                log_level=env.get("PEERFLEET_LOG_LEVEL", "DEBUG").upper(),
                host=env.get("PEERFLEET_HOST", "0.0.0.0"),
                port=int(env.get("PEERFLEET_PORT", "2380")),
                images=images,
            )
        except ValueError as e:
            raise ValueError(f"invalid PEERFLEET_* setting: {e}")

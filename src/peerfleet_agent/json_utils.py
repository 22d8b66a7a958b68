import base64
import json
from pathlib import Path


def json_dumps(obj, normalize: bool = False) -> str:
    """Return a JSON string.

    Rendered documents (genesis files, spec exports) keep their key order.
    Set `normalize=True` for stored objects, so that two equal objects
    always serialize to the same text.
    """
    if normalize:
        return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return json.dumps(obj, indent=2, separators=(",", ": "), ensure_ascii=False)


def atomic_write_json(path: Path, obj) -> None:
    """Write JSON atomically to avoid partial files.

    Writes to a temp file then renames into place.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(json_dumps(obj))
        f.write("\n")
    tmp.replace(path)


def b64encode_text(value: str) -> str:
    """Encode a text secret entry the way the cluster stores it."""
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def b64decode_text(value: str) -> str:
    return base64.b64decode(value.encode("ascii")).decode("utf-8")

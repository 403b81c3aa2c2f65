"""Artifact storage for export runs.

Provides a consistent interface for the files an export run produces and a
migration run consumes:

- one JSONL file per canonical entity (UTF-8, one record per line)
- ``manifest.json`` written last, marking a completed export
- ``migration-map-<connector>.json`` persisted after every migrated ticket
"""

import hashlib
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from core.models.canonical import ExportManifest, MigrationEntry
from core.models.refs import DataReference
from core.observability.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Entity key -> file name inside an export directory
ENTITY_FILES: Dict[str, str] = {
    "tickets": "tickets.jsonl",
    "messages": "messages.jsonl",
    "customers": "customers.jsonl",
    "organizations": "organizations.jsonl",
    "kb_articles": "kb_articles.jsonl",
    "rules": "rules.jsonl",
}

MANIFEST_FILE = "manifest.json"


def _compute_sha256(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()


def _to_jsonable(obj: Any) -> Any:
    """Pydantic models serialize with their on-disk aliases."""
    if hasattr(obj, "to_record"):
        return obj.to_record()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", by_alias=True)
    return obj


# =============================================================================
# JSON documents
# =============================================================================

def put_json(obj: Any, path: Path, ensure_parent: bool = True) -> DataReference:
    """Store a JSON-serializable object atomically and return a DataReference.

    The document is pretty-printed with a trailing newline and written to a
    temporary sibling first, then renamed into place, so readers never see a
    half-written file.

    Args:
        obj: Object to serialize to JSON (dict, Pydantic model, etc.)
        path: File path where the artifact will be stored
        ensure_parent: Create parent directories if they don't exist

    Returns:
        DataReference with artifact metadata
    """
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    json_bytes = (json.dumps(_to_jsonable(obj), indent=2, ensure_ascii=False) + "\n").encode("utf-8")

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(json_bytes)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(json_bytes),
        content_type="application/json",
        size_bytes=len(json_bytes),
        stored_at=datetime.now(timezone.utc),
    )


def get_json(path: Path) -> Any:
    """Read a JSON document.

    Raises:
        FileNotFoundError: If the path doesn't exist
        json.JSONDecodeError: If the file is not valid JSON
    """
    return json.loads(path.read_text(encoding="utf-8"))


# =============================================================================
# JSONL streams
# =============================================================================

class JsonlWriter:
    """Append-only JSONL writer.

    Each record is flushed as soon as it is written so an interrupted export
    keeps every record streamed so far.
    """

    def __init__(self, path: Path, truncate: bool = True):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(path, "w" if truncate else "a", encoding="utf-8", newline="\n")
        self.count = 0

    def write(self, record: Any) -> None:
        self._file.write(json.dumps(_to_jsonable(record), ensure_ascii=False) + "\n")
        self._file.flush()
        self.count += 1

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def __enter__(self) -> "JsonlWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def iter_jsonl(path: Path) -> Iterator[dict]:
    """Yield parsed lines of a JSONL file, skipping blank and corrupt lines."""
    if not path.exists():
        return
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparseable line {line_no} in {path.name}")


def read_jsonl(path: Path, model: Type[ModelT]) -> List[ModelT]:
    """Load a JSONL file into a list of models, skipping invalid records."""
    records: List[ModelT] = []
    for raw in iter_jsonl(path):
        try:
            records.append(model.model_validate(raw))
        except ValidationError as e:
            logger.debug(f"Skipping invalid {model.__name__} record in {path.name}: {e.error_count()} errors")
    return records


# =============================================================================
# Export directory
# =============================================================================

class ExportStore:
    """An export directory: entity JSONL files plus manifest.

    Usage:
        store = ExportStore("./exports/zendesk")
        writers = store.open_writers()
        ...
        store.write_manifest(manifest)
    """

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)

    def resolve_path(self, relative_path: str) -> Path:
        """Resolve a relative path inside the export directory."""
        return self.base_path / relative_path

    def entity_path(self, entity: str) -> Path:
        return self.base_path / ENTITY_FILES[entity]

    def open_writers(self) -> Dict[str, JsonlWriter]:
        """Create (truncate) every entity file and return one writer per entity.

        A previous manifest is removed first so a run that dies midway is never
        mistaken for a completed one.
        """
        self.base_path.mkdir(parents=True, exist_ok=True)
        manifest_path = self.resolve_path(MANIFEST_FILE)
        if manifest_path.exists():
            manifest_path.unlink()
        return {entity: JsonlWriter(self.entity_path(entity)) for entity in ENTITY_FILES}

    def write_manifest(self, manifest: ExportManifest) -> DataReference:
        return put_json(manifest, self.resolve_path(MANIFEST_FILE))

    def load_manifest(self) -> Optional[ExportManifest]:
        """Return the manifest, or None when absent or unreadable."""
        return load_manifest(self.base_path)

    def read(self, entity: str, model: Type[ModelT]) -> List[ModelT]:
        return read_jsonl(self.entity_path(entity), model)


def load_manifest(directory: Union[str, Path]) -> Optional[ExportManifest]:
    """Load ``manifest.json`` from an export directory, or None."""
    path = Path(directory) / MANIFEST_FILE
    if not path.exists():
        return None
    try:
        return ExportManifest.model_validate(get_json(path))
    except (json.JSONDecodeError, ValidationError, OSError) as e:
        logger.warning(f"Ignoring unreadable manifest {path}: {e}")
        return None


# =============================================================================
# Migration map
# =============================================================================

def migration_map_path(directory: Union[str, Path], connector: str) -> Path:
    return Path(directory) / f"migration-map-{connector}.json"


def load_migration_map(directory: Union[str, Path], connector: str) -> Dict[str, MigrationEntry]:
    """Load the migration map for a target connector.

    A missing or corrupt map is treated as empty.
    """
    path = migration_map_path(directory, connector)
    if not path.exists():
        return {}
    try:
        raw = get_json(path)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Migration map {path} unreadable, starting empty: {e}")
        return {}

    entries: Dict[str, MigrationEntry] = {}
    for ticket_id, entry in (raw or {}).items():
        try:
            entries[ticket_id] = MigrationEntry.model_validate(entry)
        except ValidationError:
            logger.warning(f"Dropping malformed migration map entry for {ticket_id}")
    return entries


def save_migration_map(
    directory: Union[str, Path],
    connector: str,
    entries: Dict[str, MigrationEntry],
) -> DataReference:
    """Persist the whole migration map atomically."""
    payload = {ticket_id: entry.to_record() for ticket_id, entry in entries.items()}
    return put_json(payload, migration_map_path(directory, connector))

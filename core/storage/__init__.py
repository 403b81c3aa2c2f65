"""Core storage - export directory, JSONL streams, migration map."""

from core.storage.artifacts import (
    ENTITY_FILES,
    MANIFEST_FILE,
    put_json,
    get_json,
    JsonlWriter,
    iter_jsonl,
    read_jsonl,
    ExportStore,
    load_manifest,
    migration_map_path,
    load_migration_map,
    save_migration_map,
)

__all__ = [
    "ENTITY_FILES",
    "MANIFEST_FILE",
    "put_json",
    "get_json",
    "JsonlWriter",
    "iter_jsonl",
    "read_jsonl",
    "ExportStore",
    "load_manifest",
    "migration_map_path",
    "load_migration_map",
    "save_migration_map",
]

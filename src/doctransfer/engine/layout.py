"""
On-disk layout of a transfer archive.

    metadata.json              export metadata
    <collection>.json          {"collection", "count", "documents": [...]}
    <collection>_indexes.json  [index descriptor, ...]

Documents are written as relaxed MongoDB Extended JSON so ObjectId,
datetime and other BSON values survive the round trip. Plain JSON (no
$-wrappers) reads back unchanged.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import json_util
from bson.errors import BSONError
from bson.json_util import JSONOptions, JSONMode

from ..core.exceptions import CollectionError
from ..core.models import CollectionSnapshot, IndexDescriptor, TransferMetadata

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
DOCUMENT_SUFFIX = ".json"
INDEX_SUFFIX = "_indexes.json"

JSON_OPTIONS = JSONOptions(json_mode=JSONMode.RELAXED, tz_aware=True)

# Raised by file reads and json_util.loads on malformed Extended JSON
DECODE_ERRORS = (OSError, ValueError, TypeError, ArithmeticError, BSONError)


def document_file_name(collection: str) -> str:
    return f"{collection}{DOCUMENT_SUFFIX}"


def index_file_name(collection: str) -> str:
    return f"{collection}{INDEX_SUFFIX}"


def is_document_file(file_name: str) -> bool:
    """True for collection document files: .json, not metadata, not an index file."""
    name = Path(file_name).name
    return (
        name.endswith(DOCUMENT_SUFFIX)
        and not name.endswith(INDEX_SUFFIX)
        and name != METADATA_FILE
    )


def discover_document_files(file_names: Iterable[str]) -> List[str]:
    """Filter an extracted file listing down to document files, keeping order."""
    return [name for name in file_names if is_document_file(name)]


def _dump(path: Path, payload: Any) -> int:
    text = json_util.dumps(payload, json_options=JSON_OPTIONS, indent=2, ensure_ascii=False)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path.stat().st_size


def _load(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json_util.loads(f.read(), json_options=JSON_OPTIONS)


def write_document_file(directory: Path, snapshot: CollectionSnapshot) -> int:
    """
    Write a collection's documents.

    Returns:
        Size of the written file in bytes
    """
    return _dump(Path(directory) / document_file_name(snapshot.name), snapshot.to_dict())


def write_index_file(directory: Path, collection: str, indexes: List[IndexDescriptor]) -> int:
    return _dump(
        Path(directory) / index_file_name(collection),
        [index.to_dict() for index in indexes],
    )


def read_document_file(path: Path) -> Tuple[str, CollectionSnapshot]:
    """
    Read a document file into a snapshot.

    The collection name comes from the file's "collection" field, falling
    back to the file stem. A file whose body is a bare list is treated as
    the document list itself.

    Raises:
        CollectionError if the file cannot be parsed or holds no document list
    """
    path = Path(path)
    fallback_name = path.name[: -len(DOCUMENT_SUFFIX)] if path.name.endswith(DOCUMENT_SUFFIX) else path.stem
    try:
        data = _load(path)
    except DECODE_ERRORS as e:
        raise CollectionError(f"Cannot read {path.name}: {e}", collection=fallback_name) from e

    if isinstance(data, dict):
        name = data.get("collection") or fallback_name
        documents = data.get("documents", data)
    else:
        name = fallback_name
        documents = data

    if not isinstance(documents, list):
        raise CollectionError(f"Invalid data format in {path.name}", collection=name)
    if not all(isinstance(doc, dict) for doc in documents):
        raise CollectionError(f"Non-document entries in {path.name}", collection=name)

    return name, CollectionSnapshot.capture(name, documents)


def read_index_file(path: Path) -> List[IndexDescriptor]:
    """Read an index file; raises one of DECODE_ERRORS or KeyError on malformed input."""
    data = _load(Path(path))
    if not isinstance(data, list):
        raise ValueError(f"Index file {Path(path).name} does not hold a list")
    return [IndexDescriptor.from_dict(entry) for entry in data]


def write_metadata(directory: Path, metadata: TransferMetadata) -> None:
    with open(Path(directory) / METADATA_FILE, "w", encoding="utf-8") as f:
        json.dump(metadata.to_dict(), f, indent=2, default=str)


def read_metadata(directory: Path) -> Optional[TransferMetadata]:
    """Read metadata.json if present. Informational only: unreadable metadata is logged and ignored."""
    path = Path(directory) / METADATA_FILE
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data: Dict[str, Any] = json.load(f)
        return TransferMetadata.from_dict(data)
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Ignoring unreadable {METADATA_FILE}: {e}")
        return None

"""Mapping document files.

JSON import and export of mapping documents, with the content hash and size
of every written file recorded in a MappingFileRef.
"""

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from pydantic import BaseModel, Field

from core.errors import FormatError
from core.observability.logging import get_logger
from mapping_state.machine import MappingStateMachine
from mapping_state.models import KeyRecord, MappingState
from persistence.serializer import deserialize, serialize

logger = get_logger(__name__)


def _compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class MappingFileRef(BaseModel):
    """Reference to a written mapping document.

    Attributes:
        path: Absolute file path
        content_hash: SHA256 of the file content
        size_bytes: Size of the file
        stored_at: When the file was written
    """
    path: str = Field(..., description="Absolute file path")
    content_hash: str = Field(..., description="SHA256 hash of content")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.utcnow)


def save_mapping(state: MappingState, path: Union[str, Path], ensure_parent: bool = True) -> MappingFileRef:
    """Write the mapping document of a state.

    Args:
        state: State to save
        path: Destination file
        ensure_parent: Create parent directories if they don't exist

    Returns:
        MappingFileRef for the written file
    """
    path = Path(path)
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    json_bytes = json.dumps(serialize(state), indent=2).encode("utf-8")
    path.write_bytes(json_bytes)

    ref = MappingFileRef(
        path=str(path.absolute()),
        content_hash=_compute_sha256(json_bytes),
        size_bytes=len(json_bytes),
    )
    logger.info(
        f"Saved mapping to {ref.path}",
        extra_fields={"mapped": len(state.mapped), "ignored": len(state.ignored)},
    )
    return ref


def load_mapping(
    path: Union[str, Path],
    dataset_keys: Iterable[str],
    expected_hash: Optional[str] = None,
) -> MappingState:
    """Read and restore a mapping document.

    Args:
        path: Mapping document file
        dataset_keys: Keys of the currently loaded dataset
        expected_hash: Optional SHA256 the file content must match

    Raises:
        FormatError: If the file is unreadable, not JSON, fails the hash
            check, or is not a valid mapping document. The message names
            the file.
    """
    path = Path(path)
    try:
        json_bytes = path.read_bytes()
    except OSError as e:
        raise FormatError(f"Cannot read mapping file: {e.strerror or e}", str(path)) from e

    if expected_hash is not None:
        actual_hash = _compute_sha256(json_bytes)
        if actual_hash != expected_hash:
            raise FormatError(
                f"Hash mismatch: expected {expected_hash}, got {actual_hash}",
                str(path),
            )

    try:
        document = json.loads(json_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"Mapping file is not valid JSON: {e}", str(path)) from e

    state = deserialize(document, dataset_keys, source=str(path))
    logger.info(
        f"Loaded mapping from {path}",
        extra_fields={
            "mapped": len(state.mapped),
            "ignored": len(state.ignored),
            "manual": len(state.manual_properties),
        },
    )
    return state


async def apply_loaded_state(
    machine: MappingStateMachine,
    loaded: MappingState,
    keys: Optional[Sequence[KeyRecord]] = None,
) -> MappingState:
    """Install a restored state, replacing the current partition and manual properties.

    With `keys`, the current dataset is classified into the restored state so
    its remaining fields come back as non-linked.
    """
    await machine.install(loaded.model_copy(update={"non_linked": []}))
    if keys is not None:
        return await machine.load_keys(keys)
    return machine.state

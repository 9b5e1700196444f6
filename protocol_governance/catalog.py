"""Protocol catalog loader and validator.

Loads protocol catalogs from JSON, validates structure, computes
content hashes, and rejects invalid catalogs.
"""

import hashlib
import json
from pathlib import Path
from typing import List, Tuple, Union

from .types import Protocol, StepType

# Fields that may change after publication; excluded from the content hash
MUTABLE_FIELDS = {"status", "approved_by"}


def load_catalog(path: Union[str, Path]) -> List[Protocol]:
    """Load and validate a protocol catalog from a JSON file.

    Args:
        path: Path to catalog JSON file

    Returns:
        Validated protocols in file order

    Raises:
        FileNotFoundError: If catalog file doesn't exist
        ValueError: If catalog validation fails
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Protocol catalog not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    # Pre-validate before Pydantic parsing for readable errors
    _validate_catalog_fields(data)

    return [Protocol.model_validate(item) for item in data["protocols"]]


def compute_content_hash(protocol: Protocol) -> str:
    """Compute SHA256 hash of the protocol's canonical JSON content.

    Status and approval stamp are excluded so the hash of an Active
    protocol stays stable across lifecycle transitions.

    Returns:
        Hex-encoded SHA256 hash
    """
    content = protocol.model_dump(mode="json", exclude=MUTABLE_FIELDS)

    # Canonical JSON: sorted keys, no extra whitespace
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"))

    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _validate_catalog_fields(data: dict) -> None:
    """Pre-validate catalog fields before Pydantic parsing.

    Checks:
    - catalog_version is present
    - protocols is a list with unique non-empty ids
    - every step type is a known StepType value
    """
    if "catalog_version" not in data:
        raise ValueError("catalog_version is required")

    protocols = data.get("protocols")
    if not isinstance(protocols, list):
        raise ValueError("protocols must be a list")

    seen = set()
    step_types = [t.value for t in StepType]
    for item in protocols:
        protocol_id = item.get("id")
        if not protocol_id:
            raise ValueError(f"Protocol '{item.get('title', 'unknown')}': id is required in a catalog")
        if protocol_id in seen:
            raise ValueError(f"Duplicate protocol id: {protocol_id}")
        seen.add(protocol_id)

        if "price" not in item:
            raise ValueError(f"Protocol '{protocol_id}': price is required")

        for step in item.get("steps", []):
            if step.get("type") not in step_types:
                raise ValueError(
                    f"Protocol '{protocol_id}': step '{step.get('id', 'unknown')}' "
                    f"has unknown type '{step.get('type')}'"
                )


def validate_catalog(path: Union[str, Path]) -> Tuple[bool, str]:
    """Validate a catalog file without raising.

    Returns:
        (is_valid, message)
    """
    try:
        protocols = load_catalog(path)
    except FileNotFoundError:
        return False, f"File not found: {path}"
    except json.JSONDecodeError as e:
        return False, f"Invalid JSON: {e}"
    except ValueError as e:
        return False, str(e)

    if not protocols:
        return False, "No protocols defined"
    return True, "Valid"

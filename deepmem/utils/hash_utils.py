"""
Deterministic hashing used for idempotency and stable store identifiers.
"""

import hashlib
from typing import Any

from .json_utils import canonical_json


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def transcript_hash(messages: Any) -> str:
    """Hash the canonical serialization of a transcript."""
    return sha256_hex(canonical_json(messages))


def stable_hash(text: str, length: int = 24) -> str:
    """Short stable hex digest for ids and keys (not a security boundary)."""
    return sha256_hex(text)[:length]


def memory_id(namespace: str, session_id: str, content: str) -> str:
    """Identity shared by the vector document and the graph vertex of a memory.

    Args:
        namespace: Memory namespace
        session_id: Session the memory was extracted from
        content: Normalized memory content

    Returns:
        Id of the form '<namespace>::mem_<hex>'
    """
    return f'{namespace}::mem_{stable_hash(f"{session_id}:{content}")}'

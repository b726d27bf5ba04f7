import uuid
from typing import Any, Optional


def new_thread_id() -> str:
    return str(uuid.uuid4())


def resolve_thread_id(candidate: Optional[Any] = None) -> str:
    """
    Echo a caller-supplied thread id, or mint a new one.

    Ids are opaque correlation tokens: nothing is stored, looked up or
    validated beyond being a non-empty string.
    """
    if isinstance(candidate, str) and len(candidate) > 0:
        return candidate
    return new_thread_id()

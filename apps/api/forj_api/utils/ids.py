"""Identifier generation."""

import uuid


def new_id(prefix: str) -> str:
    """Random identifier with a type prefix, e.g. ``frg_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"

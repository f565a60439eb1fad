"""
Deterministic identities for units of work.

An identity must be a pure function of the semantic inputs of the work: a
normalised slug of the topic plus a hash of the parameters. Timestamps,
random values and loop positions must never go into an identity, otherwise
neither deduplication nor resumption can find earlier work again.
"""

import hashlib
import json
import re
import unicodedata
from typing import Any, Mapping, Optional


class RegistryError(Exception):
    """Base exception for task registry errors."""
    pass


class IdentityError(RegistryError, ValueError):
    """Raised for empty or inconsistent identities."""
    pass


def slugify(text: str, max_length: int = 48) -> str:
    """Lower-case ASCII slug: runs of other characters collapse to a single '-'."""
    normalized = unicodedata.normalize("NFKD", str(text)).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    if not slug:
        raise IdentityError(f"Cannot derive a slug from {text!r}")
    return slug


def canonical_json(value: Any) -> str:
    """Key-order independent JSON encoding used as hash input."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(value: Any, length: int = 8) -> str:
    """Truncated sha256 of the canonical JSON encoding of ``value``."""
    if not 4 <= length <= 64:
        raise ValueError(f"Hash length must be between 4 and 64, got {length}")
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()[:length]


def make_identity(topic: str, params: Optional[Mapping[str, Any]] = None, length: int = 8) -> str:
    """
    Build ``<slug>-<hash>`` for a topic and its configuration parameters.

    The hash covers the raw topic as well as the parameters, so two topics
    that slugify the same way still get distinct identities.

    Example:
        make_identity("Story about ABC", {"tone": "formal"})
        -> "story-about-abc-1c9e53d0"
    """
    slug = slugify(topic)
    digest = content_hash({"topic": topic, "params": dict(params or {})}, length=length)
    return f"{slug}-{digest}"

"""Abstract base for payload families."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Tuple


BodyTemplate = Callable[[str, Any], Dict[str, Any]]


class DbFamily(str, Enum):
    """Backend data-store flavour being probed."""
    MONGODB = "MongoDB"
    ELASTICSEARCH = "Elasticsearch"
    COUCHDB = "CouchDB"

    @classmethod
    def parse(cls, value) -> "DbFamily":
        if isinstance(value, cls):
            return value
        wanted = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == wanted or member.name.lower() == wanted:
                return member
        raise ValueError(f"Unknown DB family: {value!r} "
                         f"(expected one of {', '.join(m.value for m in cls)})")


class PayloadFamily(ABC):
    """Every family exposes string payloads and body templates, both ordered."""

    family: DbFamily

    # ── public API ──────────────────────────────────────────────

    @abstractmethod
    def get_payloads(self) -> Tuple[str, ...]:
        """Strings injected into query params, headers and cookies."""
        ...

    @abstractmethod
    def get_templates(self) -> Tuple[BodyTemplate, ...]:
        """
        Pure functions ``(field, original_value) -> partial body``.
        The result is shallow-merged over the caller's base body.
        """
        ...

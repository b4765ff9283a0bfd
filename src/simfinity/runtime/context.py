"""
Call parameters passed through the middleware chain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EndpointKind(str, Enum):
    GET = "get"
    FIND = "find"
    SAVE = "save"
    UPDATE = "update"
    DELETE = "delete"
    STATE = "state"
    CUSTOM = "custom"


READ_KINDS = frozenset({EndpointKind.GET, EndpointKind.FIND})


@dataclass
class Endpoint:
    """A named entry point bound to an entity (or a custom mutation)."""
    name: str
    kind: EndpointKind
    entity: Optional[str] = None
    action: Optional[str] = None

    @property
    def is_read(self) -> bool:
        return self.kind in READ_KINDS


@dataclass
class CallParams:
    """
    What middleware sees of one call.

    Contains:
    - endpoint: The resolved entry point
    - args: Call arguments (middleware may rewrite them)
    - context: Caller-owned mapping; list calls write ``count`` into it
    """
    endpoint: Endpoint
    args: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def operation(self) -> EndpointKind:
        return self.endpoint.kind

    @property
    def entity(self) -> Optional[str]:
        return self.endpoint.entity

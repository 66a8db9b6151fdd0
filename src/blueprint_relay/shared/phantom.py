"""Startup-delay policy for clients that open a throwaway first connection.

Some WebKit builds open a websocket, abandon it almost immediately and then
open the real one. Delaying setup briefly for those clients lets the phantom
close before an upstream link is spent on it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

IdentityPredicate = Callable[[str], bool]

_WEBKIT_ONLY = re.compile(r"^((?!chrome|chromium|android).)*safari", re.IGNORECASE)


def is_phantom_prone(identity: Optional[str]) -> bool:
    """Return True for Safari user agents (Safari token without Chrome/Android)."""

    if not identity:
        return False
    return _WEBKIT_ONLY.search(identity) is not None


def never(_identity: str) -> bool:
    return False


@dataclass(frozen=True)
class PhantomPolicy:
    delay_s: float = 0.2
    predicate: IdentityPredicate = field(default=is_phantom_prone)

    def matches(self, identity: Optional[str]) -> bool:
        return bool(self.predicate(identity or ""))

    def delay_for(self, identity: Optional[str]) -> float:
        if self.delay_s <= 0:
            return 0.0
        return self.delay_s if self.matches(identity) else 0.0

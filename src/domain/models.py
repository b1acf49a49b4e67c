from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(slots=True)
class User:
    """Represents an authenticated actor within the system."""

    user_id: str
    email: str = ""
    roles: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def has_role(self, role: str) -> bool:
        return role in self.roles

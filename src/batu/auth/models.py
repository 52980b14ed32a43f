"""
batu.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) injected into endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADVERTISER = "advertiser"
ROLE_SYSTEM = "system"
ROLE_ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.

    `subject` is the tenant's user id; every tenant-scoped query filters on it.
    """

    subject: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def user_id(self) -> str:
        return self.subject

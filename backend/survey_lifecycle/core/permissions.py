"""Who may drive a survey through its lifecycle."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

ADMIN_ROLE = "admin"

# Roles allowed to change status or review permission at all.
SURVEY_MANAGER_ROLES: frozenset[str] = frozenset({ADMIN_ROLE, "lecturer"})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as carried by the access token."""

    id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def can_manage_survey(actor: Actor, created_by: uuid.UUID | None) -> bool:
    """Admins manage every survey; lecturers only the ones they created."""
    if actor.role not in SURVEY_MANAGER_ROLES:
        return False
    if actor.is_admin:
        return True
    return created_by is not None and created_by == actor.id


def can_view_survey(actor: Actor, created_by: uuid.UUID | None) -> bool:
    return actor.is_admin or (created_by is not None and created_by == actor.id)

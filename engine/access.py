from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


class Capability(str, Enum):
    OPERATE_ENGINE = "operate_engine"
    EDIT_PARAMETERS = "edit_parameters"
    VIEW_ADMIN = "view_admin"
    RUN_AIRDROP = "run_airdrop"


ROLE_CAPABILITIES: Dict[str, FrozenSet[Capability]] = {
    "super_admin": frozenset(Capability),
    "admin": frozenset(
        {Capability.OPERATE_ENGINE, Capability.EDIT_PARAMETERS, Capability.VIEW_ADMIN, Capability.RUN_AIRDROP}
    ),
    "trader": frozenset({Capability.OPERATE_ENGINE}),
    "user": frozenset(),
}


@dataclass(frozen=True)
class User:
    id: str
    email: str = ""
    role: str = "user"


def has_capability(user: Optional[User], capability: Capability) -> bool:
    if user is None:
        return False
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def require_capability(user: Optional[User], capability: Capability) -> User:
    if not has_capability(user, capability):
        who = user.id if user else "anonymous"
        raise PermissionError(f"{who} lacks capability {capability.value}")
    return user

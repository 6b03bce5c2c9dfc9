from dataclasses import dataclass
from enum import Enum
import re

_SCOPE_SEPARATORS = re.compile(r"[,\s]+")


class PrincipalType(str, Enum):
    STAFF = "staff"
    MACHINE = "machine"


@dataclass(slots=True)
class Principal:
    """Caller identity forwarded by the gateway: a staff member or an upstream module."""

    principal_type: PrincipalType
    subject: str
    scopes: set[str]

    @property
    def actor(self) -> str:
        return f"{self.principal_type.value}:{self.subject}"

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"{self.actor} is missing required scopes: {sorted(missing)}")


def parse_scope_header(scope_header: str | None) -> set[str]:
    """Accepts comma- or space-delimited scope lists."""
    return {scope for scope in _SCOPE_SEPARATORS.split(scope_header or "") if scope}

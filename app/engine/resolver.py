"""
Approver specifications and the resolver contract

A specification describes who should approve a step. Resolution to a concrete
user id happens once, at publish time, through an ApproverResolver.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple


class ApproverKind(str, enum.Enum):
    """How an approver is looked up"""

    EXPLICIT_USER = "explicit_user"
    ROLE = "role"
    DEPARTMENT_HEAD = "department_head"
    DIRECT_MANAGER = "direct_manager"
    SKIP_LEVEL = "skip_level"
    FORM_FIELD = "form_field"


@dataclass(frozen=True)
class ApproverSpec:
    """Unresolved description of a step approver"""

    kind: ApproverKind
    value: Optional[str] = None
    levels: int = 1

    def describe(self) -> str:
        if self.kind == ApproverKind.SKIP_LEVEL:
            return f"skip_level({self.levels})"
        if self.value:
            return f"{self.kind.value}:{self.value}"
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "value": self.value, "levels": self.levels}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApproverSpec":
        return cls(
            kind=ApproverKind(data["kind"]),
            value=data.get("value"),
            levels=int(data.get("levels") or 1),
        )


@dataclass(frozen=True)
class ResolutionContext:
    """Organisational context of the request creator"""

    org_id: Optional[str]
    creator_id: str
    department_id: Optional[str] = None
    # Direct manager first, then that manager's manager, and so on
    manager_chain: Tuple[str, ...] = ()
    form_values: Dict[str, Any] = field(default_factory=dict)

    def manager_at(self, level: int) -> Optional[str]:
        """Manager `level` hops above the creator (0 = direct manager)"""
        if level < 0 or level >= len(self.manager_chain):
            return None
        return self.manager_chain[level]


class ApproverResolver(Protocol):
    """Resolves a specification to zero or one user id"""

    def resolve(self, spec: ApproverSpec, context: ResolutionContext) -> Optional[str]:
        ...

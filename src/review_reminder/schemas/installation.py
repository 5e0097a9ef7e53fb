"""Installation and raw membership schemas."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TargetType(str, Enum):
    """Kind of account an installation is bound to."""

    ORGANIZATION = "Organization"
    USER = "User"


class Installation(BaseModel):
    """An organization or single-user account the service is installed on.

    Immutable after creation. Registry and engines key it by the lower-cased
    account login.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Installation id")
    account_id: int
    account_login: str
    target_type: TargetType

    @property
    def key(self) -> str:
        return self.account_login.lower()

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Installation":
        """Build from a GitHub installation object."""
        account = payload["account"]
        return cls(
            id=payload["id"],
            account_id=account["id"],
            account_login=account["login"],
            target_type=payload.get("target_type") or account.get("type"),
        )


class Member(BaseModel):
    """A raw principal as reported by the membership source."""

    model_config = ConfigDict(extra="ignore")

    id: int
    login: str
    type: str = "User"
    name: Optional[str] = None

    @property
    def is_human(self) -> bool:
        # Bots and organizations show up in member and account listings too
        return self.type == TargetType.USER.value

    @property
    def normalized_login(self) -> str:
        return self.login.lower()

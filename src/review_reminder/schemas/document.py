"""Settings document storage schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class DocumentLocation(BaseModel):
    """Where an installation's settings document lives."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    path: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}:{self.path}"


class StoredDocument(BaseModel):
    """Raw document content plus the store's revision token."""

    content: str
    revision: Optional[str] = None

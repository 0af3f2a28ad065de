"""Account model: the slice of a user document the credit meter works with."""

from typing import Any

from pydantic import BaseModel, Field


class Account(BaseModel):
    """Requester identity, credit balance and exemption flag.

    Owned by the account service. The generation pipeline only ever
    changes ``credits``.
    """
    id: str
    credits: int = Field(0, ge=0)
    is_admin: bool = False

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Account":
        return cls(
            id=str(doc["_id"]),
            credits=max(0, int(doc.get("credits") or 0)),
            is_admin=bool(doc.get("is_admin", False)),
        )

"""Domain model for a fetched record (a contact on the remote service)."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Record:
    """A single record pulled from the remote directory.

    Only `affiliation_logo_ref` is ever filled in after parsing, through
    `dataclasses.replace` once a logo has been cached for the affiliation.
    """
    id: str
    display_name: str
    picture_ref: Optional[str] = None
    affiliation_key: Optional[str] = None
    affiliation_logo_ref: Optional[str] = None
    role_title: Optional[str] = None
    profile_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """Rebuilds a record from its cached dictionary form."""
        return cls(
            id=str(data["id"]),
            display_name=data.get("display_name", ""),
            picture_ref=data.get("picture_ref"),
            affiliation_key=data.get("affiliation_key"),
            affiliation_logo_ref=data.get("affiliation_logo_ref"),
            role_title=data.get("role_title"),
            profile_ref=data.get("profile_ref"),
        )

"""Explicit parser for the remote directory's JSON responses.

Every field read from a response is listed here with its default. Shape
violations that would make a record meaningless raise ParsingError;
optional fields fall back to None.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from connsync.domain.models.errors import ParsingError
from connsync.domain.models.records import Record

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_BASE_URL = "https://www.linkedin.com/in/"
AFFILIATION_HIT_KEY = "com.linkedin.voyager.search.SearchCompany"
AFFILIATION_SEPARATOR = " at "


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _elements(body: Any) -> List[Any]:
    if not isinstance(body, dict):
        raise ParsingError(f"Expected a JSON object, got {type(body).__name__}")
    elements = body.get("elements")
    if elements is None:
        return []
    if not isinstance(elements, list):
        raise ParsingError(f"'elements' must be a list, got {type(elements).__name__}")
    return elements


def image_ref(image: Any) -> Optional[str]:
    """Joins an image's rootUrl with its first artifact's path segment."""
    image = _as_dict(image)
    root = _text(image.get("rootUrl"))
    if root is None:
        return None
    artifacts = image.get("artifacts")
    first = _as_dict(artifacts[0]) if isinstance(artifacts, list) and artifacts else {}
    return root + (first.get("fileIdentifyingUrlPathSegment") or "")


def split_occupation(occupation: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Splits "Role at Affiliation" into (role_title, affiliation_key).

    The affiliation is everything after the last " at ". Without a
    separator the whole occupation is the role.
    """
    if not occupation:
        return None, None
    role, sep, affiliation = occupation.rpartition(AFFILIATION_SEPARATOR)
    if not sep:
        return occupation.strip() or None, None
    return _text(role), _text(affiliation)


def parse_record(element: Any, profile_base_url: str = DEFAULT_PROFILE_BASE_URL) -> Record:
    """Parses one `elements[]` entry of a records page.

    Raises:
        ParsingError: If the element carries no member identifier.
    """
    member = _as_dict(_as_dict(_as_dict(element).get("connectedMember")).get("miniProfile"))
    urn = _text(member.get("entityUrn"))
    record_id = urn.split(":")[-1] if urn else None
    if not record_id:
        raise ParsingError("Record element has no member identifier (connectedMember.miniProfile.entityUrn)")

    first_name = _text(member.get("firstName")) or ""
    last_name = _text(member.get("lastName")) or ""
    role_title, affiliation_key = split_occupation(_text(member.get("occupation")))
    public_id = _text(member.get("publicIdentifier"))

    return Record(
        id=record_id,
        display_name=f"{first_name} {last_name}".strip(),
        picture_ref=image_ref(member.get("picture")),
        affiliation_key=affiliation_key,
        role_title=role_title,
        profile_ref=f"{profile_base_url}{public_id}" if public_id else None,
    )


def parse_records_page(body: Any, profile_base_url: str = DEFAULT_PROFILE_BASE_URL) -> List[Record]:
    """Parses a page of records.

    Args:
        body: The decoded JSON body.
        profile_base_url: Prefix joined with each member's public identifier.

    Returns:
        The records in response order; [] when the body has no `elements`.

    Raises:
        ParsingError: If the body or any element has an unexpected shape.
    """
    records = [parse_record(element, profile_base_url) for element in _elements(body)]
    logger.debug(f"Parsed {len(records)} records")
    return records


def parse_logo_lookup(body: Any) -> Optional[str]:
    """Returns the logo reference of the first affiliation hit, if any."""
    for element in _elements(body):
        hit = _as_dict(_as_dict(element).get("hitInfo")).get(AFFILIATION_HIT_KEY)
        if hit is None:
            continue
        logo = _as_dict(_as_dict(hit).get("logo"))
        artifacts = logo.get("artifacts")
        # A logo needs both a root and at least one artifact.
        if not (isinstance(artifacts, list) and artifacts):
            return None
        return image_ref(logo)
    return None

"""Credential providers for the remote service."""

import logging
from typing import Dict, Mapping, Optional

from connsync.domain.interfaces.credentials import CredentialProvider

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "JSESSIONID"


class StaticCredentialProvider(CredentialProvider):
    """Returns a fixed set of headers."""

    def __init__(self, headers: Optional[Mapping[str, str]] = None):
        self._headers = dict(headers or {})

    def get_auth_headers(self) -> Dict[str, str]:
        return dict(self._headers)


def csrf_token_from_session(session_id: str) -> Optional[str]:
    """Extracts the CSRF token from an "ajax:<token>" session id.

    The token is the part after the first colon; None if there is none.
    """
    parts = session_id.strip().strip('"').split(":")
    if len(parts) < 2 or not parts[1]:
        return None
    return parts[1]


class SessionCredentialProvider(CredentialProvider):
    """Derives the CSRF header and session cookie from a session id."""

    def __init__(self, session_id: str, extra_cookies: Optional[str] = None):
        if not session_id:
            raise ValueError("session_id must not be empty.")
        self.session_id = session_id.strip().strip('"')
        self.extra_cookies = extra_cookies
        self.csrf_token = csrf_token_from_session(self.session_id)
        if self.csrf_token is None:
            logger.warning("Session id has no CSRF token part, requests will likely be rejected")

    def get_auth_headers(self) -> Dict[str, str]:
        cookie = f'{SESSION_COOKIE_NAME}="{self.session_id}"'
        if self.extra_cookies:
            cookie = f"{cookie}; {self.extra_cookies}"
        return {"csrf-token": self.csrf_token or "", "cookie": cookie}

"""Interface for the credential/session provider.

The core only asks for the current headers; obtaining and renewing the
session is the host's job.
"""

import abc
from typing import Dict


class CredentialProvider(abc.ABC):
    """Abstract Base Class supplying per-call authorization headers."""

    @abc.abstractmethod
    def get_auth_headers(self) -> Dict[str, str]:
        """Returns the headers that authorize the next request.

        Returns:
            A (possibly empty) mapping of header names to values.
        """
        pass

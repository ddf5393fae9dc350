"""Interface for presenting results to the user.

Defines the contract for displaying records, statistics, health reports and
errors, allowing different UI implementations (e.g., console, GUI).
"""

import abc
from typing import Any, List, Mapping, Sequence

from connsync.domain.models.errors import ClassifiedError
from connsync.domain.models.records import Record
from connsync.domain.models.stats import HealthReport


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user.

        Args:
            error_message: The error message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_records(self, records: Sequence[Record], limit: int = 0) -> None:
        """Displays fetched records (all of them when limit is 0)."""
        pass

    @abc.abstractmethod
    def display_stats(self, title: str, stats: Mapping[str, Any]) -> None:
        """Displays a flat mapping of statistic names to values."""
        pass

    @abc.abstractmethod
    def display_health(self, report: HealthReport) -> None:
        """Displays a health verdict with its issues and recommendations."""
        pass

    @abc.abstractmethod
    def display_classified_error(self, error: ClassifiedError) -> None:
        """Displays a classified error using its user-facing fields."""
        pass

    @abc.abstractmethod
    def display_error_log(self, errors: List[ClassifiedError]) -> None:
        """Displays a list of logged errors, newest first."""
        pass

    @abc.abstractmethod
    def display_critical_errors(self, entries: Sequence[Mapping[str, Any]]) -> None:
        """Displays the durable log of non-recoverable errors (serialized form)."""
        pass

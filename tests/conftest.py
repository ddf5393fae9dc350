import random
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
from typer.testing import CliRunner

from connsync.domain.interfaces.transport import RequestTarget, Transport, TransportResponse
from connsync.infrastructure.config.settings import clear_test_config
from connsync.infrastructure.resilience.error_classifier import ErrorClassifier
from connsync.infrastructure.storage.memory_store import InMemoryStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that returns immediately and records every delay."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


Outcome = Union[TransportResponse, BaseException, Callable[[RequestTarget], TransportResponse]]


class ScriptedTransport(Transport):
    """Transport replaying scripted outcomes.

    `script` maps a target label (or "*" for any) to a list of outcomes that
    are consumed in order; the last outcome repeats once the list runs out.
    """

    def __init__(self, script: Optional[Dict[str, List[Outcome]]] = None):
        self.script: Dict[str, List[Outcome]] = script or {}
        self.calls: List[RequestTarget] = []
        self.headers: List[Dict[str, str]] = []

    async def execute(self, target: RequestTarget, headers: Dict[str, str], timeout: float) -> TransportResponse:
        self.calls.append(target)
        self.headers.append(dict(headers))
        outcomes = self.script.get(target.label) or self.script.get("*")
        if not outcomes:
            return TransportResponse(status=200, body={})
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(target)
        return outcome

    async def close(self) -> None:
        pass


def ok(body: Any = None, status: int = 200, headers: Optional[Dict[str, str]] = None) -> TransportResponse:
    return TransportResponse(status=status, body=body, headers=headers or {})


def member(record_id: str, first: str = "Ada", last: str = "Lovelace",
           occupation: Optional[str] = None, public_id: Optional[str] = None) -> Dict[str, Any]:
    """Builds one `elements[]` entry of a records page."""
    profile: Dict[str, Any] = {
        "entityUrn": f"urn:li:fs_miniProfile:{record_id}",
        "firstName": first,
        "lastName": last,
    }
    if occupation is not None:
        profile["occupation"] = occupation
    if public_id is not None:
        profile["publicIdentifier"] = public_id
    return {"connectedMember": {"miniProfile": profile}}


def page(*elements: Dict[str, Any]) -> Dict[str, Any]:
    return {"elements": list(elements)}


def logo_hit(root: str, segment: str) -> Dict[str, Any]:
    return {"elements": [{"hitInfo": {"com.linkedin.voyager.search.SearchCompany": {
        "logo": {"rootUrl": root, "artifacts": [{"fileIdentifyingUrlPathSegment": segment}]}
    }}}]}


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def classifier(store: InMemoryStore) -> ErrorClassifier:
    return ErrorClassifier(store=store)


@pytest.fixture(autouse=True)
def reset_test_config():
    yield
    clear_test_config()

"""
complio - Test Configuration

Pytest fixtures and configuration.
"""

from typing import Any, Callable, Dict, List

import pytest

from complio.config import Settings
from complio.framework import load_framework
from complio.ledger import LinkedRecordLedger
from complio.lifecycle import AssessmentLifecycleController
from complio.linked_records import LinkedRecordService
from complio.records import Actor
from complio.store import MemoryStore
from frontend.app import create_app


FRAMEWORK_ID = "unified-v1"


class ManualHandle:
    def __init__(self, scheduler: "ManualScheduler", callback: Callable[[], None]):
        self.scheduler = scheduler
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers only fire when the test says so."""

    def __init__(self):
        self.handles: List[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self, callback)
        self.handles.append(handle)
        return handle

    @property
    def live(self) -> List[ManualHandle]:
        return [h for h in self.handles if not h.cancelled]

    def run_all(self) -> int:
        fired = 0
        for handle in list(self.handles):
            if not handle.cancelled:
                handle.cancelled = True
                handle.callback()
                fired += 1
        return fired


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=str(tmp_path / "data"),
        secret_key="test",
        autosave_delay_seconds=0.5,
        default_high_threshold=60,
        default_medium_threshold=30,
    )


@pytest.fixture
def framework():
    return load_framework()


@pytest.fixture
def store(settings) -> MemoryStore:
    """A memory store seeded with the packaged framework and risk configuration."""
    store = MemoryStore()
    store.seed_defaults(settings=settings)
    return store


@pytest.fixture
def controller(store, settings) -> AssessmentLifecycleController:
    return AssessmentLifecycleController(store, settings)


@pytest.fixture
def ledger(store) -> LinkedRecordLedger:
    return LinkedRecordLedger(store)


@pytest.fixture
def linked(store, ledger) -> LinkedRecordService:
    return LinkedRecordService(store, ledger)


@pytest.fixture
def user() -> Actor:
    return Actor(id="user-1")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role="admin")


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_assessment(controller) -> Callable[..., Any]:
    def _make(title: str = "CRM rollout", **links: Any):
        return controller.create(FRAMEWORK_ID, title, links or None)
    return _make


@pytest.fixture
def completed_assessment(controller, make_assessment):
    """A completed assessment with personal data, AI and a vendor."""
    record = make_assessment()
    responses: Dict[str, Any] = {
        "E2": "Yes",
        "E4": "No",
        "E7": "Yes",
        "CN.2": "Customer support ticket routing",
        "DP.1": ["Full Name", "Email"],
        "DP.3": ["Contract", "Legitimate Interest"],
        "VR.1": "Acme Helpdesk",
    }
    return controller.complete(record.id, responses).assessment


@pytest.fixture
def app(store, settings, scheduler):
    app = create_app(store=store, settings=settings, scheduler=scheduler)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()

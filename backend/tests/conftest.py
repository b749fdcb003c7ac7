"""
conftest.py — Shared pytest fixtures for the material wizard test suite.

No live backend is needed: reference data and the materials endpoint are
replaced by in-memory fakes, and HTTP-level tests use httpx.MockTransport.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``material_wizard.*`` imports resolve correctly regardless of where
    pytest is invoked.
"""

import sys
import os
import asyncio
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from material_wizard.models.material_draft import (  # noqa: E402
    Category,
    CurrentUser,
    EntryType,
    Floor,
    MaterialDraft,
    Phase,
    Project,
    WizardState,
)
from material_wizard.services.backend_client import BackendError  # noqa: E402
from material_wizard.services.perf_monitor import tracker  # noqa: E402
from material_wizard.services.reference_data import ReferenceData  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeReferenceData(ReferenceData):
    """
    In-memory reference data.

    ``floors_by_project`` / ``phases_by_project`` map project id -> list.
    ``gates`` maps project id -> asyncio.Event; floor fetches for that
    project block until the event is set.
    """

    def __init__(self, user=None, categories=None, projects=None,
                 floors_by_project=None, phases_by_project=None):
        self.user = user
        self._categories = categories or []
        self._projects = projects or []
        self.floors_by_project = floors_by_project or {}
        self.phases_by_project = phases_by_project or {}
        self.gates = {}
        self.floor_calls = []
        self.phase_calls = []

    async def categories(self):
        return list(self._categories)

    async def projects(self):
        return list(self._projects)

    async def floors(self, project_id):
        self.floor_calls.append(project_id)
        gate = self.gates.get(project_id)
        if gate is not None:
            await gate.wait()
        return list(self.floors_by_project.get(project_id, []))

    async def phases(self, project_id):
        self.phase_calls.append(project_id)
        return list(self.phases_by_project.get(project_id, []))

    async def current_user(self):
        return self.user


class FakeMaterials:
    """Records payloads; answers with ``response`` or raises ``error``."""

    def __init__(self, response=None, error=None):
        self.response = response if response is not None else {"_id": "m-001"}
        self.error = error
        self.payloads = []

    async def create_material(self, payload):
        self.payloads.append(payload)
        if self.error:
            raise BackendError(self.error, 400)
        return dict(self.response)


def run(coro):
    """Drive a coroutine to completion from a plain (sync) test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Reference data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def categories():
    return [
        Category(id="cat-cement", name="Cement & Concrete"),
        Category(id="cat-tiles", name="Tiling & Terrazzo"),
        Category(id="cat-elec", name="Electrical Works"),
    ]


@pytest.fixture
def projects():
    return [
        Project(id="P1", project_name="Riverside Apartments", project_code="RSA-01", location="Nairobi"),
        Project(id="P2", project_name="Kilimani Offices", project_code="KLO-02"),
    ]


@pytest.fixture
def floors_by_project():
    return {
        "P1": [Floor(id="F1-G", name="Ground Floor", floor_number=0), Floor(id="F1-1", name="First Floor", floor_number=1)],
        "P2": [Floor(id="F2-G", name="Ground Floor", floor_number=0)],
    }


@pytest.fixture
def phases_by_project():
    return {
        "P1": [Phase(id="PH1", phase_name="Superstructure"), Phase(id="PH2", phase_name="Finishing")],
        "P2": [Phase(id="PH9", phase_name="Substructure")],
    }


@pytest.fixture
def reference(categories, projects, floors_by_project, phases_by_project):
    return FakeReferenceData(
        user=CurrentUser(id="u-1", role="owner"),
        categories=categories,
        projects=projects,
        floors_by_project=floors_by_project,
        phases_by_project=phases_by_project,
    )


# ---------------------------------------------------------------------------
# Draft / state fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cement_draft():
    """The canonical retroactive scenario: 50 bags of cement, no cost or supplier."""
    return MaterialDraft(
        project_id="P1",
        name="Cement",
        phase_id="PH1",
        quantity=50,
        unit="bag",
    )


@pytest.fixture
def retro_state(cement_draft):
    return WizardState(entry_type=EntryType.RETROACTIVE_ENTRY, draft=cement_draft)


@pytest.fixture(autouse=True)
def _reset_tracker():
    tracker.reset()
    yield
    tracker.reset()

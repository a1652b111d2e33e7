"""Pytest configuration and shared fixtures."""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from adlex.config import settings
from adlex.core.constants import DETECTION_TOOL_NAME, CheckStatus, OcrStatus
from adlex.core.exceptions import CheckStateConflictError, RepositoryError
from adlex.main import app
from adlex.schemas.pipeline import ViolationData


class InMemoryCheckStore:
    """Backing state for the fake repositories.

    Mirrors the conditional-update guards of the SQL repositories so tests
    can assert status monotonicity and atomic completion.
    """

    def __init__(self):
        self.checks: Dict[UUID, SimpleNamespace] = {}
        self.violations: Dict[UUID, List[ViolationData]] = {}
        self.status_history: Dict[UUID, List[str]] = {}
        self.usage: Dict[UUID, int] = {}
        self.fail_complete = False
        self.fail_usage_increment = False
        self.complete_delay = 0.0
        self.complete_calls = 0

    def add_check(
        self,
        text: str = "",
        input_type: str = "text",
        image_url: Optional[str] = None,
        organization_id: Optional[UUID] = None,
    ) -> SimpleNamespace:
        check = SimpleNamespace(
            id=uuid4(),
            organization_id=organization_id or uuid4(),
            user_id=None,
            input_type=input_type,
            original_text=text,
            image_url=image_url,
            extracted_text=None,
            modified_text=None,
            status=CheckStatus.PENDING.value,
            ocr_status=None,
            ocr_metadata=None,
            error_message=None,
            created_at=datetime.now(timezone.utc),
            completed_at=None,
            violations=[],
        )
        self.checks[check.id] = check
        self.status_history[check.id] = [check.status]
        return check

    def set_status(self, check_id: UUID, status: CheckStatus) -> None:
        self.checks[check_id].status = status.value
        self.status_history[check_id].append(status.value)


class FakeCheckRepository:
    def __init__(self, store: InMemoryCheckStore):
        self.store = store

    async def get_by_id(self, check_id: UUID):
        return self.store.checks.get(check_id)

    async def get_with_violations(self, check_id: UUID):
        return self.store.checks.get(check_id)

    async def list_by_status(self, status: CheckStatus, limit: int = 500):
        return [c for c in self.store.checks.values() if c.status == status.value][:limit]

    def _require(self, check_id: UUID, expected: CheckStatus) -> SimpleNamespace:
        check = self.store.checks.get(check_id)
        if check is None or check.status != expected.value:
            raise CheckStateConflictError(f"Check {check_id} is not {expected.value}")
        return check

    async def mark_processing(self, check_id: UUID) -> None:
        self._require(check_id, CheckStatus.PENDING)
        self.store.set_status(check_id, CheckStatus.PROCESSING)

    async def set_ocr_processing(self, check_id: UUID) -> None:
        self._require(check_id, CheckStatus.PROCESSING).ocr_status = OcrStatus.PROCESSING.value

    async def record_ocr_success(self, check_id: UUID, extracted_text: str, metadata: Dict[str, Any]) -> None:
        check = self._require(check_id, CheckStatus.PROCESSING)
        check.extracted_text = extracted_text
        check.ocr_status = OcrStatus.COMPLETED.value
        check.ocr_metadata = metadata

    async def record_ocr_failure(self, check_id: UUID, error: str) -> None:
        check = self._require(check_id, CheckStatus.PROCESSING)
        check.ocr_status = OcrStatus.FAILED.value
        check.ocr_metadata = {"error": error}

    async def complete_check(self, check_id: UUID, modified_text: str, violations: List[ViolationData]) -> None:
        self.store.complete_calls += 1
        if self.store.complete_delay:
            await asyncio.sleep(self.store.complete_delay)
        if self.store.fail_complete:
            raise RepositoryError("violation insert failed")
        check = self._require(check_id, CheckStatus.PROCESSING)
        self.store.violations[check_id] = list(violations)
        check.violations = list(violations)
        check.modified_text = modified_text
        check.completed_at = datetime.now(timezone.utc)
        self.store.set_status(check_id, CheckStatus.COMPLETED)

    async def mark_failed(self, check_id: UUID, error_message: str) -> bool:
        check = self.store.checks.get(check_id)
        if check is None or check.status != CheckStatus.PROCESSING.value:
            return False
        check.error_message = error_message
        if check.ocr_status == OcrStatus.PROCESSING.value:
            check.ocr_status = OcrStatus.FAILED.value
        self.store.set_status(check_id, CheckStatus.FAILED)
        return True


class FakeOrganizationRepository:
    def __init__(self, store: InMemoryCheckStore):
        self.store = store

    async def increment_usage(self, organization_id: UUID) -> bool:
        if self.store.fail_usage_increment:
            raise RepositoryError("usage update failed")
        self.store.usage[organization_id] = self.store.usage.get(organization_id, 0) + 1
        return True


@asynccontextmanager
async def fake_session_factory():
    yield MagicMock()


@pytest.fixture
def check_store():
    """In-memory check store wired into the pipeline's repositories."""
    store = InMemoryCheckStore()
    with patch(
        "adlex.pipeline.check_processor.CheckRepository",
        side_effect=lambda session: FakeCheckRepository(store),
    ), patch(
        "adlex.pipeline.check_processor.OrganizationRepository",
        side_effect=lambda session: FakeOrganizationRepository(store),
    ):
        yield store


@pytest.fixture
def session_factory():
    return fake_session_factory


@pytest.fixture
def pipeline_settings():
    """Pipeline settings with short delays for tests."""
    return settings.pipeline.model_copy(
        update={"text_check_timeout_seconds": 5.0, "image_check_timeout_seconds": 5.0}
    )


@pytest.fixture
def cache_settings():
    return settings.cache.model_copy()


def tool_call_response(modified: str, violations: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Chat-completion body carrying detection results as a tool call."""
    return {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {
                                "name": DETECTION_TOOL_NAME,
                                "arguments": json.dumps(
                                    {"modified": modified, "violations": violations}, ensure_ascii=False
                                ),
                            },
                        }
                    ],
                }
            }
        ]
    }


def content_response(content: str) -> Dict[str, Any]:
    """Chat-completion body carrying plain message content."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    The lifespan is not run, so no database or model provider is needed.
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def tool_call_body():
    """Builder for tool-call completion bodies."""
    return tool_call_response


@pytest.fixture
def content_body():
    """Builder for plain-content completion bodies."""
    return content_response

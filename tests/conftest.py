# ABOUTME: Pytest fixtures and configuration for ArgoCD bridge tests
# ABOUTME: Provides shared fixtures for unit and integration tests

import os
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from argocd_bridge.config import ArgocdInstance, ServerSettings
from argocd_bridge.models import ResourceRef
from argocd_bridge.utils.client import ArgocdClient

BASE_URL = "https://argocd.example.com"
APPS_URL = f"{BASE_URL}/api/v1/applications"


@pytest.fixture
def mock_argocd_instance() -> ArgocdInstance:
    """Create a mock ArgoCD instance configuration."""
    return ArgocdInstance(
        url=BASE_URL,
        token=SecretStr("test-token"),
        insecure=True,
    )


@pytest.fixture
def mock_server_settings(mock_argocd_instance: ArgocdInstance) -> ServerSettings:
    """Create server settings with writes enabled."""
    return ServerSettings(
        argocd_base_url=mock_argocd_instance.url,
        argocd_api_token=mock_argocd_instance.token,
        argocd_insecure=mock_argocd_instance.insecure,
        read_only=False,
    )


@pytest.fixture
def read_only_server_settings(mock_argocd_instance: ArgocdInstance) -> ServerSettings:
    """Create read-only server settings."""
    return ServerSettings(
        argocd_base_url=mock_argocd_instance.url,
        argocd_api_token=mock_argocd_instance.token,
        read_only=True,
    )


@pytest.fixture
def resource_ref() -> ResourceRef:
    """Create a reference to a Deployment managed by an application."""
    return ResourceRef(
        uid="5f0c1d2e-0000-4000-8000-000000000001",
        kind="Deployment",
        namespace="production",
        name="web",
        version="v1",
        group="apps",
    )


@pytest.fixture
def sample_application() -> dict[str, Any]:
    """Create a full ArgoCD application payload as the API returns it."""
    return {
        "metadata": {
            "name": "test-app",
            "namespace": "argocd",
            "labels": {"team": "platform"},
            "creationTimestamp": "2024-01-15T10:30:00Z",
            "annotations": {"notified.notifications.argoproj.io": "{}"},
            "managedFields": [{"manager": "argocd-server"}],
            "resourceVersion": "12345",
        },
        "spec": {
            "project": "default",
            "source": {
                "repoURL": "https://github.com/example/repo.git",
                "path": "manifests",
                "targetRevision": "HEAD",
            },
            "destination": {
                "server": "https://kubernetes.default.svc",
                "namespace": "production",
            },
            "syncPolicy": {"automated": {"prune": True, "selfHeal": True}},
        },
        "status": {
            "sync": {"status": "Synced", "revision": "abc123"},
            "health": {"status": "Healthy"},
            "summary": {"images": ["nginx:1.25"]},
            "resources": [{"kind": "Deployment", "name": "web"}],
            "history": [{"id": 1, "revision": "abc123"}],
        },
    }


@pytest.fixture
def mock_argocd_client(sample_application: dict[str, Any]) -> AsyncMock:
    """Create a mock ArgoCD client."""
    client = AsyncMock(spec=ArgocdClient)

    client.list_applications.return_value = {
        "items": [],
        "metadata": {"totalItems": 0, "returnedItems": 0, "hasMore": False},
    }
    client.get_application.return_value = sample_application
    client.get_resource_tree.return_value = {"nodes": []}
    client.get_managed_resources.return_value = {"items": []}
    client.get_workload_logs.return_value = []
    client.get_application_events.return_value = {"items": []}
    client.get_resource_events.return_value = {"items": []}
    client.get_resource_actions.return_value = {"actions": []}
    client.create_application.return_value = sample_application
    client.update_application.return_value = sample_application
    client.delete_application.return_value = {}
    client.sync_application.return_value = sample_application
    client.run_resource_action.return_value = sample_application

    return client


@pytest.fixture
def mock_context() -> MagicMock:
    """Create a mock MCP context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx


# Integration test fixtures


@pytest.fixture
def argocd_url() -> str | None:
    """Get ArgoCD URL from environment."""
    return os.environ.get("ARGOCD_BASE_URL")


@pytest.fixture
def argocd_token() -> str | None:
    """Get ArgoCD token from environment."""
    return os.environ.get("ARGOCD_API_TOKEN")


@pytest.fixture
def argocd_insecure() -> bool:
    """Get ArgoCD insecure setting from environment."""
    return os.environ.get("ARGOCD_INSECURE", "false").lower() == "true"


@pytest.fixture
async def live_argocd_client(
    argocd_url: str | None,
    argocd_token: str | None,
    argocd_insecure: bool,
) -> AsyncIterator[ArgocdClient | None]:
    """Create a live ArgoCD client for integration tests."""
    if not argocd_url or not argocd_token:
        yield None
        return

    instance = ArgocdInstance(
        url=argocd_url,
        token=SecretStr(argocd_token),
        insecure=argocd_insecure,
    )

    async with ArgocdClient(instance) as client:
        yield client

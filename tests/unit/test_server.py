# ABOUTME: Unit tests for the MCP tool layer
# ABOUTME: Tests tool registration, argument mapping, result encoding, and error reporting

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.server.fastmcp.exceptions import ToolError

from argocd_bridge import server
from argocd_bridge.config import ServerSettings
from argocd_bridge.models import Application, ResourceRef
from argocd_bridge.utils.client import DeleteOptions, ManagedResourceFilters, SyncOptions
from argocd_bridge.utils.http import HttpStatusError, NetworkError
from argocd_bridge.utils.logging import AuditLogger

READ_TOOL_NAMES = {
    "list_applications",
    "get_application",
    "get_application_resource_tree",
    "get_application_managed_resources",
    "get_application_workload_logs",
    "get_application_events",
    "get_resource_events",
    "get_resource_actions",
}

WRITE_TOOL_NAMES = {
    "create_application",
    "update_application",
    "delete_application",
    "sync_application",
    "run_resource_action",
}


@pytest.fixture
def server_with_mocks(
    monkeypatch: pytest.MonkeyPatch,
    mock_argocd_client: AsyncMock,
    mock_server_settings: ServerSettings,
    mock_context: MagicMock,
) -> dict[str, Any]:
    """Setup server module globals with mocks for calling tools directly."""
    audit = MagicMock(spec=AuditLogger)
    monkeypatch.setattr(server, "_settings", mock_server_settings)
    monkeypatch.setattr(server, "_client", mock_argocd_client)
    monkeypatch.setattr(server, "_audit_logger", audit)

    return {"client": mock_argocd_client, "audit": audit, "ctx": mock_context}


def application_model() -> Application:
    return Application.model_validate(
        {
            "metadata": {"name": "web", "namespace": "argocd"},
            "spec": {
                "project": "default",
                "source": {
                    "repoURL": "https://github.com/example/repo.git",
                    "path": "manifests",
                    "targetRevision": "HEAD",
                },
                "syncPolicy": {
                    "syncOptions": [],
                    "retry": {
                        "limit": 2,
                        "backoff": {"duration": "5s", "maxDuration": "1m", "factor": 2},
                    },
                },
                "destination": {"name": "in-cluster", "namespace": "production"},
            },
        }
    )


@pytest.mark.unit
class TestServerState:
    """Tests for module-level accessors."""

    def test_accessors_raise_before_startup(self, monkeypatch: pytest.MonkeyPatch):
        """Test accessors fail clearly before the server is initialized."""
        monkeypatch.setattr(server, "_settings", None)
        monkeypatch.setattr(server, "_client", None)
        monkeypatch.setattr(server, "_audit_logger", None)

        for accessor in (server.get_settings, server.get_client, server.get_audit_logger):
            with pytest.raises(RuntimeError, match="Server not initialized"):
                accessor()

    def test_accessors_return_state(self, server_with_mocks: dict[str, Any]):
        """Test accessors return the installed objects."""
        assert server.get_client() is server_with_mocks["client"]
        assert server.get_audit_logger() is server_with_mocks["audit"]


@pytest.mark.unit
class TestCreateServer:
    """Tests for tool registration."""

    async def test_writable_server_registers_all_tools(
        self, monkeypatch: pytest.MonkeyPatch, mock_server_settings: ServerSettings
    ):
        """Test every tool is exposed when writes are allowed."""
        monkeypatch.setattr(server, "_settings", None)

        mcp = server.create_server(mock_server_settings)
        names = {tool.name for tool in await mcp.list_tools()}

        assert names == READ_TOOL_NAMES | WRITE_TOOL_NAMES

    async def test_read_only_server_hides_write_tools(
        self, monkeypatch: pytest.MonkeyPatch, read_only_server_settings: ServerSettings
    ):
        """Test mutating tools are not registered in read-only mode."""
        monkeypatch.setattr(server, "_settings", None)

        mcp = server.create_server(read_only_server_settings)
        names = {tool.name for tool in await mcp.list_tools()}

        assert names == READ_TOOL_NAMES

    async def test_tool_descriptions_present(
        self, monkeypatch: pytest.MonkeyPatch, mock_server_settings: ServerSettings
    ):
        """Test every tool carries a description for the model."""
        monkeypatch.setattr(server, "_settings", None)

        mcp = server.create_server(mock_server_settings)

        for tool in await mcp.list_tools():
            assert tool.description

    async def test_context_not_exposed_as_tool_input(
        self, monkeypatch: pytest.MonkeyPatch, mock_server_settings: ServerSettings
    ):
        """Test the Context parameter is injected, not advertised as an argument."""
        monkeypatch.setattr(server, "_settings", None)

        mcp = server.create_server(mock_server_settings)

        for tool in await mcp.list_tools():
            properties = tool.inputSchema.get("properties", {})
            assert "ctx" not in properties
            assert "params" in properties


@pytest.mark.unit
class TestReadTools:
    """Tests for read tools."""

    async def test_list_applications(self, server_with_mocks: dict[str, Any]):
        """Test list passes paging through and returns JSON text."""
        params = server.ListApplicationsParams(search="web", limit=10, offset=5)

        result = await server.list_applications(params, server_with_mocks["ctx"])

        server_with_mocks["client"].list_applications.assert_awaited_once_with(
            search="web", limit=10, offset=5
        )
        assert json.loads(result)["metadata"]["totalItems"] == 0
        server_with_mocks["audit"].log_read.assert_called_once_with(
            "list_applications", "search=web"
        )

    async def test_list_applications_all(self, server_with_mocks: dict[str, Any]):
        """Test the audit target without a search term."""
        await server.list_applications(
            server.ListApplicationsParams(), server_with_mocks["ctx"]
        )

        server_with_mocks["audit"].log_read.assert_called_once_with("list_applications", "all")

    async def test_get_application(
        self, server_with_mocks: dict[str, Any], sample_application: dict[str, Any]
    ):
        """Test get returns the full application payload."""
        params = server.GetApplicationParams(
            application_name="test-app", application_namespace="argocd"
        )

        result = await server.get_application(params, server_with_mocks["ctx"])

        server_with_mocks["client"].get_application.assert_awaited_once_with(
            "test-app", "argocd"
        )
        assert json.loads(result) == sample_application

    async def test_get_application_error_becomes_tool_error(
        self, server_with_mocks: dict[str, Any]
    ):
        """Test an API error is reported with its message and audited."""
        server_with_mocks["client"].get_application.side_effect = HttpStatusError(
            status=404, message="application not found"
        )

        with pytest.raises(ToolError, match=r"ArgoCD API error \(404\): application not found"):
            await server.get_application(
                server.GetApplicationParams(application_name="missing"),
                server_with_mocks["ctx"],
            )

        server_with_mocks["audit"].log_error.assert_called_once_with(
            "get_application", "missing", "ArgoCD API error (404): application not found"
        )
        server_with_mocks["audit"].log_read.assert_not_called()

    async def test_network_error_becomes_tool_error(self, server_with_mocks: dict[str, Any]):
        """Test connection failures are reported the same way."""
        server_with_mocks["client"].get_resource_tree.side_effect = NetworkError("refused")

        with pytest.raises(ToolError, match="network error"):
            await server.get_application_resource_tree(
                server.ApplicationNameParams(application_name="web"),
                server_with_mocks["ctx"],
            )

    async def test_managed_resources_filters(self, server_with_mocks: dict[str, Any]):
        """Test filter arguments are mapped onto ManagedResourceFilters."""
        params = server.GetManagedResourcesParams(
            application_name="web", kind="ConfigMap", namespace="production"
        )

        await server.get_application_managed_resources(params, server_with_mocks["ctx"])

        server_with_mocks["client"].get_managed_resources.assert_awaited_once_with(
            "web", ManagedResourceFilters(kind="ConfigMap", namespace="production")
        )

    async def test_workload_logs(
        self, server_with_mocks: dict[str, Any], resource_ref: ResourceRef
    ):
        """Test workload logs are returned as a JSON array."""
        server_with_mocks["client"].get_workload_logs.return_value = [
            {"content": "ready", "podName": "web-1"}
        ]
        params = server.GetWorkloadLogsParams(
            application_name="web",
            application_namespace="argocd",
            resource_ref=resource_ref,
            container="nginx",
        )

        result = await server.get_application_workload_logs(params, server_with_mocks["ctx"])

        assert json.loads(result) == [{"content": "ready", "podName": "web-1"}]
        server_with_mocks["client"].get_workload_logs.assert_awaited_once_with(
            "web", "argocd", resource_ref, "nginx"
        )

    async def test_events(self, server_with_mocks: dict[str, Any]):
        """Test application and resource events tools."""
        ctx = server_with_mocks["ctx"]

        await server.get_application_events(
            server.ApplicationNameParams(application_name="web"), ctx
        )
        await server.get_resource_events(
            server.GetResourceEventsParams(
                application_name="web",
                application_namespace="argocd",
                resource_uid="uid-1",
                resource_namespace="production",
                resource_name="web-7d9c",
            ),
            ctx,
        )

        server_with_mocks["client"].get_application_events.assert_awaited_once_with("web")
        server_with_mocks["client"].get_resource_events.assert_awaited_once_with(
            "web", "argocd", "uid-1", "production", "web-7d9c"
        )

    async def test_resource_actions(
        self, server_with_mocks: dict[str, Any], resource_ref: ResourceRef
    ):
        """Test listing actions for a resource."""
        params = server.ResourceActionParams(
            application_name="web", application_namespace="argocd", resource_ref=resource_ref
        )

        result = await server.get_resource_actions(params, server_with_mocks["ctx"])

        assert json.loads(result) == {"actions": []}

    def test_empty_application_namespace_rejected(self):
        """Test the Application namespace argument may not be empty."""
        with pytest.raises(ValueError):
            server.GetApplicationParams(application_name="web", application_namespace="")

    def test_invalid_paging_rejected(self):
        """Test limit and offset bounds are enforced at the argument layer."""
        with pytest.raises(ValueError):
            server.ListApplicationsParams(limit=0)
        with pytest.raises(ValueError):
            server.ListApplicationsParams(offset=-1)


@pytest.mark.unit
class TestWriteTools:
    """Tests for write tools."""

    async def test_create_application(self, server_with_mocks: dict[str, Any]):
        """Test the validated application is sent in ArgoCD's JSON shape."""
        application = application_model()

        await server.create_application(
            server.CreateApplicationParams(application=application), server_with_mocks["ctx"]
        )

        server_with_mocks["client"].create_application.assert_awaited_once_with(
            application.to_api()
        )
        server_with_mocks["audit"].log_write.assert_called_once_with(
            "create_application", "web", "success", None
        )

    async def test_update_application(self, server_with_mocks: dict[str, Any]):
        """Test update targets the named application."""
        application = application_model()

        await server.update_application(
            server.UpdateApplicationParams(application_name="web", application=application),
            server_with_mocks["ctx"],
        )

        server_with_mocks["client"].update_application.assert_awaited_once_with(
            "web", application.to_api()
        )

    async def test_delete_application(self, server_with_mocks: dict[str, Any]):
        """Test delete options are mapped and audited."""
        params = server.DeleteApplicationParams(application_name="web", cascade=False)

        await server.delete_application(params, server_with_mocks["ctx"])

        server_with_mocks["client"].delete_application.assert_awaited_once_with(
            "web", DeleteOptions(cascade=False)
        )
        server_with_mocks["audit"].log_write.assert_called_once_with(
            "delete_application", "web", "success", {"cascade": False}
        )

    async def test_sync_application_dry_run(self, server_with_mocks: dict[str, Any]):
        """Test a dry-run sync is audited as such."""
        params = server.SyncApplicationParams(application_name="web", dry_run=True)

        await server.sync_application(params, server_with_mocks["ctx"])

        server_with_mocks["client"].sync_application.assert_awaited_once_with(
            "web", SyncOptions(dry_run=True)
        )
        server_with_mocks["audit"].log_write.assert_called_once_with(
            "sync_application", "web", "dry_run", {"dryRun": True}
        )

    async def test_sync_application_error(self, server_with_mocks: dict[str, Any]):
        """Test a failed sync raises ToolError and is not audited as a write."""
        server_with_mocks["client"].sync_application.side_effect = HttpStatusError(
            status=400, message="sync already in progress"
        )

        with pytest.raises(ToolError, match="sync already in progress"):
            await server.sync_application(
                server.SyncApplicationParams(application_name="web"), server_with_mocks["ctx"]
            )

        server_with_mocks["audit"].log_write.assert_not_called()

    async def test_run_resource_action(
        self, server_with_mocks: dict[str, Any], resource_ref: ResourceRef
    ):
        """Test running an action on a resource."""
        params = server.RunResourceActionParams(
            application_name="web",
            application_namespace="argocd",
            resource_ref=resource_ref,
            action="restart",
        )

        await server.run_resource_action(params, server_with_mocks["ctx"])

        server_with_mocks["client"].run_resource_action.assert_awaited_once_with(
            "web", "argocd", resource_ref, "restart"
        )
        server_with_mocks["audit"].log_write.assert_called_once_with(
            "run_resource_action",
            "web",
            "success",
            {"action": "restart", "kind": "Deployment"},
        )

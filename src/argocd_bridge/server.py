# ABOUTME: FastMCP server exposing ArgoCD operations as tools
# ABOUTME: Registers read tools always and write tools unless read-only, wraps errors

"""ArgoCD bridge server - ArgoCD application operations as MCP tools."""

# No `from __future__ import annotations`: FastMCP finds the Context
# parameter by checking each tool's annotations as real classes.

import json
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field

from argocd_bridge.config import ServerSettings, load_settings
from argocd_bridge.models import Application, ApplicationNamespace, ResourceRef
from argocd_bridge.utils.client import (
    ArgocdClient,
    DeleteOptions,
    ManagedResourceFilters,
    SyncOptions,
)
from argocd_bridge.utils.http import ArgocdBridgeError
from argocd_bridge.utils.logging import AuditLogger, configure_logging, set_correlation_id

logger = structlog.get_logger(__name__)

# Global state (initialized by create_server and lifespan)
_settings: ServerSettings | None = None
_client: ArgocdClient | None = None
_audit_logger: AuditLogger | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Open the ArgoCD client for the life of the server and close it on shutdown."""
    global _client, _audit_logger

    settings = get_settings()
    instance = settings.instance
    if instance is None:
        raise RuntimeError("ARGOCD_BASE_URL is not set")

    _audit_logger = AuditLogger(settings.audit_log)

    async with ArgocdClient(instance, timeout=settings.request_timeout) as client:
        _client = client
        logger.info("Connected to ArgoCD", url=instance.url, read_only=settings.read_only)
        try:
            yield {"settings": settings}
        finally:
            _client = None
            logger.info("Disconnected from ArgoCD")


def get_settings() -> ServerSettings:
    """Get server settings."""
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_client() -> ArgocdClient:
    """Get the ArgoCD client opened by the lifespan."""
    if not _client:
        raise RuntimeError("Server not initialized")
    return _client


def get_audit_logger() -> AuditLogger:
    """Get audit logger for recording operations."""
    if not _audit_logger:
        raise RuntimeError("Server not initialized")
    return _audit_logger


def _request_id(ctx: Context) -> str:
    try:
        return str(ctx.request_id)
    except (AttributeError, ValueError):
        # No active request (direct calls in tests or scripts)
        return ""


async def _call_tool(
    action: str,
    target: str,
    ctx: Context,
    call: Callable[[ArgocdClient], Awaitable[Any]],
    *,
    write: bool = False,
    write_result: str = "success",
    details: dict[str, Any] | None = None,
) -> str:
    """
    Run one client call and turn its outcome into a tool result.

    Success returns the payload as JSON text. A bridge error is recorded in
    the audit log and re-raised as ToolError, which FastMCP reports as an
    error result carrying the message.
    """
    set_correlation_id(_request_id(ctx))
    audit = get_audit_logger()

    try:
        result = await call(get_client())
    except ArgocdBridgeError as e:
        audit.log_error(action, target, str(e))
        raise ToolError(str(e)) from e

    if write:
        audit.log_write(action, target, write_result, details)
    else:
        audit.log_read(action, target)

    return json.dumps(result)


# =============================================================================
# READ TOOLS (always registered)
# =============================================================================


class ListApplicationsParams(BaseModel):
    """Parameters for list_applications tool."""

    search: str | None = Field(
        default=None,
        description=(
            "Search applications by name. This is a partial match on the application name "
            'and does not support glob patterns (e.g. "*").'
        ),
    )
    limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of applications to return. Use this to reduce token usage.",
    )
    offset: int | None = Field(
        default=None,
        ge=0,
        description="Number of applications to skip before returning results. Use with limit.",
    )


async def list_applications(params: ListApplicationsParams, ctx: Context) -> str:
    """list_applications returns list of applications"""
    return await _call_tool(
        "list_applications",
        f"search={params.search}" if params.search else "all",
        ctx,
        lambda client: client.list_applications(
            search=params.search, limit=params.limit, offset=params.offset
        ),
    )


class GetApplicationParams(BaseModel):
    """Parameters for get_application tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace | None = None


async def get_application(params: GetApplicationParams, ctx: Context) -> str:
    """
    get_application returns application by application name. Optionally specify the
    application namespace to get applications from non-default namespaces.
    """
    return await _call_tool(
        "get_application",
        params.application_name,
        ctx,
        lambda client: client.get_application(
            params.application_name, params.application_namespace
        ),
    )


class ApplicationNameParams(BaseModel):
    """Parameters for tools that only need an application name."""

    application_name: str = Field(description="Application name")


async def get_application_resource_tree(params: ApplicationNameParams, ctx: Context) -> str:
    """get_application_resource_tree returns resource tree for application by application name"""
    return await _call_tool(
        "get_application_resource_tree",
        params.application_name,
        ctx,
        lambda client: client.get_resource_tree(params.application_name),
    )


class GetManagedResourcesParams(BaseModel):
    """Parameters for get_application_managed_resources tool."""

    application_name: str = Field(description="Application name")
    kind: str | None = Field(
        default=None,
        description='Filter by Kubernetes resource kind (e.g., "ConfigMap", "Secret", "Deployment")',
    )
    namespace: str | None = Field(default=None, description="Filter by Kubernetes namespace")
    name: str | None = Field(default=None, description="Filter by resource name")
    version: str | None = Field(default=None, description="Filter by resource API version")
    group: str | None = Field(default=None, description="Filter by API group")
    app_namespace: str | None = Field(
        default=None, description="Filter by Argo CD application namespace"
    )
    project: str | None = Field(default=None, description="Filter by Argo CD project")


async def get_application_managed_resources(
    params: GetManagedResourcesParams, ctx: Context
) -> str:
    """
    get_application_managed_resources returns managed resources for application by
    application name with optional filtering. Use filters to avoid token limits with large
    applications. Examples: kind="ConfigMap" for config maps only, namespace="production"
    for specific namespace, or combine multiple filters.
    """
    filters = ManagedResourceFilters(
        namespace=params.namespace,
        name=params.name,
        version=params.version,
        group=params.group,
        kind=params.kind,
        app_namespace=params.app_namespace,
        project=params.project,
    )
    return await _call_tool(
        "get_application_managed_resources",
        params.application_name,
        ctx,
        lambda client: client.get_managed_resources(params.application_name, filters),
    )


class GetWorkloadLogsParams(BaseModel):
    """Parameters for get_application_workload_logs tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace
    resource_ref: ResourceRef
    container: str = Field(description="Container name")


async def get_application_workload_logs(params: GetWorkloadLogsParams, ctx: Context) -> str:
    """
    get_application_workload_logs returns logs for application workload (Deployment,
    StatefulSet, Pod, etc.) by application name and resource ref and optionally container name
    """
    return await _call_tool(
        "get_application_workload_logs",
        params.application_name,
        ctx,
        lambda client: client.get_workload_logs(
            params.application_name,
            params.application_namespace,
            params.resource_ref,
            params.container,
        ),
    )


async def get_application_events(params: ApplicationNameParams, ctx: Context) -> str:
    """get_application_events returns events for application by application name"""
    return await _call_tool(
        "get_application_events",
        params.application_name,
        ctx,
        lambda client: client.get_application_events(params.application_name),
    )


class GetResourceEventsParams(BaseModel):
    """Parameters for get_resource_events tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace
    resource_uid: str
    resource_namespace: str
    resource_name: str


async def get_resource_events(params: GetResourceEventsParams, ctx: Context) -> str:
    """get_resource_events returns events for a resource that is managed by an application"""
    return await _call_tool(
        "get_resource_events",
        params.application_name,
        ctx,
        lambda client: client.get_resource_events(
            params.application_name,
            params.application_namespace,
            params.resource_uid,
            params.resource_namespace,
            params.resource_name,
        ),
    )


class ResourceActionParams(BaseModel):
    """Parameters for get_resource_actions tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace
    resource_ref: ResourceRef


async def get_resource_actions(params: ResourceActionParams, ctx: Context) -> str:
    """get_resource_actions returns actions for a resource that is managed by an application"""
    return await _call_tool(
        "get_resource_actions",
        params.application_name,
        ctx,
        lambda client: client.get_resource_actions(
            params.application_name, params.application_namespace, params.resource_ref
        ),
    )


# =============================================================================
# WRITE TOOLS (registered unless MCP_READ_ONLY=true)
# =============================================================================


class CreateApplicationParams(BaseModel):
    """Parameters for create_application tool."""

    application: Application


async def create_application(params: CreateApplicationParams, ctx: Context) -> str:
    """
    create_application creates a new ArgoCD application in the specified namespace. The
    application.metadata.namespace field determines where the Application resource will be
    created (e.g., "argocd", "argocd-apps", or any custom namespace).
    """
    return await _call_tool(
        "create_application",
        params.application.metadata.name,
        ctx,
        lambda client: client.create_application(params.application.to_api()),
        write=True,
    )


class UpdateApplicationParams(BaseModel):
    """Parameters for update_application tool."""

    application_name: str = Field(description="Application name")
    application: Application


async def update_application(params: UpdateApplicationParams, ctx: Context) -> str:
    """update_application updates application"""
    return await _call_tool(
        "update_application",
        params.application_name,
        ctx,
        lambda client: client.update_application(
            params.application_name, params.application.to_api()
        ),
        write=True,
    )


class DeleteApplicationParams(BaseModel):
    """Parameters for delete_application tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace | None = Field(
        default=None,
        description=(
            "The namespace where the application is located. "
            "Required if application is not in the default namespace."
        ),
    )
    cascade: bool | None = Field(
        default=None, description="Whether to cascade the deletion to child resources"
    )
    propagation_policy: str | None = Field(
        default=None,
        description='Deletion propagation policy (e.g., "Foreground", "Background", "Orphan")',
    )


async def delete_application(params: DeleteApplicationParams, ctx: Context) -> str:
    """
    delete_application deletes application. Specify applicationNamespace if the application
    is in a non-default namespace to avoid permission errors.
    """
    options = DeleteOptions(
        app_namespace=params.application_namespace,
        cascade=params.cascade,
        propagation_policy=params.propagation_policy,
    )
    return await _call_tool(
        "delete_application",
        params.application_name,
        ctx,
        lambda client: client.delete_application(params.application_name, options),
        write=True,
        details=options.to_params(),
    )


class SyncApplicationParams(BaseModel):
    """Parameters for sync_application tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace | None = Field(
        default=None,
        description=(
            "The namespace where the application is located. "
            "Required if application is not in the default namespace."
        ),
    )
    dry_run: bool | None = Field(
        default=None, description="Perform a dry run sync without applying changes"
    )
    prune: bool | None = Field(
        default=None, description="Remove resources that are no longer defined in the source"
    )
    revision: str | None = Field(
        default=None, description="Sync to a specific revision instead of the latest"
    )
    sync_options: list[str] | None = Field(
        default=None,
        description=(
            'Additional sync options (e.g., ["CreateNamespace=true", '
            '"PrunePropagationPolicy=foreground"])'
        ),
    )


async def sync_application(params: SyncApplicationParams, ctx: Context) -> str:
    """
    sync_application syncs application. Specify applicationNamespace if the application is
    in a non-default namespace to avoid permission errors.
    """
    options = SyncOptions(
        app_namespace=params.application_namespace,
        dry_run=params.dry_run,
        prune=params.prune,
        revision=params.revision,
        sync_options=params.sync_options,
    )
    return await _call_tool(
        "sync_application",
        params.application_name,
        ctx,
        lambda client: client.sync_application(params.application_name, options),
        write=True,
        write_result="dry_run" if params.dry_run else "success",
        details=options.to_body(),
    )


class RunResourceActionParams(BaseModel):
    """Parameters for run_resource_action tool."""

    application_name: str = Field(description="Application name")
    application_namespace: ApplicationNamespace
    resource_ref: ResourceRef
    action: str = Field(description='Action name, e.g. "restart"')


async def run_resource_action(params: RunResourceActionParams, ctx: Context) -> str:
    """run_resource_action runs an action on a resource"""
    return await _call_tool(
        "run_resource_action",
        params.application_name,
        ctx,
        lambda client: client.run_resource_action(
            params.application_name,
            params.application_namespace,
            params.resource_ref,
            params.action,
        ),
        write=True,
        details={"action": params.action, "kind": params.resource_ref.kind},
    )


READ_TOOLS = (
    list_applications,
    get_application,
    get_application_resource_tree,
    get_application_managed_resources,
    get_application_workload_logs,
    get_application_events,
    get_resource_events,
    get_resource_actions,
)

WRITE_TOOLS = (
    create_application,
    update_application,
    delete_application,
    sync_application,
    run_resource_action,
)


def create_server(settings: ServerSettings | None = None) -> FastMCP:
    """Build the MCP server; write tools are left out in read-only mode."""
    global _settings

    _settings = settings or load_settings()
    server = FastMCP(_settings.server_name, lifespan=lifespan)

    tools = READ_TOOLS if _settings.read_only else READ_TOOLS + WRITE_TOOLS
    for tool in tools:
        server.add_tool(tool)

    logger.debug("Registered tools", count=len(tools), read_only=_settings.read_only)
    return server


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the ArgoCD bridge over stdio."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    logger.info("ArgoCD bridge starting", read_only=settings.read_only)

    try:
        create_server(settings).run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()

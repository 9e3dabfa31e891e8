# ABOUTME: ArgoCD domain client mapping application operations onto REST calls
# ABOUTME: Builds paths and parameters, strips and paginates listings, collects log streams

"""
ArgoCD domain client.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

One method per ArgoCD capability. Each method:

1. Builds the API path from the application name
2. Builds query parameters or a JSON body, leaving out anything the caller
   did not supply
3. Calls the transport (utils/http.py)
4. Reshapes the response where that saves the caller tokens

Errors from the transport (NetworkError, HttpStatusError, DecodeError) are
not caught here. They reach the caller unchanged.

=============================================================================
ARGOCD REST API USED
=============================================================================

    GET    /api/v1/applications                              list
    GET    /api/v1/applications/{name}                       get
    POST   /api/v1/applications                              create
    PUT    /api/v1/applications/{name}                       update
    DELETE /api/v1/applications/{name}                       delete
    POST   /api/v1/applications/{name}/sync                  sync
    GET    /api/v1/applications/{name}/resource-tree         resource tree
    GET    /api/v1/applications/{name}/managed-resources     managed resources
    GET    /api/v1/applications/{name}/logs                  logs (streamed)
    GET    /api/v1/applications/{name}/pods/{pod}/logs       pod logs (streamed)
    GET    /api/v1/applications/{name}/events                events
    GET    /api/v1/applications/{name}/resource/actions      list actions
    POST   /api/v1/applications/{name}/resource/actions      run action

=============================================================================
PRESENT VS ABSENT
=============================================================================

ArgoCD treats a missing option differently from an option set to its zero
value. Leaving "prune" out of a sync request keeps the project default;
sending "prune": false turns pruning off. The option classes below
therefore keep None as "not specified" and drop it when serializing,
while False and [] are sent as given.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import structlog

from argocd_bridge.utils.http import HttpClient

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from argocd_bridge.config import ArgocdInstance
    from argocd_bridge.models import ResourceRef
    from argocd_bridge.utils.http import QueryParams

logger = structlog.get_logger(__name__)

APPLICATIONS_PATH = "/api/v1/applications"

# Fixed window used by the non-following log helpers
DEFAULT_TAIL_LINES = 100


# =============================================================================
# OPTION STRUCTS
# =============================================================================


@dataclass(frozen=True)
class DeleteOptions:
    """
    Query options for deleting an application.

    propagation_policy is passed through as-is ("Foreground", "Background",
    "Orphan"); ArgoCD validates the value.
    """

    app_namespace: str | None = None
    cascade: bool | None = None
    propagation_policy: str | None = None

    def to_params(self) -> dict[str, str | bool]:
        params: dict[str, str | bool] = {}
        if self.app_namespace:
            params["appNamespace"] = self.app_namespace
        if self.cascade is not None:
            params["cascade"] = self.cascade
        if self.propagation_policy:
            params["propagationPolicy"] = self.propagation_policy
        return params


@dataclass(frozen=True)
class SyncOptions:
    """
    Body options for a sync request.

    Example:
        SyncOptions(dry_run=True).to_body()
        # {"dryRun": True}

        SyncOptions(sync_options=["CreateNamespace=true"]).to_body()
        # {"syncOptions": ["CreateNamespace=true"]}
    """

    app_namespace: str | None = None
    dry_run: bool | None = None
    prune: bool | None = None
    revision: str | None = None
    sync_options: list[str] | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.app_namespace:
            body["appNamespace"] = self.app_namespace
        if self.dry_run is not None:
            body["dryRun"] = self.dry_run
        if self.prune is not None:
            body["prune"] = self.prune
        if self.revision:
            body["revision"] = self.revision
        if self.sync_options is not None:
            body["syncOptions"] = list(self.sync_options)
        return body


@dataclass(frozen=True)
class ManagedResourceFilters:
    """Filters for the managed-resources endpoint. Empty strings are ignored."""

    namespace: str | None = None
    name: str | None = None
    version: str | None = None
    group: str | None = None
    kind: str | None = None
    app_namespace: str | None = None
    project: str | None = None

    def to_params(self) -> dict[str, str]:
        candidates = {
            "namespace": self.namespace,
            "name": self.name,
            "version": self.version,
            "group": self.group,
            "kind": self.kind,
            "appNamespace": self.app_namespace,
            "project": self.project,
        }
        return {key: value for key, value in candidates.items() if value}


# =============================================================================
# RESPONSE SHAPING
# =============================================================================

# Fields kept per section when listing applications. Everything else
# (managedFields, annotations, status.resources, history, ...) is dropped.
_LIST_PROJECTION: dict[str, tuple[str, ...]] = {
    "metadata": ("name", "namespace", "labels", "creationTimestamp"),
    "spec": ("project", "source", "destination"),
    "status": ("sync", "health", "summary"),
}


def strip_application(app: dict[str, Any]) -> dict[str, Any]:
    """
    Reduce an application to the fields needed to identify and triage it.

    Fields the server did not send stay absent rather than becoming None.
    """
    stripped: dict[str, Any] = {}
    for section, keys in _LIST_PROJECTION.items():
        source = app.get(section) or {}
        stripped[section] = {key: source[key] for key in keys if key in source}
    return stripped


def check_page_bounds(limit: int | None, offset: int | None) -> None:
    """Reject a limit below 1 or a negative offset with ValueError."""
    if limit is not None and limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")
    if offset is not None and offset < 0:
        raise ValueError(f"offset must be zero or greater, got {offset}")


def paginate(
    items: list[Any],
    limit: int | None = None,
    offset: int | None = None,
) -> tuple[list[Any], dict[str, Any]]:
    """
    Slice a full item list and describe the slice.

    start = offset or 0
    end   = start + limit if a limit is given, else len(items)

    Returns:
        (page, {"totalItems", "returnedItems", "hasMore"})

    Raises:
        ValueError: If limit < 1 or offset < 0
    """
    check_page_bounds(limit, offset)

    total = len(items)
    start = offset or 0
    end = start + limit if limit else total
    page = items[start:end]
    return page, {
        "totalItems": total,
        "returnedItems": len(page),
        "hasMore": end < total,
    }


def _app_path(name: str, *segments: str) -> str:
    """
    Path under one application, each segment percent-encoded.

        _app_path("web", "pods", "web-7d9c", "logs")
        # "/api/v1/applications/web/pods/web-7d9c/logs"

    A "?", "#" or "/" inside a name stays part of that path segment.
    """
    parts = (name, *segments)
    return "/".join([APPLICATIONS_PATH, *(quote(part, safe="") for part in parts)])


def _resource_params(app_namespace: str, resource_ref: ResourceRef) -> dict[str, str]:
    """Query parameters identifying one resource of an application."""
    return {
        "appNamespace": app_namespace,
        "namespace": resource_ref.namespace,
        "resourceName": resource_ref.name,
        "group": resource_ref.group,
        "kind": resource_ref.kind,
        "version": resource_ref.version,
    }


# =============================================================================
# ARGOCD CLIENT
# =============================================================================


class ArgocdClient:
    """
    Async ArgoCD API client.

    LIFECYCLE:
    ----------
        async with ArgocdClient(instance) as client:
            apps = await client.list_applications(limit=10)

    Every method is a single round trip (or, for logs, one stream read to
    the end). The client keeps no state between calls, so concurrent calls
    on one instance are independent.
    """

    def __init__(
        self,
        instance: ArgocdInstance,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            instance: ArgoCD URL, token and TLS setting
            timeout: HTTP timeout in seconds
            transport: Replacement httpx transport, for tests
        """
        self._instance = instance
        self._http = HttpClient(
            instance.url,
            instance.token.get_secret_value(),
            timeout=timeout,
            verify=not instance.insecure,
            transport=transport,
        )

    async def __aenter__(self) -> ArgocdClient:
        await self._http.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._http.__aexit__(*args)

    @property
    def http(self) -> HttpClient:
        return self._http

    # =========================================================================
    # APPLICATIONS
    # =========================================================================

    async def list_applications(
        self,
        search: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        """
        List applications in a reduced form, one page at a time.

        ArgoCD API: GET /api/v1/applications

        The full list is fetched from ArgoCD on every call; limit and
        offset only bound what is returned to the caller. Each item keeps
        name, namespace, labels, creation time, project, source,
        destination, and sync/health/summary status.

        Args:
            search: Partial, case-sensitive match on the application name.
                    Glob patterns are not supported. Passed to ArgoCD as-is.
            limit: Maximum number of items to return
            offset: Number of items to skip

        Returns:
            {"items": [...],
             "metadata": {"totalItems": 12, "returnedItems": 10, "hasMore": true}}
            metadata also carries "resourceVersion" when ArgoCD sends one.

        Raises:
            ValueError: If limit < 1 or offset < 0, before any request is sent
            NetworkError, HttpStatusError, DecodeError: From the transport
        """
        check_page_bounds(limit, offset)
        params = {"search": search} if search else None
        response = await self._http.get(APPLICATIONS_PATH, params)

        body = response.body if isinstance(response.body, dict) else {}
        stripped = [strip_application(app) for app in body.get("items") or []]
        items, page_info = paginate(stripped, limit=limit, offset=offset)

        metadata: dict[str, Any] = {}
        resource_version = (body.get("metadata") or {}).get("resourceVersion")
        if resource_version is not None:
            metadata["resourceVersion"] = resource_version
        metadata.update(page_info)

        logger.debug(
            "Listed applications",
            total=page_info["totalItems"],
            returned=page_info["returnedItems"],
        )
        return {"items": items, "metadata": metadata}

    async def get_application(self, name: str, app_namespace: str | None = None) -> Any:
        """
        Get one application, unabridged.

        ArgoCD API: GET /api/v1/applications/{name}
        """
        params = {"appNamespace": app_namespace} if app_namespace else None
        response = await self._http.get(_app_path(name), params)
        return response.body

    async def create_application(self, application: dict[str, Any]) -> Any:
        """
        Create an application.

        ArgoCD API: POST /api/v1/applications

        application["metadata"]["namespace"] decides which namespace the
        Application resource is created in.
        """
        response = await self._http.post(APPLICATIONS_PATH, body=application)
        return response.body

    async def update_application(self, name: str, application: dict[str, Any]) -> Any:
        """
        Replace an application's definition.

        ArgoCD API: PUT /api/v1/applications/{name}
        """
        response = await self._http.put(_app_path(name), body=application)
        return response.body

    async def delete_application(self, name: str, options: DeleteOptions | None = None) -> Any:
        """
        Delete an application.

        ArgoCD API: DELETE /api/v1/applications/{name}

        CASCADE:
        --------
        cascade=True deletes the workloads the application manages as well;
        cascade=False removes only the Application and orphans its
        resources. Leaving it unset lets ArgoCD apply its default.
        """
        params = options.to_params() if options else None
        response = await self._http.delete(_app_path(name), params or None)
        return response.body

    async def sync_application(self, name: str, options: SyncOptions | None = None) -> Any:
        """
        Trigger a sync.

        ArgoCD API: POST /api/v1/applications/{name}/sync

        Only the options that were supplied are sent. With no options the
        request carries no body, and ArgoCD syncs with the application's
        own settings.

        Returns:
            The application, with the new operation in its status
        """
        body = options.to_body() if options else None
        response = await self._http.post(_app_path(name, "sync"), body=body or None)
        return response.body

    # =========================================================================
    # RESOURCES
    # =========================================================================

    async def get_resource_tree(self, name: str) -> Any:
        """
        Get the application's resource hierarchy (Deployment -> ReplicaSet -> Pod).

        ArgoCD API: GET /api/v1/applications/{name}/resource-tree
        """
        response = await self._http.get(_app_path(name, "resource-tree"))
        return response.body

    async def get_managed_resources(
        self,
        name: str,
        filters: ManagedResourceFilters | None = None,
    ) -> Any:
        """
        Get live and target state of the application's resources.

        ArgoCD API: GET /api/v1/applications/{name}/managed-resources

        Large applications produce large responses; filter by kind or
        namespace to keep them small.
        """
        params = filters.to_params() if filters else None
        response = await self._http.get(
            _app_path(name, "managed-resources"), params or None
        )
        return response.body

    async def get_resource_actions(
        self,
        name: str,
        app_namespace: str,
        resource_ref: ResourceRef,
    ) -> Any:
        """
        List the actions available on one resource (e.g. "restart").

        ArgoCD API: GET /api/v1/applications/{name}/resource/actions
        """
        response = await self._http.get(
            _app_path(name, "resource", "actions"),
            _resource_params(app_namespace, resource_ref),
        )
        return response.body

    async def run_resource_action(
        self,
        name: str,
        app_namespace: str,
        resource_ref: ResourceRef,
        action: str,
    ) -> Any:
        """
        Run a named action on one resource.

        ArgoCD API: POST /api/v1/applications/{name}/resource/actions

        The body is the action name as a JSON string, e.g. "restart".

        Returns:
            The updated application
        """
        response = await self._http.post(
            _app_path(name, "resource", "actions"),
            _resource_params(app_namespace, resource_ref),
            body=action,
        )
        return response.body

    # =========================================================================
    # EVENTS
    # =========================================================================

    async def get_application_events(self, name: str) -> Any:
        """
        Get Kubernetes events for the application.

        ArgoCD API: GET /api/v1/applications/{name}/events
        """
        response = await self._http.get(_app_path(name, "events"))
        return response.body

    async def get_resource_events(
        self,
        name: str,
        app_namespace: str,
        resource_uid: str,
        resource_namespace: str,
        resource_name: str,
    ) -> Any:
        """
        Get Kubernetes events for one resource managed by the application.

        ArgoCD API: GET /api/v1/applications/{name}/events
        """
        params: QueryParams = {
            "appNamespace": app_namespace,
            "resourceNamespace": resource_namespace,
            "resourceUID": resource_uid,
            "resourceName": resource_name,
        }
        response = await self._http.get(_app_path(name, "events"), params)
        return response.body

    # =========================================================================
    # LOGS
    # =========================================================================

    async def stream_logs(
        self,
        name: str,
        on_record: Callable[[dict[str, Any]], None],
        *,
        app_namespace: str | None = None,
        resource_ref: ResourceRef | None = None,
        container: str | None = None,
        follow: bool = False,
        tail_lines: int = DEFAULT_TAIL_LINES,
    ) -> int:
        """
        Stream application log entries to a callback.

        ArgoCD API: GET /api/v1/applications/{name}/logs (chunked)

        Each entry looks like:
            {"content": "GET /healthz 200", "podName": "web-7d9c", "timeStamp": "..."}

        With follow=True the call only returns when ArgoCD or the network
        closes the stream.

        Args:
            name: Application name
            on_record: Called once per entry, in order
            app_namespace: Namespace of the Application resource
            resource_ref: Narrow to one workload
            container: Narrow to one container
            follow: Keep the stream open for new lines
            tail_lines: Number of past lines to start with

        Returns:
            Number of entries delivered
        """
        params: dict[str, Any] = {}
        if app_namespace:
            params["appNamespace"] = app_namespace
        if resource_ref is not None:
            params.update(
                {
                    "namespace": resource_ref.namespace,
                    "resourceName": resource_ref.name,
                    "group": resource_ref.group,
                    "kind": resource_ref.kind,
                    "version": resource_ref.version,
                }
            )
        params["follow"] = follow
        params["tailLines"] = tail_lines
        if container:
            params["container"] = container

        return await self._http.get_stream(_app_path(name, "logs"), params, on_record)

    async def get_application_logs(self, name: str) -> list[dict[str, Any]]:
        """Collect the last 100 log entries across the application's pods."""
        logs: list[dict[str, Any]] = []
        await self.stream_logs(name, logs.append)
        return logs

    async def get_workload_logs(
        self,
        name: str,
        app_namespace: str,
        resource_ref: ResourceRef,
        container: str,
    ) -> list[dict[str, Any]]:
        """
        Collect the last 100 log entries of one workload container.

        resource_ref may point at a Deployment, StatefulSet, Pod, etc.;
        ArgoCD resolves it to the pods underneath.
        """
        logs: list[dict[str, Any]] = []
        await self.stream_logs(
            name,
            logs.append,
            app_namespace=app_namespace,
            resource_ref=resource_ref,
            container=container,
        )
        return logs

    async def get_pod_logs(self, name: str, pod_name: str) -> list[dict[str, Any]]:
        """
        Collect the last 100 log entries of one pod.

        ArgoCD API: GET /api/v1/applications/{name}/pods/{pod}/logs (chunked)
        """
        logs: list[dict[str, Any]] = []
        await self._http.get_stream(
            _app_path(name, "pods", pod_name, "logs"),
            {"follow": False, "tailLines": DEFAULT_TAIL_LINES},
            logs.append,
        )
        return logs

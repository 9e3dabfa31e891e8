# ABOUTME: Pydantic schemas for ArgoCD Application payloads and resource references
# ABOUTME: Validates tool arguments before they reach the API client

"""
Request schemas for ArgoCD objects.

The client treats applications as plain dictionaries. These models describe
the subset of fields a caller has to supply when creating or updating an
Application, and the identifier of a single managed resource. Field names
follow ArgoCD's camelCase through aliases, so

    Application.model_validate({"metadata": {...}, "spec": {...}})

accepts the same JSON the ArgoCD API does, and `to_api()` produces it again.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

ApplicationNamespace = Annotated[
    str,
    Field(
        min_length=1,
        description=(
            "The namespace of the Application resource itself (not the destination "
            "namespace of its workloads), e.g. 'argocd' or 'argocd-apps'."
        ),
    ),
]


class _ArgocdModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ResourceRef(_ArgocdModel):
    """Identifies one resource managed by an application."""

    uid: str
    kind: str
    namespace: str
    name: str
    version: str
    group: str


class ApplicationMetadata(_ArgocdModel):
    name: str
    namespace: ApplicationNamespace


class ApplicationSource(_ArgocdModel):
    repo_url: str = Field(alias="repoURL")
    path: str
    target_revision: str = Field(alias="targetRevision")


class AutomatedSyncPolicy(_ArgocdModel):
    prune: bool
    self_heal: bool = Field(alias="selfHeal")


class RetryBackoff(_ArgocdModel):
    duration: str
    max_duration: str = Field(alias="maxDuration")
    factor: float


class RetryStrategy(_ArgocdModel):
    limit: int
    backoff: RetryBackoff


class SyncPolicy(_ArgocdModel):
    sync_options: list[str] = Field(alias="syncOptions")
    automated: AutomatedSyncPolicy | None = None
    retry: RetryStrategy


class ApplicationDestination(_ArgocdModel):
    """Target cluster and namespace. Exactly one of server or name is set."""

    server: str | None = None
    namespace: str | None = None
    name: str | None = None

    @model_validator(mode="after")
    def check_server_or_name(self) -> ApplicationDestination:
        if bool(self.server) == bool(self.name):
            raise ValueError("Only one of server or name must be specified in destination")
        return self


class ApplicationSpec(_ArgocdModel):
    project: str
    source: ApplicationSource
    sync_policy: SyncPolicy = Field(alias="syncPolicy")
    destination: ApplicationDestination


class Application(_ArgocdModel):
    """
    An ArgoCD Application as accepted by create and update.

    The retry policy is data for ArgoCD's own controller; nothing in this
    package retries on its behalf.
    """

    metadata: ApplicationMetadata
    spec: ApplicationSpec

    def to_api(self) -> dict[str, Any]:
        """Dump to ArgoCD's JSON shape, leaving out fields that were not given."""
        return self.model_dump(by_alias=True, exclude_none=True)

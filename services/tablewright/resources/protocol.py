"""
Resource store protocol and types for tablewright.

Defines the ResourceStore Protocol the controller core is written against,
along with shared data types and exceptions. The Kubernetes-backed
implementation lives in tablewright.resources.kube; tests substitute an
in-memory store.
"""

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from tablewright.resources.models import Database, Table

# --- Data Types ---


class ResourceKind(StrEnum):
    TABLE = "Table"
    POD = "Pod"


@dataclass(frozen=True)
class ObjectRef:
    """Namespace/name address of a reconciliation target."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class WatchEvent:
    """A single change notification from a watch."""

    type: str  # ADDED, MODIFIED, DELETED
    kind: ResourceKind
    ref: ObjectRef
    labels: dict[str, str] = field(default_factory=dict)


# --- Exceptions ---


class ResourceStoreError(Exception):
    """Base exception for resource store operations."""


class ResourceNotFoundError(ResourceStoreError):
    """Raised when a requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} not found: {namespace}/{name}")


class ResourceAlreadyExistsError(ResourceStoreError):
    """Raised when creating an object whose name is already taken."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} already exists: {namespace}/{name}")


class ResourceConflictError(ResourceStoreError):
    """Raised when an update carries a stale resourceVersion."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} was modified concurrently: {namespace}/{name}")


# --- Protocol ---


@runtime_checkable
class LogStream(Protocol):
    """A one-shot stream over a terminated pod's log output."""

    async def read_text(self) -> str:
        """Read the stream to the end and decode it as UTF-8."""
        ...


@runtime_checkable
class ResourceStore(Protocol):
    """Protocol defining the resource store interface.

    All methods are async. Pods and ConfigMaps are exchanged as manifest
    dicts; Tables and Databases as typed models.
    """

    async def get_table(self, namespace: str, name: str) -> Table:
        """Fetch a Table.

        Raises:
            ResourceNotFoundError: If the table does not exist.
        """
        ...

    async def update_table_status(self, table: Table) -> Table:
        """Persist table.status, guarded by table.metadata.resource_version.

        Raises:
            ResourceConflictError: If the table changed since it was read.
            ResourceNotFoundError: If the table has been deleted.
        """
        ...

    async def get_database(self, namespace: str, name: str) -> Database:
        """Fetch a Database.

        Raises:
            ResourceNotFoundError: If the database does not exist.
        """
        ...

    async def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        """Fetch a Secret's decoded data.

        Raises:
            ResourceNotFoundError: If the secret does not exist.
        """
        ...

    async def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        ...

    async def create_pod(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create a pod.

        Raises:
            ResourceAlreadyExistsError: If a pod of that name exists.
        """
        ...

    async def delete_pod(self, namespace: str, name: str) -> None:
        ...

    async def get_config_map(self, namespace: str, name: str) -> dict[str, Any]:
        ...

    async def create_config_map(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        ...

    async def delete_config_map(self, namespace: str, name: str) -> None:
        ...

    def pod_logs(self, namespace: str, name: str) -> AbstractAsyncContextManager[LogStream]:
        """Open the combined log output of a pod.

        The stream is closed when the context exits, on success or error.
        """
        ...

    def stream_events(
        self, kind: ResourceKind, label_selector: str = ""
    ) -> AsyncIterator[WatchEvent]:
        """Watch a resource kind, yielding change events until cancelled."""
        ...

    async def close(self) -> None:
        """Release any resources held by the backend."""
        ...

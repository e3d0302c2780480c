"""Kubernetes-backed ResourceStore.

Uses the kubernetes Python client. The client is synchronous, so every call
runs in the default executor to keep the controller's event loop free.
"""

import asyncio
import base64
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from tablewright.logging_config import get_logger
from tablewright.resources.models import (
    API_VERSION,
    DATABASES_GROUP,
    SCHEMAS_GROUP,
    Database,
    Table,
)
from tablewright.resources.protocol import (
    ObjectRef,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceKind,
    ResourceNotFoundError,
    ResourceStoreError,
    WatchEvent,
)

logger = get_logger(__name__)

TABLES_PLURAL = "tables"
DATABASES_PLURAL = "databases"


def load_k8s_config() -> None:
    """Load Kubernetes client configuration.

    Uses in-cluster config when running in K8s, falls back to kubeconfig for local dev.
    """
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster K8s config")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.info("Loaded kubeconfig")
        except config.ConfigException:
            logger.error("Failed to load K8s config")
            raise


def _translate(e: ApiException, kind: str, namespace: str, name: str, action: str) -> Exception:
    if e.status == 404:
        return ResourceNotFoundError(kind, namespace, name)
    if e.status == 409 and action == "create":
        return ResourceAlreadyExistsError(kind, namespace, name)
    if e.status == 409:
        return ResourceConflictError(kind, namespace, name)
    return ResourceStoreError(f"Failed to {action} {kind} {namespace}/{name}: {e.status} {e.reason}")


def _event_metadata(obj: Any) -> tuple[str, str, dict[str, str], str | None]:
    """Extract (namespace, name, labels, resourceVersion) from a watched object."""
    if isinstance(obj, dict):
        meta = obj.get("metadata") or {}
        return (
            meta.get("namespace", ""),
            meta.get("name", ""),
            meta.get("labels") or {},
            meta.get("resourceVersion"),
        )
    meta = obj.metadata
    return meta.namespace or "", meta.name or "", meta.labels or {}, meta.resource_version


class _HTTPLogStream:
    def __init__(self, response: Any) -> None:
        self._response = response

    async def read_text(self) -> str:
        loop = asyncio.get_event_loop()
        try:
            data = await loop.run_in_executor(None, self._response.read)
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ResourceStoreError(f"Failed to read pod log stream: {e}") from e
        return data.decode("utf-8", errors="replace")


class KubeResourceStore:
    """ResourceStore over the Kubernetes API."""

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        watch_namespace: str = "",
        watch_timeout_seconds: int = 300,
        watch_read_timeout_seconds: float = 10.0,
    ) -> None:
        if core_api is None or custom_api is None:
            load_k8s_config()
        self._core = core_api or client.CoreV1Api()
        self._custom = custom_api or client.CustomObjectsApi()
        self._watch_namespace = watch_namespace
        self._watch_timeout_seconds = watch_timeout_seconds
        self._watch_read_timeout_seconds = watch_read_timeout_seconds

    async def _run(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn)

    def _serialize(self, obj: Any) -> dict[str, Any]:
        return self._core.api_client.sanitize_for_serialization(obj)

    # --- Custom resources ---

    async def get_table(self, namespace: str, name: str) -> Table:
        try:
            obj = await self._run(
                lambda: self._custom.get_namespaced_custom_object(
                    SCHEMAS_GROUP, API_VERSION, namespace, TABLES_PLURAL, name
                )
            )
        except ApiException as e:
            raise _translate(e, "Table", namespace, name, "get") from e
        return Table.model_validate(obj)

    async def update_table_status(self, table: Table) -> Table:
        namespace, name = table.namespace, table.name
        body = table.to_manifest()
        try:
            obj = await self._run(
                lambda: self._custom.replace_namespaced_custom_object_status(
                    SCHEMAS_GROUP, API_VERSION, namespace, TABLES_PLURAL, name, body
                )
            )
        except ApiException as e:
            raise _translate(e, "Table", namespace, name, "update") from e
        return Table.model_validate(obj)

    async def get_database(self, namespace: str, name: str) -> Database:
        try:
            obj = await self._run(
                lambda: self._custom.get_namespaced_custom_object(
                    DATABASES_GROUP, API_VERSION, namespace, DATABASES_PLURAL, name
                )
            )
        except ApiException as e:
            raise _translate(e, "Database", namespace, name, "get") from e
        return Database.model_validate(obj)

    # --- Core resources ---

    async def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        try:
            secret = await self._run(
                lambda: self._core.read_namespaced_secret(name=name, namespace=namespace)
            )
        except ApiException as e:
            raise _translate(e, "Secret", namespace, name, "get") from e
        return {
            key: base64.b64decode(value).decode("utf-8")
            for key, value in (secret.data or {}).items()
        }

    async def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            pod = await self._run(
                lambda: self._core.read_namespaced_pod(name=name, namespace=namespace)
            )
        except ApiException as e:
            raise _translate(e, "Pod", namespace, name, "get") from e
        return self._serialize(pod)

    async def create_pod(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            pod = await self._run(
                lambda: self._core.create_namespaced_pod(namespace=namespace, body=body)
            )
        except ApiException as e:
            raise _translate(e, "Pod", namespace, name, "create") from e
        logger.info("Created pod", pod=name, namespace=namespace)
        return self._serialize(pod)

    async def delete_pod(self, namespace: str, name: str) -> None:
        try:
            await self._run(
                lambda: self._core.delete_namespaced_pod(name=name, namespace=namespace)
            )
        except ApiException as e:
            raise _translate(e, "Pod", namespace, name, "delete") from e
        logger.info("Deleted pod", pod=name, namespace=namespace)

    async def get_config_map(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            cm = await self._run(
                lambda: self._core.read_namespaced_config_map(name=name, namespace=namespace)
            )
        except ApiException as e:
            raise _translate(e, "ConfigMap", namespace, name, "get") from e
        return self._serialize(cm)

    async def create_config_map(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            cm = await self._run(
                lambda: self._core.create_namespaced_config_map(namespace=namespace, body=body)
            )
        except ApiException as e:
            raise _translate(e, "ConfigMap", namespace, name, "create") from e
        logger.info("Created config map", config_map=name, namespace=namespace)
        return self._serialize(cm)

    async def delete_config_map(self, namespace: str, name: str) -> None:
        try:
            await self._run(
                lambda: self._core.delete_namespaced_config_map(name=name, namespace=namespace)
            )
        except ApiException as e:
            raise _translate(e, "ConfigMap", namespace, name, "delete") from e
        logger.info("Deleted config map", config_map=name, namespace=namespace)

    @asynccontextmanager
    async def pod_logs(self, namespace: str, name: str) -> AsyncIterator[_HTTPLogStream]:
        try:
            response = await self._run(
                lambda: self._core.read_namespaced_pod_log(
                    name=name, namespace=namespace, _preload_content=False
                )
            )
        except ApiException as e:
            raise _translate(e, "Pod", namespace, name, "read logs of") from e
        try:
            yield _HTTPLogStream(response)
        finally:
            response.close()
            response.release_conn()

    # --- Watches ---

    def _list_function(self, kind: ResourceKind) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        ns = self._watch_namespace
        if kind == ResourceKind.TABLE:
            if ns:
                return self._custom.list_namespaced_custom_object, (
                    SCHEMAS_GROUP, API_VERSION, ns, TABLES_PLURAL,
                )
            return self._custom.list_cluster_custom_object, (
                SCHEMAS_GROUP, API_VERSION, TABLES_PLURAL,
            )
        if ns:
            return self._core.list_namespaced_pod, (ns,)
        return self._core.list_pod_for_all_namespaces, ()

    async def stream_events(
        self, kind: ResourceKind, label_selector: str = ""
    ) -> AsyncIterator[WatchEvent]:
        """Watch a kind forever, restarting after server-side timeouts.

        The blocking watch runs on an executor thread and hands events to the
        event loop through a queue. A 410 Gone restarts from a fresh list.
        Socket reads are bounded so an idle watch notices a stop request
        within the read timeout instead of the server-side watch timeout.
        """
        loop = asyncio.get_event_loop()
        queue: asyncio.Queue[WatchEvent | Exception] = asyncio.Queue()
        stopped = threading.Event()
        w = watch.Watch()
        list_fn, args = self._list_function(kind)

        def _produce() -> None:
            resource_version: str | None = None
            while not stopped.is_set():
                kwargs: dict[str, Any] = {
                    "timeout_seconds": self._watch_timeout_seconds,
                    "_request_timeout": self._watch_read_timeout_seconds,
                }
                if label_selector:
                    kwargs["label_selector"] = label_selector
                if resource_version:
                    kwargs["resource_version"] = resource_version
                try:
                    for event in w.stream(list_fn, *args, **kwargs):
                        if stopped.is_set():
                            return
                        obj = event["object"]
                        if event["type"] == "ERROR":
                            if isinstance(obj, dict) and obj.get("code") == 410:
                                resource_version = None
                                break
                            raise ResourceStoreError(f"Watch error for {kind}: {obj}")
                        namespace, name, labels, rv = _event_metadata(obj)
                        resource_version = rv or resource_version
                        loop.call_soon_threadsafe(
                            queue.put_nowait,
                            WatchEvent(
                                type=event["type"],
                                kind=kind,
                                ref=ObjectRef(namespace=namespace, name=name),
                                labels=dict(labels),
                            ),
                        )
                except urllib3.exceptions.ReadTimeoutError:
                    # idle stream; resume from the last seen version
                    continue
                except ApiException as e:
                    if e.status == 410:
                        resource_version = None
                        continue
                    loop.call_soon_threadsafe(queue.put_nowait, e)
                    return
                except Exception as e:
                    loop.call_soon_threadsafe(queue.put_nowait, e)
                    return

        producer = loop.run_in_executor(None, _produce)
        logger.info("Watch started", kind=str(kind), label_selector=label_selector)
        try:
            while True:
                item = await queue.get()
                if isinstance(item, ResourceStoreError):
                    raise item
                if isinstance(item, Exception):
                    raise ResourceStoreError(f"Watch for {kind} failed: {item}") from item
                yield item
        finally:
            stopped.set()
            w.stop()
            producer.cancel()
            logger.info("Watch stopped", kind=str(kind))

    async def close(self) -> None:
        await self._run(self._core.api_client.close)

"""Worker job lifecycle management: create-if-absent and cleanup.

A dispatched job is never updated in place. It is deleted once harvested and,
if still needed, recreated by a later reconciliation pass.
"""

from typing import Any

from tablewright.config import WorkerConfig
from tablewright.controller.job_template import (
    SPECS_VOLUME,
    JobRole,
    build_config_map,
    build_pod,
)
from tablewright.logging_config import get_logger
from tablewright.resources.models import Database, Table, TablePlan
from tablewright.resources.protocol import (
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ResourceStore,
    ResourceStoreError,
)

logger = get_logger(__name__)


def config_map_name_of(pod: dict[str, Any]) -> str | None:
    """Name of the config bundle mounted into a worker pod, if any."""
    for volume in (pod.get("spec") or {}).get("volumes") or []:
        config_map = volume.get("configMap")
        if volume.get("name") == SPECS_VOLUME and config_map:
            return config_map.get("name")
    return None


class JobOrchestrator:
    """Creates and deletes the ConfigMap + Pod pair of a worker job."""

    def __init__(self, store: ResourceStore, worker_config: WorkerConfig) -> None:
        self._store = store
        self._worker_config = worker_config

    async def dispatch_plan(self, database: Database, table: Table) -> None:
        """Ensure a plan job exists for the table's current schema."""
        await self._dispatch(database, table, JobRole.PLAN, None)

    async def dispatch_apply(self, database: Database, table: Table, plan: TablePlan) -> None:
        """Ensure an apply job exists for an approved plan."""
        await self._dispatch(database, table, JobRole.APPLY, plan)

    async def _dispatch(
        self,
        database: Database,
        table: Table,
        role: JobRole,
        plan: TablePlan | None,
    ) -> None:
        config_map = build_config_map(database, table, role, self._worker_config, plan)
        pod = build_pod(database, table, role, self._worker_config, plan)

        await self._ensure_config_map(config_map)
        created = await self._ensure_pod(pod)
        if created:
            logger.info(
                "Dispatched worker job",
                table=table.name,
                namespace=table.namespace,
                role=str(role),
                pod=pod["metadata"]["name"],
                plan=plan.name if plan else None,
            )

    async def _ensure_config_map(self, body: dict[str, Any]) -> bool:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        try:
            await self._store.get_config_map(namespace, name)
            return False
        except ResourceNotFoundError:
            pass

        try:
            await self._store.create_config_map(namespace, body)
        except ResourceAlreadyExistsError:
            return False
        except ResourceStoreError as e:
            logger.error("Failed to create config map", config_map=name, error=str(e))
            raise
        return True

    async def _ensure_pod(self, body: dict[str, Any]) -> bool:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        try:
            await self._store.get_pod(namespace, name)
            return False
        except ResourceNotFoundError:
            pass

        try:
            await self._store.create_pod(namespace, body)
        except ResourceAlreadyExistsError:
            return False
        except ResourceStoreError as e:
            logger.error("Failed to create worker pod", pod=name, error=str(e))
            raise
        return True

    async def cleanup(self, pod: dict[str, Any]) -> None:
        """Delete a worker pod and its mounted config bundle.

        Objects that are already gone count as deleted; every other failure
        propagates so the event is retried rather than leaking resources.
        """
        namespace = pod["metadata"]["namespace"]
        pod_name = pod["metadata"]["name"]

        try:
            await self._store.delete_pod(namespace, pod_name)
        except ResourceNotFoundError:
            logger.debug("Worker pod already deleted", pod=pod_name, namespace=namespace)

        config_map_name = config_map_name_of(pod)
        if config_map_name is None:
            logger.warning("Worker pod has no specs volume", pod=pod_name, namespace=namespace)
            return

        try:
            await self._store.delete_config_map(namespace, config_map_name)
        except ResourceNotFoundError:
            logger.debug(
                "Config map already deleted", config_map=config_map_name, namespace=namespace
            )

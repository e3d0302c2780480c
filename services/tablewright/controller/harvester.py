"""Harvest completed worker pods back into their Table and clean them up.

Pods are correlated to their table through labels rather than owner
references, so a table can be re-created without orphaning its jobs.
"""

import re
import time
from collections.abc import Callable
from typing import Any

from tablewright.controller.errors import ReconcileError, StatusUpdateConflictError
from tablewright.controller.job_manager import JobOrchestrator
from tablewright.controller.job_template import (
    FINGERPRINT_ANNOTATION,
    PLAN_ANNOTATION,
    ROLE_LABEL,
    TABLE_NAME_LABEL,
    TABLE_NAMESPACE_LABEL,
    JobRole,
)
from tablewright.controller.plans import mark_executed, record_plan
from tablewright.controller.result import DONE, ReconcileResult
from tablewright.logging_config import get_logger
from tablewright.resources.models import Table
from tablewright.resources.protocol import (
    ResourceConflictError,
    ResourceNotFoundError,
    ResourceStore,
    ResourceStoreError,
)

logger = get_logger(__name__)

POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"

_BLANK_LINES = re.compile(r"\n{2,}")


def normalize_plan_output(output: str) -> str:
    """Drop the empty lines the planner leaves between per-row statements."""
    return _BLANK_LINES.sub("\n", output)


def _unix_now() -> int:
    return int(time.time())


class JobHarvester:
    """Reacts to worker pod events; only succeeded pods are acted on."""

    def __init__(
        self,
        store: ResourceStore,
        orchestrator: JobOrchestrator,
        status_update_attempts: int = 5,
        clock: Callable[[], int] = _unix_now,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._attempts = status_update_attempts
        self._clock = clock

    async def reconcile(self, pod: dict[str, Any]) -> ReconcileResult:
        metadata = pod.get("metadata") or {}
        labels = metadata.get("labels") or {}
        role = labels.get(ROLE_LABEL)
        if role is None:
            return DONE

        phase = (pod.get("status") or {}).get("phase")
        logger.debug(
            "Reconciling worker pod",
            pod=metadata.get("name"),
            namespace=metadata.get("namespace"),
            role=role,
            pod_phase=phase,
        )

        if role not in (JobRole.PLAN, JobRole.APPLY):
            return DONE

        if phase == POD_FAILED:
            logger.warning(
                "Worker pod failed, leaving it in place for inspection",
                pod=metadata.get("name"),
                namespace=metadata.get("namespace"),
                role=role,
            )
            return DONE
        if phase != POD_SUCCEEDED:
            return DONE

        table_name = labels.get(TABLE_NAME_LABEL)
        table_namespace = labels.get(TABLE_NAMESPACE_LABEL)

        if not table_name or not table_namespace:
            logger.warning(
                "Worker pod is missing table labels, cleaning up without a status update",
                pod=metadata.get("name"),
                namespace=metadata.get("namespace"),
                role=role,
            )
        elif role == JobRole.PLAN:
            output = await self._read_output(pod)
            await self._record_plan(pod, table_namespace, table_name, output)
        else:
            await self._record_execution(pod, table_namespace, table_name)

        try:
            await self._orchestrator.cleanup(pod)
        except ResourceStoreError as e:
            raise ReconcileError(
                f"failed to clean up worker pod {metadata.get('namespace')}/"
                f"{metadata.get('name')}: {e}"
            ) from e
        return DONE

    async def _read_output(self, pod: dict[str, Any]) -> str:
        namespace = pod["metadata"]["namespace"]
        name = pod["metadata"]["name"]
        try:
            async with self._store.pod_logs(namespace, name) as stream:
                raw = await stream.read_text()
        except ResourceStoreError as e:
            raise ReconcileError(f"failed to read output of pod {namespace}/{name}: {e}") from e

        output = normalize_plan_output(raw)
        logger.debug("Read output from pod", pod=name, namespace=namespace, output=output)
        return output

    async def _record_plan(
        self, pod: dict[str, Any], namespace: str, name: str, output: str
    ) -> None:
        dispatched_fingerprint = (pod["metadata"].get("annotations") or {}).get(
            FINGERPRINT_ANNOTATION
        )

        def _append(table: Table) -> bool:
            fingerprint = table.fingerprint()
            if dispatched_fingerprint and dispatched_fingerprint != fingerprint:
                logger.warning(
                    "Table schema changed while it was being planned",
                    table=name,
                    namespace=namespace,
                    dispatched=dispatched_fingerprint,
                    current=fingerprint,
                )
            plan = record_plan(table, output, self._clock())
            if plan is None:
                logger.debug("Plan already recorded", table=name, plan=fingerprint)
                return False
            logger.info("Adding plan to table", table=name, namespace=namespace, plan=plan.name)
            return True

        await self._update_status(namespace, name, _append)

    async def _record_execution(self, pod: dict[str, Any], namespace: str, name: str) -> None:
        plan_name = (pod["metadata"].get("annotations") or {}).get(PLAN_ANNOTATION)

        def _stamp(table: Table) -> bool:
            plan = mark_executed(table, plan_name, self._clock())
            if plan is None:
                return False
            logger.info(
                "Marked plan executed", table=name, namespace=namespace, plan=plan.name
            )
            return True

        await self._update_status(namespace, name, _stamp)

    async def _update_status(
        self, namespace: str, name: str, mutate: Callable[[Table], bool]
    ) -> None:
        """Read-modify-write of a table's status with optimistic retries.

        Each attempt starts from a freshly read table. A table that no longer
        exists is skipped; its worker artifacts are still cleaned up.
        """
        for attempt in range(1, self._attempts + 1):
            try:
                table = await self._store.get_table(namespace, name)
            except ResourceNotFoundError:
                logger.warning("Originating table no longer exists", table=name, namespace=namespace)
                return
            except ResourceStoreError as e:
                raise ReconcileError(f"failed to get table {namespace}/{name}: {e}") from e

            if not mutate(table):
                return

            try:
                await self._store.update_table_status(table)
                return
            except ResourceConflictError:
                logger.debug(
                    "Conflict writing table status, retrying",
                    table=name,
                    namespace=namespace,
                    attempt=attempt,
                )
            except ResourceNotFoundError:
                logger.warning("Originating table no longer exists", table=name, namespace=namespace)
                return
            except ResourceStoreError as e:
                raise ReconcileError(
                    f"failed to write table status {namespace}/{name}: {e}"
                ) from e

        raise StatusUpdateConflictError(namespace, name, self._attempts)

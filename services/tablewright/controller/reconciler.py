"""Single entry point the controller runtime calls for every queued key.

A key is a namespace/name pair that may address a Table or a worker Pod;
both watches feed the same queue. The key is resolved into one of two typed
targets and routed accordingly.
"""

from dataclasses import dataclass
from typing import Any

from tablewright.config import Settings
from tablewright.controller.errors import ReconcileError, UnknownReconcileTargetError
from tablewright.controller.harvester import JobHarvester
from tablewright.controller.job_manager import JobOrchestrator
from tablewright.controller.plans import PlanLifecycle
from tablewright.controller.result import ReconcileResult
from tablewright.logging_config import get_logger
from tablewright.resources.models import Table
from tablewright.resources.protocol import (
    ObjectRef,
    ResourceNotFoundError,
    ResourceStore,
    ResourceStoreError,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class TableTarget:
    table: Table


@dataclass(frozen=True)
class PodTarget:
    pod: dict[str, Any]


ReconcileTarget = TableTarget | PodTarget


class TableReconciler:
    def __init__(
        self,
        store: ResourceStore,
        lifecycle: PlanLifecycle,
        harvester: JobHarvester,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._harvester = harvester

    @classmethod
    def from_settings(cls, store: ResourceStore, settings: Settings) -> "TableReconciler":
        orchestrator = JobOrchestrator(store, settings.worker)
        return cls(
            store=store,
            lifecycle=PlanLifecycle(
                store,
                orchestrator,
                requeue_after_seconds=settings.requeue_after_seconds,
            ),
            harvester=JobHarvester(
                store,
                orchestrator,
                status_update_attempts=settings.status_update_attempts,
            ),
        )

    async def resolve(self, ref: ObjectRef) -> ReconcileTarget:
        """Look the key up as a Table, then as a Pod.

        Raises:
            UnknownReconcileTargetError: If it is neither.
        """
        try:
            return TableTarget(await self._store.get_table(ref.namespace, ref.name))
        except ResourceNotFoundError:
            pass
        except ResourceStoreError as e:
            raise ReconcileError(f"failed to get table {ref}: {e}") from e

        try:
            return PodTarget(await self._store.get_pod(ref.namespace, ref.name))
        except ResourceNotFoundError:
            pass
        except ResourceStoreError as e:
            raise ReconcileError(f"failed to get pod {ref}: {e}") from e

        raise UnknownReconcileTargetError(ref.namespace, ref.name)

    async def reconcile(self, ref: ObjectRef) -> ReconcileResult:
        try:
            target = await self.resolve(ref)
            match target:
                case TableTarget(table=table):
                    return await self._lifecycle.reconcile(table)
                case PodTarget(pod=pod):
                    return await self._harvester.reconcile(pod)
        except ReconcileError as e:
            logger.error(
                "Reconcile failed",
                key=str(ref),
                error=str(e),
                retryable=e.retryable,
            )
            raise
        raise AssertionError(f"unhandled reconcile target for {ref}")

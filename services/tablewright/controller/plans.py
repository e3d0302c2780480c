"""Plan lifecycle for Table resources.

There is no stored phase. Every pass re-derives what to do from the table's
spec and its plan history, in strict priority order:

1. wait for the database to be ready,
2. execute the first approved, unexecuted plan,
3. do nothing if the current schema already has a plan,
4. otherwise dispatch a plan job.

A plan record is only appended when a plan job's output is harvested.
"""

from tablewright.controller.errors import ReconcileError
from tablewright.controller.job_manager import JobOrchestrator
from tablewright.controller.readiness import check_engine_matches, get_ready_database
from tablewright.controller.result import DONE, ReconcileResult
from tablewright.logging_config import get_logger
from tablewright.resources.models import Table, TablePlan
from tablewright.resources.protocol import ResourceStore, ResourceStoreError

logger = get_logger(__name__)


def record_plan(table: Table, ddl: str, now: int) -> TablePlan | None:
    """Append a plan for the table's current fingerprint.

    Returns the new plan, or None when the fingerprint is already planned.
    """
    fingerprint = table.fingerprint()
    if table.find_plan(fingerprint) is not None:
        return None

    plan = TablePlan(
        name=fingerprint,
        ddl=ddl,
        planned_at=now,
        approved_at=0,
        rejected_at=0,
        executed_at=0,
    )
    table.status.plans.append(plan)
    return plan


def mark_executed(table: Table, plan_name: str | None, now: int) -> TablePlan | None:
    """Stamp executedAt on the plan an apply job ran.

    Without a plan name, the first approved unexecuted plan is assumed, which
    is the one the reconciler dispatches. Returns None if nothing was changed.
    """
    if plan_name:
        plan = table.find_plan(plan_name)
    else:
        plan = table.pending_execution()

    if plan is None or plan.executed_at != 0:
        return None
    if plan.approved_at == 0:
        logger.warning(
            "Refusing to mark unapproved plan executed",
            table=table.name,
            namespace=table.namespace,
            plan=plan.name,
        )
        return None
    if plan.rejected_at != 0:
        logger.warning(
            "Plan was rejected while its apply job ran, not marking it executed",
            table=table.name,
            namespace=table.namespace,
            plan=plan.name,
        )
        return None

    plan.executed_at = max(now, plan.approved_at)
    return plan


class PlanLifecycle:
    """Decides, for one Table, whether to wait, apply, plan, or do nothing."""

    def __init__(
        self,
        store: ResourceStore,
        orchestrator: JobOrchestrator,
        requeue_after_seconds: float = 10.0,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._requeue_after = requeue_after_seconds

    async def reconcile(self, table: Table) -> ReconcileResult:
        logger.debug(
            "Reconciling table",
            table=table.name,
            namespace=table.namespace,
            database=table.spec.database,
        )

        try:
            database = await get_ready_database(
                self._store, table.namespace, table.spec.database
            )
        except ResourceStoreError as e:
            raise ReconcileError(
                f"failed to get database {table.namespace}/{table.spec.database}: {e}"
            ) from e

        if database is None:
            logger.debug(
                "Requeuing table because database is not ready",
                table=table.name,
                database=table.spec.database,
                namespace=table.namespace,
                requeue_after=self._requeue_after,
            )
            return ReconcileResult(requeue_after=self._requeue_after)

        check_engine_matches(database, table)

        pending = table.pending_execution()
        if pending is not None:
            try:
                await self._orchestrator.dispatch_apply(database, table, pending)
            except ResourceStoreError as e:
                raise ReconcileError(
                    f"failed to deploy planned migration {pending.name} "
                    f"for table {table.namespace}/{table.name}: {e}"
                ) from e
            return DONE

        fingerprint = table.fingerprint()
        if table.find_plan(fingerprint) is not None:
            logger.debug("Table already planned", table=table.name, plan=fingerprint)
            return DONE

        try:
            await self._orchestrator.dispatch_plan(database, table)
        except ResourceStoreError as e:
            raise ReconcileError(
                f"failed to schedule plan for table {table.namespace}/{table.name}: {e}"
            ) from e
        return DONE

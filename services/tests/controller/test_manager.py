"""Tests for the controller manager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tablewright.config import Settings
from tablewright.controller.errors import (
    EngineMismatchError,
    ReconcileError,
    UnknownReconcileTargetError,
)
from tablewright.controller.manager import ControllerManager
from tablewright.controller.reconciler import TableReconciler
from tablewright.controller.result import ReconcileResult
from tablewright.resources.protocol import ObjectRef, ResourceKind, WatchEvent

T1 = ObjectRef("default", "t1")


@pytest.fixture
def reconciler() -> AsyncMock:
    mock = AsyncMock()
    mock.reconcile.return_value = ReconcileResult()
    return mock


@pytest.fixture
def manager(store, reconciler) -> ControllerManager:
    config = Settings(max_concurrent_reconciles=2, error_backoff_base_seconds=1)
    return ControllerManager(store, reconciler, config)


class TestProcess:
    async def test_success_forgets_failures(self, manager, reconciler) -> None:
        manager.queue.add_rate_limited(T1)
        await manager.process(T1)
        assert manager.queue.failures(T1) == 0
        reconciler.reconcile.assert_awaited_once_with(T1)
        manager.queue.shutdown()

    async def test_requeue_after(self, manager, reconciler) -> None:
        reconciler.reconcile.return_value = ReconcileResult(requeue_after=0.01)
        await manager.process(T1)
        assert await asyncio.wait_for(manager.queue.get(), timeout=1) == T1

    async def test_retryable_error_backs_off(self, manager, reconciler) -> None:
        reconciler.reconcile.side_effect = ReconcileError("apiserver unreachable")
        await manager.process(T1)
        await manager.process(T1)
        assert manager.queue.failures(T1) == 2
        manager.queue.shutdown()

    async def test_permanent_error_is_not_retried(self, manager, reconciler) -> None:
        reconciler.reconcile.side_effect = EngineMismatchError("postgres", "mysql")
        await manager.process(T1)
        assert manager.queue.failures(T1) == 0
        await asyncio.sleep(0)
        assert len(manager.queue) == 0

    async def test_unexpected_error_backs_off(self, manager, reconciler) -> None:
        reconciler.reconcile.side_effect = RuntimeError("boom")
        await manager.process(T1)
        assert manager.queue.failures(T1) == 1
        manager.queue.shutdown()

    async def test_vanished_key_is_not_retried(self, ready_store) -> None:
        config = Settings(error_backoff_base_seconds=1)
        manager = ControllerManager(
            ready_store, TableReconciler.from_settings(ready_store, config), config
        )
        key = ObjectRef("default", "t1-plan")

        for _ in range(12):
            await manager.process(key)

        assert manager.queue.failures(key) == 0
        assert not manager.queue.is_scheduled(key)

    async def test_unknown_target_forgets_earlier_failures(self, manager, reconciler) -> None:
        manager.queue.add_rate_limited(T1)
        reconciler.reconcile.side_effect = UnknownReconcileTargetError("default", "t1")

        await manager.process(T1)

        assert manager.queue.failures(T1) == 0
        manager.queue.shutdown()


class TestRun:
    async def test_events_are_reconciled(self, store, manager, reconciler) -> None:
        pod_ref = ObjectRef("default", "t1-plan")
        store.events = {
            ResourceKind.TABLE: [
                WatchEvent(type="ADDED", kind=ResourceKind.TABLE, ref=T1),
                WatchEvent(type="DELETED", kind=ResourceKind.TABLE, ref=ObjectRef("default", "gone")),
            ],
            ResourceKind.POD: [WatchEvent(type="MODIFIED", kind=ResourceKind.POD, ref=pod_ref)],
        }
        stop = asyncio.Event()
        task = asyncio.create_task(manager.run(stop))

        for _ in range(100):
            if reconciler.reconcile.await_count >= 2:
                break
            await asyncio.sleep(0.01)

        assert manager.ready
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        reconciled = {call.args[0] for call in reconciler.reconcile.await_args_list}
        assert reconciled == {T1, pod_ref}
        assert not manager.ready

    async def test_deleted_event_drops_retry_state(self, store, manager, reconciler) -> None:
        gone = ObjectRef("default", "t1-plan")
        manager.queue.add_rate_limited(gone)
        manager.queue.add_after(T1, 10)
        store.events = {
            ResourceKind.POD: [WatchEvent(type="DELETED", kind=ResourceKind.POD, ref=gone)],
        }
        stop = asyncio.Event()
        task = asyncio.create_task(manager.run(stop))

        for _ in range(100):
            if not manager.queue.is_scheduled(gone):
                break
            await asyncio.sleep(0.01)

        assert manager.queue.is_scheduled(T1)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert manager.queue.failures(gone) == 0
        assert not manager.queue.is_scheduled(gone)
        reconciler.reconcile.assert_not_awaited()

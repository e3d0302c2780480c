"""Controller main loop.

Entrypoint: python -m tablewright.controller.manager

The manager:
1. Watches Tables, and Pods carrying the worker role label
2. Queues the namespace/name of every changed object
3. Runs a pool of workers that call the reconciler for each key
4. Requeues keys after the delay the reconciler asks for, or with
   exponential backoff after a retryable failure
5. Serves liveness/readiness probes
"""

import asyncio
import signal

from tablewright.config import Settings, settings
from tablewright.controller.errors import ReconcileError
from tablewright.controller.job_template import ROLE_LABEL
from tablewright.controller.reconciler import TableReconciler
from tablewright.controller.workqueue import WorkQueue
from tablewright.logging_config import configure_logging, get_logger
from tablewright.resources.protocol import (
    ObjectRef,
    ResourceKind,
    ResourceStore,
    ResourceStoreError,
)

logger = get_logger(__name__)

WATCH_RETRY_SECONDS = 5

# Shutdown flag
_shutdown = asyncio.Event()

_manager: "ControllerManager | None" = None


class ControllerManager:
    """Feeds watch events into a work queue and drains it with N workers."""

    def __init__(
        self,
        store: ResourceStore,
        reconciler: TableReconciler,
        config: Settings = settings,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.queue = WorkQueue(
            backoff_base_seconds=config.error_backoff_base_seconds,
            backoff_max_seconds=config.error_backoff_max_seconds,
        )
        self._workers = config.max_concurrent_reconciles
        self._watching: set[ResourceKind] = set()

    @property
    def ready(self) -> bool:
        return self._watching == {ResourceKind.TABLE, ResourceKind.POD}

    async def run(self, stop: asyncio.Event) -> None:
        """Run watches and workers until stop is set."""
        tasks = [
            asyncio.create_task(self._watch(ResourceKind.TABLE)),
            asyncio.create_task(self._watch(ResourceKind.POD, label_selector=ROLE_LABEL)),
        ]
        tasks += [asyncio.create_task(self._worker(i)) for i in range(self._workers)]
        logger.info("Controller started", workers=self._workers)

        await stop.wait()
        logger.info("Shutdown signal received, stopping workers...")

        self.queue.shutdown()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._watching.clear()

    async def _watch(self, kind: ResourceKind, label_selector: str = "") -> None:
        while True:
            self._watching.add(kind)
            try:
                async for event in self.store.stream_events(kind, label_selector):
                    if event.type == "DELETED":
                        self.queue.discard(event.ref)
                        continue
                    self.queue.add(event.ref)
            except ResourceStoreError as e:
                logger.error("Watch failed, restarting", kind=str(kind), error=str(e))
            self._watching.discard(kind)
            await asyncio.sleep(WATCH_RETRY_SECONDS)

    async def _worker(self, index: int) -> None:
        while True:
            key = await self.queue.get()
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: ObjectRef) -> None:
        """Reconcile one key and schedule its next visit."""
        try:
            result = await self.reconciler.reconcile(key)
        except ReconcileError as e:
            if not e.retryable:
                logger.warning("Not retrying permanent failure", key=str(key), error=str(e))
                self.queue.forget(key)
                return
            delay = self.queue.add_rate_limited(key)
            logger.debug("Requeued after failure", key=str(key), delay=delay)
            return
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(
                "Unexpected reconcile failure", key=str(key), error=str(e), delay=delay, exc_info=True
            )
            return

        self.queue.forget(key)
        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)


def get_manager_or_none() -> ControllerManager | None:
    """Return the running manager, if any. Used by the readiness probe."""
    return _manager


async def run_controller() -> None:
    """Initialize the store and run the manager (and probe server) until shutdown."""
    global _manager  # noqa: PLW0603
    from tablewright.resources import close_store, init_store

    store = init_store()
    _manager = ControllerManager(store, TableReconciler.from_settings(store, settings))

    tasks = [asyncio.create_task(_manager.run(_shutdown))]
    if settings.health.enabled:
        tasks.append(asyncio.create_task(_serve_probes()))

    try:
        await tasks[0]
    finally:
        for task in tasks[1:]:
            task.cancel()
        await asyncio.gather(*tasks[1:], return_exceptions=True)
        _manager = None
        await close_store()


async def _serve_probes() -> None:
    """Serve /health and /ready; an exit requested by uvicorn stops the controller too."""
    import uvicorn

    from tablewright.api.app import create_app

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(),
            host=settings.health.host,
            port=settings.health.port,
            log_config=None,
        )
    )
    try:
        await server.serve()
    finally:
        _shutdown.set()


def _handle_signals() -> None:
    """Register signal handlers for graceful shutdown."""
    loop = asyncio.get_event_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: _shutdown.set())


def main() -> None:
    """Main entry point for the controller."""
    configure_logging(
        json_logs=settings.json_logs,
        log_level=settings.log_level,
        app_name=settings.app_name,
    )
    logger.info("Starting tablewright controller")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _handle_signals()

    try:
        loop.run_until_complete(run_controller())
    except KeyboardInterrupt:
        _shutdown.set()
    finally:
        loop.close()
        logger.info("Controller stopped")


if __name__ == "__main__":
    main()

"""
Resource store access for tablewright.

Provides init_store() / close_store() for the controller lifecycle and
get_store() for components that need the shared instance.
"""

from __future__ import annotations

from tablewright.config import settings
from tablewright.logging_config import get_logger
from tablewright.resources.protocol import ResourceStore

logger = get_logger(__name__)

# Module-level store instance
_store: ResourceStore | None = None


def init_store() -> ResourceStore:
    """Initialize the Kubernetes resource store from configuration."""
    global _store  # noqa: PLW0603
    from tablewright.resources.kube import KubeResourceStore

    _store = KubeResourceStore(
        watch_namespace=settings.watch_namespace,
        watch_timeout_seconds=settings.watch_timeout_seconds,
        watch_read_timeout_seconds=settings.watch_read_timeout_seconds,
    )
    logger.info(
        "Resource store initialized",
        backend="kubernetes",
        watch_namespace=settings.watch_namespace or "*",
    )
    return _store


async def close_store() -> None:
    """Close the resource store and release resources."""
    global _store  # noqa: PLW0603
    if _store is not None:
        await _store.close()
        _store = None
        logger.info("Resource store closed")


def get_store() -> ResourceStore:
    """Return the resource store.

    Raises RuntimeError if the store has not been initialized.
    """
    if _store is None:
        raise RuntimeError("Resource store not initialized - call init_store() first")
    return _store


def get_store_or_none() -> ResourceStore | None:
    """Return the resource store if initialized, otherwise None."""
    return _store

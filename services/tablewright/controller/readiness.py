"""Readiness gating of a table against the Database it targets."""

from tablewright.controller.connection import resolve_credential
from tablewright.controller.errors import EngineMismatchError, SecretNotFoundError
from tablewright.logging_config import get_logger
from tablewright.resources.models import Database, Table
from tablewright.resources.protocol import ResourceNotFoundError, ResourceStore

logger = get_logger(__name__)


async def get_ready_database(store: ResourceStore, namespace: str, name: str) -> Database | None:
    """Return the Database if it exists and its connection resolves.

    Returns None when the database has not been created yet or its secret is
    not present yet. Both are expected while a stack is being applied and are
    not errors. Anything else raised by the store propagates.
    """
    logger.debug("Getting database", namespace=namespace, name=name)

    try:
        database = await store.get_database(namespace, name)
    except ResourceNotFoundError:
        logger.debug("Database not found", namespace=namespace, name=name)
        return None

    # A database resource can exist before the secret holding its URI does
    credential = database.connection.uri
    if credential is not None:
        try:
            await resolve_credential(store, database.metadata.namespace or namespace, credential)
        except SecretNotFoundError as e:
            logger.debug(
                "Database connection secret not found",
                namespace=namespace,
                name=name,
                secret=e.name,
                key=e.key,
            )
            return None

    return database


def check_engine_matches(database: Database, table: Table) -> None:
    """Raise EngineMismatchError unless both resources name the same engine."""
    database_engine = database.connection.engine
    table_engine = table.spec.table_schema.engine
    if database_engine is None or database_engine != table_engine:
        raise EngineMismatchError(table_engine, database_engine)

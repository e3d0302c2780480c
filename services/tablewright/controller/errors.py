"""Exceptions raised by the table reconciler.

Expected, recoverable states (database not created yet, secret not created yet,
worker still running) are not errors and never appear here.
"""


class ReconcileError(Exception):
    """Base exception for reconciliation failures."""

    retryable = True


class UnknownReconcileTargetError(ReconcileError):
    """The request addressed neither a Table nor a Pod."""

    retryable = False

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f"unknown reconciliation target: {namespace}/{name}")


class EngineMismatchError(ReconcileError):
    """The table's schema engine differs from the database's connection engine."""

    retryable = False

    def __init__(self, table_engine: str | None, database_engine: str | None) -> None:
        self.table_engine = table_engine
        self.database_engine = database_engine
        super().__init__(
            f"unable to deploy {table_engine or 'unknown'} table "
            f"to {database_engine or 'unknown'} connection"
        )


class StatusUpdateConflictError(ReconcileError):
    """Table status could not be written after repeated optimistic-concurrency conflicts."""

    def __init__(self, namespace: str, name: str, attempts: int) -> None:
        self.namespace = namespace
        self.name = name
        self.attempts = attempts
        super().__init__(
            f"gave up writing status of table {namespace}/{name} after {attempts} conflicts"
        )


# --- Connection credentials ---


class CredentialError(ReconcileError):
    """Base exception for credential resolution failures."""


class MissingCredentialError(CredentialError):
    """Neither an inline value nor a usable reference was given."""

    retryable = False


class SecretNotFoundError(CredentialError):
    """The referenced secret, or the key within it, does not exist (yet)."""

    def __init__(self, namespace: str, name: str, key: str) -> None:
        self.namespace = namespace
        self.name = name
        self.key = key
        super().__init__(f"secret {namespace}/{name} has no key {key!r}")


class SecretAccessError(CredentialError):
    """Reading the referenced secret failed for an infrastructure reason."""

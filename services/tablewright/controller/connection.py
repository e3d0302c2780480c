"""Resolve database connection credentials given inline or by secret reference."""

from tablewright.controller.errors import (
    MissingCredentialError,
    SecretAccessError,
    SecretNotFoundError,
)
from tablewright.logging_config import get_logger
from tablewright.resources.models import ValueOrValueFrom
from tablewright.resources.protocol import (
    ResourceNotFoundError,
    ResourceStore,
    ResourceStoreError,
)

logger = get_logger(__name__)


async def resolve_credential(
    store: ResourceStore,
    namespace: str,
    credential: ValueOrValueFrom,
) -> str:
    """Return the credential's value.

    An inline value always wins over a reference, even when both are present.

    Raises:
        MissingCredentialError: No inline value and no supported reference.
        SecretNotFoundError: The referenced secret or key does not exist.
        SecretAccessError: The secret could not be read.
    """
    if credential.value:
        return credential.value

    if credential.value_from is None:
        raise MissingCredentialError("value and valueFrom cannot both be empty")

    ref = credential.value_from.secret_key_ref
    if ref is None:
        raise MissingCredentialError("valueFrom has no supported source (expected secretKeyRef)")

    try:
        data = await store.get_secret(namespace, ref.name)
    except ResourceNotFoundError as e:
        raise SecretNotFoundError(namespace, ref.name, ref.key) from e
    except ResourceStoreError as e:
        raise SecretAccessError(
            f"failed to read connection secret {namespace}/{ref.name}: {e}"
        ) from e

    if ref.key not in data:
        raise SecretNotFoundError(namespace, ref.name, ref.key)

    logger.debug("Resolved credential from secret", namespace=namespace, secret=ref.name)
    return data[ref.key]

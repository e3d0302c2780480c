"""Build ConfigMap and Pod manifests for plan and apply worker jobs."""

from enum import StrEnum
from typing import Any

import yaml

from tablewright.config import WorkerConfig
from tablewright.resources.models import Database, Table, TablePlan

# Labels correlating a worker pod back to its table. Values are contractual.
ROLE_LABEL = "tablewright.io/role"
TABLE_NAME_LABEL = "tablewright.io/table-name"
TABLE_NAMESPACE_LABEL = "tablewright.io/table-namespace"

# Plan names are 64-char hashes, too long for label values
PLAN_ANNOTATION = "tablewright.io/plan"
FINGERPRINT_ANNOTATION = "tablewright.io/fingerprint"

SPECS_VOLUME = "specs"

TABLE_FILE = "table.yaml"
CONNECTION_FILE = "connection.yaml"
DDL_FILE = "ddl.sql"


class JobRole(StrEnum):
    """Role label value of a worker pod."""

    PLAN = "plan"
    APPLY = "table"


def job_name(table: Table, role: JobRole) -> str:
    """Deterministic name shared by a job's ConfigMap and Pod."""
    suffix = "plan" if role == JobRole.PLAN else "apply"
    return f"{table.name}-{suffix}"


def job_labels(table: Table, role: JobRole) -> dict[str, str]:
    return {
        "app.kubernetes.io/name": "tablewright-worker",
        "app.kubernetes.io/component": "plan" if role == JobRole.PLAN else "apply",
        ROLE_LABEL: str(role),
        TABLE_NAME_LABEL: table.name,
        TABLE_NAMESPACE_LABEL: table.namespace,
    }


def build_config_map(
    database: Database,
    table: Table,
    role: JobRole,
    worker_config: WorkerConfig,
    plan: TablePlan | None = None,
) -> dict[str, Any]:
    """Build the config bundle mounted into a worker pod.

    Both roles carry the table's desired schema and the connection parameters;
    apply jobs additionally carry the DDL of the plan being executed. The
    connection URI itself is never written here: the pod receives it through
    an environment variable.
    """
    table_doc = {
        "apiVersion": table.api_version,
        "kind": table.kind,
        "metadata": {"name": table.name, "namespace": table.namespace},
        "spec": table.spec.model_dump(mode="json", by_alias=True, exclude_none=True),
    }
    connection_doc = {
        "driver": database.connection.engine,
        "database": database.metadata.name,
        "uriEnv": worker_config.uri_env_var,
    }

    data = {
        TABLE_FILE: yaml.safe_dump(table_doc, sort_keys=False),
        CONNECTION_FILE: yaml.safe_dump(connection_doc, sort_keys=False),
    }
    if role == JobRole.APPLY:
        if plan is None:
            raise ValueError("apply jobs require a plan")
        data[DDL_FILE] = plan.ddl

    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": job_name(table, role),
            "namespace": table.namespace,
            "labels": job_labels(table, role),
        },
        "data": data,
    }


def _uri_env(database: Database, worker_config: WorkerConfig) -> dict[str, Any]:
    credential = database.connection.uri
    if credential is not None and credential.value:
        return {"name": worker_config.uri_env_var, "value": credential.value}

    ref = credential.value_from.secret_key_ref if credential and credential.value_from else None
    if ref is None:
        raise ValueError(f"database {database.metadata.name} has no usable connection uri")
    return {
        "name": worker_config.uri_env_var,
        "valueFrom": {"secretKeyRef": {"name": ref.name, "key": ref.key}},
    }


def build_pod(
    database: Database,
    table: Table,
    role: JobRole,
    worker_config: WorkerConfig,
    plan: TablePlan | None = None,
) -> dict[str, Any]:
    """Build the worker pod for a job.

    The pod runs once (restartPolicy Never) with the job's ConfigMap mounted
    as the ``specs`` volume.
    """
    name = job_name(table, role)
    mount = worker_config.specs_mount_path.rstrip("/")

    args = [
        "plan" if role == JobRole.PLAN else "apply",
        "--driver",
        database.connection.engine or "",
        "--spec-file",
        f"{mount}/{TABLE_FILE}",
        "--connection-file",
        f"{mount}/{CONNECTION_FILE}",
    ]

    annotations = {FINGERPRINT_ANNOTATION: table.fingerprint()}
    if role == JobRole.APPLY:
        if plan is None:
            raise ValueError("apply jobs require a plan")
        args += ["--ddl-file", f"{mount}/{DDL_FILE}"]
        annotations[PLAN_ANNOTATION] = plan.name

    resources = worker_config.resources
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": table.namespace,
            "labels": job_labels(table, role),
            "annotations": annotations,
        },
        "spec": {
            "restartPolicy": "Never",
            "containers": [
                {
                    "name": "worker",
                    "image": worker_config.image.reference,
                    "imagePullPolicy": worker_config.image.pull_policy,
                    "args": args,
                    "env": [_uri_env(database, worker_config)],
                    "volumeMounts": [
                        {"name": SPECS_VOLUME, "mountPath": mount, "readOnly": True},
                    ],
                    "resources": {
                        "requests": {
                            "cpu": resources.requests.cpu,
                            "memory": resources.requests.memory,
                        },
                        "limits": {
                            "cpu": resources.limits.cpu,
                            "memory": resources.limits.memory,
                        },
                    },
                }
            ],
            "volumes": [
                {"name": SPECS_VOLUME, "configMap": {"name": name}},
            ],
        },
    }

    if worker_config.service_account_name:
        pod["spec"]["serviceAccountName"] = worker_config.service_account_name
    if worker_config.node_selector:
        pod["spec"]["nodeSelector"] = worker_config.node_selector
    if worker_config.tolerations:
        pod["spec"]["tolerations"] = worker_config.tolerations

    return pod

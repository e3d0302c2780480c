"""
Typed models for the Table and Database custom resources.

Field names are snake_case in Python and camelCase on the wire. Unknown keys are
kept so a read-modify-write of a resource never drops fields this controller
does not know about.
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEMAS_GROUP = "schemas.tablewright.io"
DATABASES_GROUP = "databases.tablewright.io"
API_VERSION = "v1alpha1"

SUPPORTED_ENGINES = ("postgres", "mysql")


class ResourceModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ObjectMeta(ResourceModel):
    """The subset of Kubernetes object metadata the controller reads and writes."""

    name: str
    namespace: str = ""
    uid: str | None = None
    resource_version: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


# --- Connection credentials ---


class SecretKeyRef(ResourceModel):
    name: str
    key: str


class ValueFrom(ResourceModel):
    secret_key_ref: SecretKeyRef | None = None


class ValueOrValueFrom(ResourceModel):
    """A credential given inline or as a reference into a Secret."""

    value: str = ""
    value_from: ValueFrom | None = None


class EngineConnection(ResourceModel):
    uri: ValueOrValueFrom = Field(default_factory=ValueOrValueFrom)


class DatabaseConnection(ResourceModel):
    """Tagged union over database engines; exactly one member is expected to be set."""

    postgres: EngineConnection | None = None
    mysql: EngineConnection | None = None

    @property
    def engine(self) -> str | None:
        for engine in SUPPORTED_ENGINES:
            if getattr(self, engine) is not None:
                return engine
        return None

    @property
    def uri(self) -> ValueOrValueFrom | None:
        engine = self.engine
        if engine is None:
            return None
        return getattr(self, engine).uri


class Database(ResourceModel):
    api_version: str = f"{DATABASES_GROUP}/{API_VERSION}"
    kind: str = "Database"
    metadata: ObjectMeta
    connection: DatabaseConnection = Field(default_factory=DatabaseConnection)


# --- Table schema ---


class SQLTableColumnConstraints(ResourceModel):
    not_null: bool | None = None


class SQLTableColumn(ResourceModel):
    name: str
    type: str
    constraints: SQLTableColumnConstraints | None = None
    default: str | None = None


class SQLTableIndex(ResourceModel):
    columns: list[str]
    name: str = ""
    is_unique: bool = False


class SQLTableForeignKeyReferences(ResourceModel):
    table: str
    columns: list[str]


class SQLTableForeignKey(ResourceModel):
    columns: list[str]
    references: SQLTableForeignKeyReferences
    name: str = ""
    on_delete: str = ""


class SQLTableSchema(ResourceModel):
    primary_key: list[str] = Field(default_factory=list)
    columns: list[SQLTableColumn] = Field(default_factory=list)
    indexes: list[SQLTableIndex] = Field(default_factory=list)
    foreign_keys: list[SQLTableForeignKey] = Field(default_factory=list)
    is_deleted: bool = False


class TableSchema(ResourceModel):
    """Tagged union over database engines, mirroring DatabaseConnection."""

    postgres: SQLTableSchema | None = None
    mysql: SQLTableSchema | None = None

    @property
    def engine(self) -> str | None:
        for engine in SUPPORTED_ENGINES:
            if getattr(self, engine) is not None:
                return engine
        return None


# --- Table ---


class TablePlan(ResourceModel):
    """One planned DDL change. Timestamps are Unix seconds; 0 means "not yet"."""

    name: str
    ddl: str = ""
    planned_at: int = 0
    approved_at: int = 0
    rejected_at: int = 0
    executed_at: int = 0

    @property
    def is_pending_execution(self) -> bool:
        return self.approved_at != 0 and self.executed_at == 0 and self.rejected_at == 0


class TableSpec(ResourceModel):
    database: str
    name: str = ""
    table_schema: TableSchema = Field(default_factory=TableSchema, alias="schema")


class TableStatus(ResourceModel):
    plans: list[TablePlan] = Field(default_factory=list)


class Table(ResourceModel):
    api_version: str = f"{SCHEMAS_GROUP}/{API_VERSION}"
    kind: str = "Table"
    metadata: ObjectMeta
    spec: TableSpec
    status: TableStatus = Field(default_factory=TableStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def table_name(self) -> str:
        """Name of the SQL table; defaults to the resource name."""
        return self.spec.name or self.metadata.name

    def fingerprint(self) -> str:
        """Deterministic SHA-256 of the desired schema.

        Defaults are excluded so that adding an optional field to the models
        does not change the fingerprint of existing tables.
        """
        schema = self.spec.table_schema.model_dump(
            mode="json", by_alias=True, exclude_defaults=True
        )
        encoded = json.dumps(schema, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def find_plan(self, name: str) -> TablePlan | None:
        return next((p for p in self.status.plans if p.name == name), None)

    def pending_execution(self) -> TablePlan | None:
        """First plan in sequence order that is approved but not yet run."""
        return next((p for p in self.status.plans if p.is_pending_execution), None)

    def to_manifest(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

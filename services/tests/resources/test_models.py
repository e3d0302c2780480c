"""Tests for the Table and Database resource models."""

from tablewright.resources.models import Database, Table, TablePlan


def _table(schema: dict, plans: list | None = None, **metadata) -> Table:
    return Table.model_validate(
        {
            "apiVersion": "schemas.tablewright.io/v1alpha1",
            "kind": "Table",
            "metadata": {"name": "users", "namespace": "default", **metadata},
            "spec": {"database": "db1", "schema": schema},
            "status": {"plans": plans or []},
        }
    )


USERS = {
    "postgres": {
        "primaryKey": ["id"],
        "columns": [
            {"name": "id", "type": "integer"},
            {"name": "email", "type": "text", "constraints": {"notNull": True}},
        ],
    }
}


class TestFingerprint:
    def test_deterministic(self) -> None:
        assert _table(USERS).fingerprint() == _table(USERS).fingerprint()
        assert len(_table(USERS).fingerprint()) == 64

    def test_ignores_metadata_and_status(self) -> None:
        a = _table(USERS)
        b = _table(USERS, plans=[{"name": "x"}], resourceVersion="42", labels={"team": "a"})
        assert a.fingerprint() == b.fingerprint()

    def test_key_order_irrelevant(self) -> None:
        reordered = {
            "postgres": {
                "columns": [
                    {"type": "integer", "name": "id"},
                    {"constraints": {"notNull": True}, "type": "text", "name": "email"},
                ],
                "primaryKey": ["id"],
            }
        }
        assert _table(USERS).fingerprint() == _table(reordered).fingerprint()

    def test_explicit_defaults_do_not_change_it(self) -> None:
        explicit = {"postgres": {**USERS["postgres"], "indexes": [], "isDeleted": False}}
        assert _table(USERS).fingerprint() == _table(explicit).fingerprint()

    def test_schema_change_changes_it(self) -> None:
        changed = {"postgres": {**USERS["postgres"], "primaryKey": ["email"]}}
        assert _table(USERS).fingerprint() != _table(changed).fingerprint()

    def test_engine_changes_it(self) -> None:
        assert _table(USERS).fingerprint() != _table({"mysql": USERS["postgres"]}).fingerprint()

    def test_unknown_schema_keys_count(self) -> None:
        extended = {"postgres": {**USERS["postgres"], "tablespace": "fast"}}
        assert _table(USERS).fingerprint() != _table(extended).fingerprint()


class TestTable:
    def test_wire_names(self) -> None:
        table = _table(USERS, plans=[{"name": "p", "plannedAt": 5, "approvedAt": 6}])
        manifest = table.to_manifest()

        assert manifest["apiVersion"] == "schemas.tablewright.io/v1alpha1"
        assert manifest["spec"]["schema"]["postgres"]["primaryKey"] == ["id"]
        assert manifest["status"]["plans"][0]["plannedAt"] == 5
        assert manifest["status"]["plans"][0]["approvedAt"] == 6

    def test_unknown_fields_survive_round_trip(self) -> None:
        table = Table.model_validate(
            {
                "metadata": {"name": "users", "namespace": "default", "generation": 3},
                "spec": {"database": "db1", "schema": USERS, "seedData": {"rows": []}},
                "status": {"plans": [], "observedGeneration": 3},
            }
        )
        manifest = table.to_manifest()
        assert manifest["metadata"]["generation"] == 3
        assert manifest["spec"]["seedData"] == {"rows": []}
        assert manifest["status"]["observedGeneration"] == 3

    def test_table_name_defaults_to_resource_name(self) -> None:
        assert _table(USERS).table_name == "users"

    def test_engine(self) -> None:
        assert _table(USERS).spec.table_schema.engine == "postgres"
        assert _table({}).spec.table_schema.engine is None

    def test_pending_execution_skips_rejected_and_executed(self) -> None:
        table = _table(
            USERS,
            plans=[
                {"name": "executed", "approvedAt": 1, "executedAt": 2},
                {"name": "rejected", "approvedAt": 1, "rejectedAt": 2},
                {"name": "unapproved"},
                {"name": "due", "approvedAt": 3},
            ],
        )
        plan = table.pending_execution()
        assert plan is not None and plan.name == "due"

    def test_find_plan(self) -> None:
        table = _table(USERS, plans=[{"name": "a"}, {"name": "b"}])
        assert table.find_plan("b").name == "b"
        assert table.find_plan("c") is None


class TestTablePlan:
    def test_zero_timestamps_by_default(self) -> None:
        plan = TablePlan(name="p")
        assert (plan.planned_at, plan.approved_at, plan.rejected_at, plan.executed_at) == (
            0, 0, 0, 0,
        )
        assert not plan.is_pending_execution


class TestDatabase:
    def test_secret_reference(self) -> None:
        database = Database.model_validate(
            {
                "metadata": {"name": "db1", "namespace": "default"},
                "connection": {
                    "mysql": {
                        "uri": {"valueFrom": {"secretKeyRef": {"name": "s", "key": "uri"}}}
                    }
                },
            }
        )
        assert database.connection.engine == "mysql"
        ref = database.connection.uri.value_from.secret_key_ref
        assert (ref.name, ref.key) == ("s", "uri")

    def test_no_connection(self) -> None:
        database = Database.model_validate({"metadata": {"name": "db1"}})
        assert database.connection.engine is None
        assert database.connection.uri is None

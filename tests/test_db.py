"""End-to-end tests against in-memory SQLite, plus sink-level fakes."""

from __future__ import annotations

import logging
import threading
from typing import Any

import pytest
from shapes import Address, Country, Note, Status, User
from sqlalchemy import create_engine

from quill_orm import (
    DB,
    ArgumentError,
    CompiledExpression,
    ExecResult,
    ExecutionError,
    ExecutionSink,
    HookError,
    HookRegistry,
    OpenConfig,
    OperationCancelledError,
    UnsupportedDialectError,
    open_db,
    open_with_opener,
)
from quill_orm.dialects import get_dialect
from quill_orm.sink import SQLAlchemyTransaction

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTransaction:
    def __init__(self, sink: FakeSink) -> None:
        self.sink = sink

    def execute(self, sql: str, args: Any = ()) -> ExecResult:
        self.sink.executed.append(sql)
        if self.sink.on_execute is not None:
            self.sink.on_execute(sql)
        if sql in self.sink.failing:
            raise RuntimeError(f"cannot run {sql}")
        return ExecResult(rowcount=1, last_row_id=len(self.sink.executed))

    def commit(self) -> None:
        self.sink.commits += 1

    def rollback(self) -> None:
        self.sink.rollbacks += 1
        if self.sink.rollback_error is not None:
            raise self.sink.rollback_error


class FakeSink:
    """Records what reaches the backend."""

    def __init__(self, *failing: str) -> None:
        self.failing = set(failing)
        self.executed: list[str] = []
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.rollback_error: BaseException | None = None
        self.on_execute: Any = None

    def begin(self) -> FakeTransaction:
        self.begins += 1
        return FakeTransaction(self)

    def query(self, sql: str, args: Any = ()) -> list[dict[str, Any]]:
        self.executed.append(sql)
        return []

    def close(self) -> None:
        self.closed = True


def _script(*statements: str) -> CompiledExpression:
    parts = tuple(CompiledExpression(s) for s in statements)
    return CompiledExpression(";\n".join(statements) + ";", (), parts)


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


class TestOpen:
    def test_unknown_dialect_opens_nothing(self) -> None:
        with pytest.raises(UnsupportedDialectError):
            open_db("postgres-unsupported", "u:p@localhost/db")

    def test_file_dialect_needs_a_source(self) -> None:
        with pytest.raises(ArgumentError, match="needs a 'source'"):
            open_db("sqlite")

    def test_sqlite_file(self, tmp_path) -> None:
        path = tmp_path / "app.db"

        with open_db("sqlite", str(path)) as db:
            db.create_table(Country)
            assert db.has_table(Country)

        assert path.exists()

    def test_existing_engine_is_not_disposed(self) -> None:
        sa_engine = create_engine("sqlite://")
        db = open_db("sqlite", engine=sa_engine)

        db.close()

        assert db.sink.engine is sa_engine
        with sa_engine.connect() as connection:
            assert connection.exec_driver_sql("SELECT 1").scalar() == 1

    def test_open_with_custom_opener(self, hooks: HookRegistry) -> None:
        sink = FakeSink()

        class Opener:
            def open(self, config: OpenConfig):
                return sink, get_dialect(config.dialect)

        config = OpenConfig.build(dialect="mysql", source="memory", hooks=hooks)
        db = open_with_opener(Opener(), config)

        assert db.sink is sink
        assert db.dialect.name == "mysql"
        assert db.hooks is hooks
        assert isinstance(sink, ExecutionSink)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


class TestCrud:
    def test_create_writes_back_generated_key(self, db: DB) -> None:
        first = db.create(User(name="ada"))
        second = db.create(User(name="grace"))

        assert (first.id, second.id) == (1, 2)

    def test_round_trip(self, db: DB) -> None:
        db.create(User(name="ada", age=36, address=Address(city="London")))

        (user,) = db.find(User, {"name": "ada"})

        assert user.age == 36
        assert user.status is Status.ACTIVE
        assert user.address == Address(street="", city="London")
        assert user.created_at is not None

    def test_null_embedded_group_reads_back_as_none(self, db: DB) -> None:
        db.create(User(name="ada"))

        assert db.first(User).address is None

    def test_find_with_fragment(self, db: DB) -> None:
        for name, age in [("ada", 36), ("grace", 85), ("linus", 20)]:
            db.create(User(name=name, age=age))

        names = sorted(u.name for u in db.find(User, "age > ?", 30))

        assert names == ["ada", "grace"]

    def test_find_by_primary_key(self, db: DB) -> None:
        user = db.create(User(name="ada"))

        assert [u.name for u in db.find(User, user.id)] == ["ada"]
        assert db.find(User, [user.id, 99])[0].id == user.id

    def test_first_orders_by_primary_key(self, db: DB) -> None:
        db.create(User(name="b"))
        db.create(User(name="a"))

        assert db.first(User).name == "b"
        assert db.first(User, "name = ?", "missing") is None

    def test_first_keeps_explicit_order(self, db: DB) -> None:
        db.create(User(name="b"))
        db.create(User(name="a"))
        engine = db.new_engine()
        engine.search.order("name")

        assert db.first(User, engine=engine).name == "a"

    def test_count(self, db: DB) -> None:
        db.create(User(name="ada", age=36))
        db.create(User(name="linus", age=20))

        assert db.count(User) == 2
        assert db.count(User, "age < ?", 30) == 1

    def test_update_record(self, db: DB) -> None:
        user = db.create(User(name="ada"))

        assert db.update(user, age=37) == 1
        assert db.first(User).age == 37

    def test_update_matching_rows(self, db: DB) -> None:
        db.create(User(name="ada", age=36))
        db.create(User(name="linus", age=20))

        changed = db.update(User, "age < ?", 30, status=Status.BANNED)

        assert changed == 1
        assert [u.name for u in db.find(User, {"status": "banned"})] == ["linus"]

    def test_update_with_prepared_engine(self, db: DB) -> None:
        db.create(User(name="ada", age=36))
        db.create(User(name="linus", age=20))
        engine = db.new_engine()
        engine.search.where({"name": "ada"})

        assert db.update(User, engine=engine, age=37) == 1
        assert db.first(User, {"name": "ada"}).age == 37

    def test_update_with_cancelled_engine(self, db: DB) -> None:
        user = db.create(User(name="ada"))
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            db.update(user, engine=db.new_engine(cancel), age=1)

        assert db.first(User).age == 0

    def test_update_all_columns_of_record(self, db: DB) -> None:
        user = db.create(User(name="ada"))
        user.name = "ada lovelace"

        db.update(user)

        assert db.first(User).name == "ada lovelace"

    def test_string_primary_key(self, db: DB) -> None:
        db.create(Country(code="fr", name="France"))

        db.update(Country(code="fr"), name="République")

        assert db.find(Country, {"code": "fr"})[0].name == "République"

    def test_delete(self, db: DB) -> None:
        user = db.create(User(name="ada"))

        assert db.delete(user) == 1
        assert db.count(User) == 0

    def test_delete_without_conditions_is_refused(self, db: DB) -> None:
        with pytest.raises(ArgumentError):
            db.delete(User)


class TestSoftDelete:
    def test_soft_deleted_rows_are_hidden(self, db: DB) -> None:
        note = db.create(Note(body="draft"))
        db.create(Note(body="kept"))

        db.delete(note)

        assert [n.body for n in db.find(Note)] == ["kept"]
        assert db.count(Note) == 1

    def test_unscoped_find_returns_soft_deleted_rows(self, db: DB) -> None:
        note = db.create(Note(body="draft"))
        db.delete(note)
        engine = db.new_engine()
        engine.search.unscoped()

        (found,) = db.find(Note, engine=engine)

        assert found.deleted_at is not None

    def test_unscoped_delete_removes_the_row(self, db: DB) -> None:
        note = db.create(Note(body="draft"))
        engine = db.new_engine()
        engine.search.unscoped()

        db.delete(note, engine=engine)

        unscoped = db.new_engine()
        unscoped.search.unscoped()
        assert db.count(Note, engine=unscoped) == 0


class TestLifecycleHooks:
    def test_record_methods_run_around_execution(self, db: DB) -> None:
        note = db.create(Note(body="hello"))
        db.find(Note)

        assert Note.events == [
            "before_create:hello",
            f"after_create:{note.id}",
            f"after_find:{note.id}",
        ]

    def test_rejected_create_never_reaches_the_backend(
        self, hooks: HookRegistry
    ) -> None:
        Note.events.clear()
        sink = FakeSink()
        db = DB(sink, get_dialect("sqlite"), hooks=hooks)

        def reject(scope) -> None:
            raise PermissionError("read only")

        hooks.register("create", "before", "reject", reject)

        with pytest.raises(HookError) as excinfo:
            db.create(Note(body="x"))

        assert excinfo.value.stage == "reject"
        assert sink.begins == 0
        assert sink.executed == []
        assert Note.events == ["before_create:x"]


# ---------------------------------------------------------------------------
# DDL and transactions
# ---------------------------------------------------------------------------


class TestCreateTable:
    def test_create_table_sql_is_enveloped(self, db: DB) -> None:
        expr = db.create_table_sql(Country)

        assert expr.sql.splitlines() == [
            "BEGIN TRANSACTION;",
            'CREATE TABLE "countries" ("code" VARCHAR(2) NOT NULL, '
            "\"name\" VARCHAR(255) NOT NULL DEFAULT '', PRIMARY KEY (\"code\"));",
            "COMMIT;",
        ]

    def test_has_table(self, db: DB) -> None:
        assert db.has_table(User)
        assert db.has_table(Note)

    def test_failed_script_leaves_no_table(self, db: DB) -> None:
        script = _script(
            'CREATE TABLE "drafts" ("id" INTEGER)',
            'INSERT INTO "missing" VALUES (1)',
        )

        with pytest.raises(ExecutionError) as excinfo:
            db.exec_tx(script)

        assert excinfo.value.sql == 'INSERT INTO "missing" VALUES (1)'
        rows = db.sink.query(
            "SELECT count(*) AS n FROM sqlite_master WHERE name = 'drafts'"
        )
        assert rows == [{"n": 0}]


class TestExecTx:
    def test_statements_share_one_transaction(self) -> None:
        sink = FakeSink()
        db = DB(sink, get_dialect("sqlite"))

        result = db.exec_tx(_script("A", "B"))

        assert sink.executed == ["A", "B"]
        assert (sink.begins, sink.commits, sink.rollbacks) == (1, 1, 0)
        assert result.last_row_id == 2

    def test_failure_rolls_back(self) -> None:
        sink = FakeSink("B")
        db = DB(sink, get_dialect("sqlite"))

        with pytest.raises(ExecutionError) as excinfo:
            db.exec_tx(_script("A", "B", "C"))

        assert sink.executed == ["A", "B"]
        assert (sink.commits, sink.rollbacks) == (0, 1)
        assert isinstance(excinfo.value.cause, RuntimeError)
        assert excinfo.value.sql == "B"

    def test_rollback_failure_is_logged_not_raised(self, caplog) -> None:
        sink = FakeSink("A")
        sink.rollback_error = RuntimeError("connection lost")
        db = DB(sink, get_dialect("sqlite"))

        with caplog.at_level(logging.ERROR, logger="quill_orm.db"):
            with pytest.raises(ExecutionError, match="cannot run A"):
                db.exec_tx("A")

        assert "Rollback failed" in caplog.text

    def test_failed_begin_is_an_execution_error(self) -> None:
        class UnreachableSink(FakeSink):
            def begin(self) -> FakeTransaction:
                raise ConnectionError("backend unreachable")

        db = DB(UnreachableSink(), get_dialect("sqlite"))

        with pytest.raises(ExecutionError) as excinfo:
            db.exec_tx("SELECT 1")

        assert excinfo.value.sql == "SELECT 1"
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    def test_failed_begin_releases_the_connection(self) -> None:
        class Connection:
            closed = False

            def begin(self) -> None:
                raise ConnectionError("refused")

            def close(self) -> None:
                self.closed = True

        connection = Connection()

        with pytest.raises(ConnectionError):
            SQLAlchemyTransaction(connection)  # type: ignore[arg-type]

        assert connection.closed

    def test_arguments_with_compiled_expression(self) -> None:
        db = DB(FakeSink(), get_dialect("sqlite"))

        with pytest.raises(ArgumentError):
            db.exec_tx(CompiledExpression("SELECT ?", (1,)), 2)

    def test_cancelled_before_begin(self) -> None:
        sink = FakeSink()
        db = DB(sink, get_dialect("sqlite"))
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            db.exec_tx("A", cancel=cancel)

        assert sink.begins == 0

    def test_cancelled_between_statements(self) -> None:
        sink = FakeSink()
        cancel = threading.Event()
        sink.on_execute = lambda sql: cancel.set()
        db = DB(sink, get_dialect("sqlite"))

        with pytest.raises(OperationCancelledError):
            db.exec_tx(_script("A", "B"), cancel=cancel)

        assert sink.executed == ["A"]
        assert (sink.commits, sink.rollbacks) == (0, 1)

    def test_close(self) -> None:
        sink = FakeSink()

        with DB(sink, get_dialect("sqlite")):
            pass

        assert sink.closed

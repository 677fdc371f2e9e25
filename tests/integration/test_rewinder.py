"""End to end cleaning of SQLite databases through SQLAlchemy."""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine, insert, select
from sqlalchemy.orm import Session

from rewind_alchemy.config import RewinderConfig
from rewind_alchemy.registry import CleanerRegistry
from rewind_alchemy.strategy import Strategy
from tests.integration.models import Bar, Foo, Quu, SchemaMigration, count


def _engine(registry: CleanerRegistry, name: str = "test") -> Engine:
    return registry[name].handle.engine  # type: ignore[attr-defined]


class TestLookup:
    def test_connection_name_only(self, registry: CleanerRegistry) -> None:
        registry["test"]
        assert [cleaner.name for cleaner in registry.cleaners] == ["test"]

    def test_get_or_create_with_engine(self, registry: CleanerRegistry, fk_engine: Engine) -> None:
        cleaner = registry.get_or_create("aaa", fk_engine)
        assert cleaner.handle.engine is fk_engine  # type: ignore[attr-defined]
        assert registry.find_cleaner(fk_engine) is cleaner

    def test_registry_disposes_only_its_own_engines(self, registry: CleanerRegistry, fk_engine: Engine) -> None:
        registry["test"]
        registry.get_or_create("aaa", fk_engine)
        owned = [cleaner.handle.owns_engine for cleaner in registry]  # type: ignore[attr-defined]
        assert owned == [True, False]


class TestMultipleDatabases:
    def test_cleans_all_configured_databases(self, registry: CleanerRegistry) -> None:
        registry["test"]
        registry["test2"]
        with Session(_engine(registry, "test")) as session:
            session.add(Foo(name="foo1"))
            session.commit()
        with Session(_engine(registry, "test2")) as session:
            session.add(Quu(name="quu1"))
            session.commit()

        registry.clean()

        assert count(_engine(registry, "test"), Foo) == 0
        assert count(_engine(registry, "test2"), Quu) == 0

    def test_only_touched_tables_are_truncated(self, registry: CleanerRegistry) -> None:
        test, test2 = registry["test"], registry["test2"]
        engine = _engine(registry, "test")
        with engine.begin() as connection:
            connection.execute(insert(Foo), [{"name": "foo1"}])

        assert test.inserted_tables == ["foos"]
        assert test2.inserted_tables == []
        assert test.tables_to_truncate() == ["foos"]

        registry.clean()

        assert count(engine, Foo) == 0
        assert test.inserted_tables == []


class TestRecordInsertedTable:
    def test_separately_created_engine_is_matched_by_url(self, registry: CleanerRegistry, test_url: str) -> None:
        engine, other_engine = create_engine(test_url), create_engine(test_url)
        cleaner = registry.create_cleaner("foo", engine)

        registry.record_inserted_table(other_engine, 'INSERT INTO "database"."foos" ("name") VALUES (?)')

        assert cleaner.inserted_tables == ["foos"]
        engine.dispose()
        other_engine.dispose()

    def test_unknown_engine_is_ignored(self, registry: CleanerRegistry, caplog: pytest.LogCaptureFixture) -> None:
        registry["test"]
        stranger = create_engine("sqlite://")

        assert registry.record_inserted_table(stranger, "INSERT INTO foos (name) VALUES (?)") is None
        assert "no cleaner is registered" in caplog.text
        stranger.dispose()


class TestClean:
    def test_clean(self, registry: CleanerRegistry) -> None:
        engine = _engine(registry)
        with Session(engine) as session:
            foo = Foo(name="foo1")
            session.add(foo)
            session.flush()
            session.add(Bar(name="bar1", foo_id=foo.id))
            session.commit()

        registry.clean()

        assert count(engine, Foo) == 0
        assert count(engine, Bar) == 0

    def test_clean_twice(self, registry: CleanerRegistry) -> None:
        engine = _engine(registry)
        with Session(engine) as session:
            session.add(Foo(name="foo1"))
            session.commit()

        registry.clean()
        registry.clean()

        assert count(engine, Foo) == 0

    def test_autoincrement_restarts(self, registry: CleanerRegistry) -> None:
        engine = _engine(registry)
        with Session(engine) as session:
            session.add_all([Foo(name="foo1"), Foo(name="foo2")])
            session.commit()

        registry.clean()

        with Session(engine) as session:
            foo = Foo(name="foo3")
            session.add(foo)
            session.commit()
            assert foo.id == 1

    def test_children_are_deleted_before_parents(self, registry: CleanerRegistry, fk_engine: Engine) -> None:
        cleaner = registry.get_or_create("aaa", fk_engine)
        with Session(fk_engine) as session:
            foo = Foo(name="foo1")
            session.add(foo)
            session.flush()
            session.add(Bar(name="bar1", foo_id=foo.id))
            session.commit()

        assert cleaner.inserted_tables == ["foos", "bars"]
        registry.clean()

        assert count(fk_engine, Foo) == 0
        assert count(fk_engine, Bar) == 0

    def test_clean_all_keeps_schema_migrations(self, registry: CleanerRegistry) -> None:
        engine = _engine(registry)
        with Session(engine) as session:
            session.add(SchemaMigration(version_num="001"))
            session.add(Foo(name="foo1"))
            session.commit()

        registry.clean_all()

        assert count(engine, Foo) == 0
        assert count(engine, SchemaMigration) == 1


    def test_untracked_clean_keeps_schema_migrations(self, registry: CleanerRegistry, test_url: str) -> None:
        registry["test"]
        untracked = create_engine(test_url)
        with Session(untracked) as session:
            session.add(SchemaMigration(version_num="001"))
            session.add(Foo(name="foo1"))
            session.commit()

        registry.clean()

        assert count(untracked, Foo) == 0
        assert count(untracked, SchemaMigration) == 1
        untracked.dispose()


class TestCleanWith:
    @pytest.fixture
    def seeded(self, registry: CleanerRegistry) -> Engine:
        engine = _engine(registry)
        with Session(engine) as session:
            session.add_all([Foo(name="foo1"), Bar(name="bar1")])
            session.commit()
        return engine

    def test_only_option_is_restored(self, registry: CleanerRegistry, seeded: Engine) -> None:
        cleaner = registry["test"]
        only, except_ = cleaner.only, cleaner.except_

        registry.clean_with("truncation", only=["foos"])

        assert count(seeded, Foo) == 0
        assert count(seeded, Bar) == 1
        assert cleaner.only == only
        assert cleaner.except_ == except_

    def test_except_option_is_restored(self, registry: CleanerRegistry, seeded: Engine) -> None:
        cleaner = registry["test"]
        except_ = cleaner.except_

        registry.clean_with("truncation", except_=["bars"])

        assert count(seeded, Foo) == 0
        assert count(seeded, Bar) == 1
        assert cleaner.except_ == except_


class TestCleaning:
    def test_without_exception(self, registry: CleanerRegistry) -> None:
        engine = _engine(registry)
        with registry.cleaning(), Session(engine) as session:
            session.add(Foo(name="foo1"))
            session.commit()

        assert count(engine, Foo) == 0

    def test_with_exception(self, registry: CleanerRegistry) -> None:
        engine = _engine(registry)
        with pytest.raises(RuntimeError), registry.cleaning(), Session(engine) as session:
            session.add(Foo(name="foo1"))
            session.commit()
            raise RuntimeError

        assert count(engine, Foo) == 0


class TestSetStrategy:
    def test_creates_default_cleaner_with_options(self, registry: CleanerRegistry) -> None:
        registry.set_strategy("truncate", only=["foos"], except_=["bars"])

        assert (registry.only, registry.except_) == (["foos"], ["bars"])
        cleaner = registry.cleaners[0]
        assert cleaner.name == "test"
        assert (cleaner.only, cleaner.except_) == (["foos"], ["bars"])

    def test_called_again_overwrites_options(self, registry: CleanerRegistry) -> None:
        registry.set_strategy("truncate", only=["foos"], except_=["bars"])
        registry.set_strategy("truncate", only=["bazs"], except_=[])

        assert (registry.only, registry.except_) == (["bazs"], [])
        cleaner = registry.cleaners[0]
        assert (cleaner.only, cleaner.except_) == (["bazs"], [])

    def test_clean_creates_default_cleaner(self, registry: CleanerRegistry) -> None:
        registry.clean()
        assert [cleaner.name for cleaner in registry] == ["test"]


class TestTransactionStrategy:
    @pytest.fixture
    def registry(self, config: RewinderConfig) -> CleanerRegistry:
        config.strategy = Strategy.TRANSACTION
        registry = CleanerRegistry(config)
        yield registry  # type: ignore[misc]
        registry.reset()

    def test_rolls_back_writes(self, registry: CleanerRegistry) -> None:
        cleaner = registry["test"]
        registry.start()
        connection = cleaner.handle.connection  # type: ignore[attr-defined]
        connection.execute(insert(Foo), [{"name": "foo1"}, {"name": "foo2"}])
        assert connection.execute(select(Foo.name)).scalars().all() == ["foo1", "foo2"]

        registry.clean()

        assert cleaner.transaction_open
        assert cleaner.inserted_tables == []
        assert connection.execute(select(Foo.name)).scalars().all() == []

    def test_switching_to_truncation_mid_suite(self, registry: CleanerRegistry) -> None:
        cleaner = registry["test"]
        registry.start()
        cleaner.handle.connection.execute(insert(Foo), [{"name": "foo1"}])  # type: ignore[attr-defined]

        registry.set_strategy("truncation")

        assert not cleaner.transaction_open
        engine = _engine(registry)
        assert count(engine, Foo) == 0

        with Session(engine) as session:
            session.add(Foo(name="foo2"))
            session.commit()
        registry.clean()

        assert count(engine, Foo) == 0

    def test_clean_without_start(self, registry: CleanerRegistry) -> None:
        cleaner = registry["test"]
        registry.clean()
        registry.clean()
        assert cleaner.transaction_open

    def test_reset_closes_connection(self, registry: CleanerRegistry) -> None:
        cleaner = registry["test"]
        registry.start()
        connection = cleaner.handle.connection  # type: ignore[attr-defined]

        registry.reset()

        assert connection.closed
        assert registry.cleaners == []

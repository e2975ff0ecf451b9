"""Tests for the SQL migration runner."""

from sqlalchemy import text

from switchboard.storage.migrator import _MIGRATIONS_DIR, run_migrations, split_statements


def test_split_statements_drops_comments():
    sql = "-- header\nCREATE TABLE a (id INT);\n\n-- only a comment;\nCREATE INDEX i ON a (id);\n"
    assert split_statements(sql) == ["CREATE TABLE a (id INT)", "CREATE INDEX i ON a (id)"]


def test_packaged_migration_is_discoverable():
    files = sorted(p.name for p in _MIGRATIONS_DIR.glob("*.sql"))
    assert files[0] == "001_orchestration.sql"
    statements = split_statements((_MIGRATIONS_DIR / files[0]).read_text(encoding="utf-8"))
    assert sum(s.startswith("CREATE TABLE") for s in statements) == 3


async def test_run_migrations_applies_once(db, tmp_path):
    (tmp_path / "001_first.sql").write_text("CREATE TABLE widgets (id INTEGER PRIMARY KEY);")
    (tmp_path / "002_second.sql").write_text(
        "-- add a column\nALTER TABLE widgets ADD COLUMN name TEXT;\nCREATE INDEX idx_widgets_name ON widgets (name);"
    )

    applied = await run_migrations(db.engine, tmp_path)
    again = await run_migrations(db.engine, tmp_path)

    assert applied == ["001_first", "002_second"]
    assert again == []
    async with db.engine.connect() as conn:
        versions = [row[0] for row in await conn.execute(text("SELECT version FROM schema_migrations ORDER BY version"))]
    assert versions == ["001", "002"]


async def test_run_migrations_missing_dir(db, tmp_path):
    assert await run_migrations(db.engine, tmp_path / "nope") == []

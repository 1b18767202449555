"""
Module: inventory_kernel.db.triggers
Responsibility: PostgreSQL triggers that repeat the append-only rules of
    db/immutability.py inside the database.
Architecture position: Kernel > DB.  Imports sqlalchemy only; table names
    are spelled out here rather than imported from models/.

Invariants enforced:
    inventory_ledger         no UPDATE, no DELETE
    handling_unit_events     no UPDATE, no DELETE
    inventory_reservations   only released_at, release_reason and
                             expires_at may change; released_at is
                             write-once; no DELETE
    handling_units           only unpacked_at may change, once; no DELETE

    The ORM listeners stop mistakes made through a Session.  These catch
    Core ``update()``/``delete()`` statements and raw SQL as well.

Failure modes:
    - A blocked statement fails with SQLSTATE 23001 (restrict_violation),
      which SQLAlchemy raises as IntegrityError.
    - TRUNCATE is not a row-level operation and is not blocked; the test
      suite relies on that for cleanup.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

from inventory_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

GUARD_FUNCTION = "inventory_guard_row"

# TG_ARGV[0] is the write-once column ('-' for none); the remaining
# arguments are the columns an UPDATE may change.  The messages are built
# with || because text() would rewrite percent signs for psycopg2.
_GUARD_FUNCTION_SQL = f"""
CREATE OR REPLACE FUNCTION {GUARD_FUNCTION}() RETURNS trigger AS $$
DECLARE
    old_row jsonb;
    new_row jsonb;
    write_once text := TG_ARGV[0];
    i integer;
BEGIN
    IF TG_OP = 'DELETE' THEN
        RAISE EXCEPTION USING
            MESSAGE = TG_TABLE_NAME || ' rows cannot be deleted',
            ERRCODE = 'restrict_violation';
    END IF;

    old_row := to_jsonb(OLD);
    new_row := to_jsonb(NEW);

    IF write_once <> '-'
       AND old_row -> write_once <> 'null'::jsonb
       AND new_row -> write_once IS DISTINCT FROM old_row -> write_once THEN
        RAISE EXCEPTION USING
            MESSAGE = TG_TABLE_NAME || '.' || write_once || ' is already set',
            ERRCODE = 'restrict_violation';
    END IF;

    FOR i IN 1 .. TG_NARGS - 1 LOOP
        old_row := old_row - TG_ARGV[i];
        new_row := new_row - TG_ARGV[i];
    END LOOP;

    IF new_row IS DISTINCT FROM old_row THEN
        RAISE EXCEPTION USING
            MESSAGE = TG_TABLE_NAME || ' rows are immutable',
            ERRCODE = 'restrict_violation';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

# (table, write-once column, mutable columns)
GUARDED_TABLES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("inventory_ledger", "-", ()),
    ("handling_unit_events", "-", ()),
    ("inventory_reservations", "released_at", ("released_at", "release_reason", "expires_at")),
    ("handling_units", "unpacked_at", ("unpacked_at",)),
)


def trigger_name(table: str) -> str:
    return f"trg_{table}_guard"


def _create_trigger_sql(table: str, write_once: str, mutable: tuple[str, ...]) -> str:
    arguments = ", ".join(f"'{column}'" for column in (write_once, *mutable))
    name = trigger_name(table)
    return (
        f"DROP TRIGGER IF EXISTS {name} ON {table};\n"
        f"CREATE TRIGGER {name} BEFORE UPDATE OR DELETE ON {table}\n"
        f"    FOR EACH ROW EXECUTE FUNCTION {GUARD_FUNCTION}({arguments});\n"
    )


def install_immutability_triggers(engine: Engine) -> None:
    """
    Create the guard function and one trigger per guarded table.

    Preconditions: tables exist; engine is PostgreSQL.
    Postconditions: every trigger in GUARDED_TABLES is in place.  Safe to
        run again.
    """
    statements = [_GUARD_FUNCTION_SQL] + [
        _create_trigger_sql(table, write_once, mutable)
        for table, write_once, mutable in GUARDED_TABLES
    ]
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.info("immutability_triggers_installed", extra={"tables": len(GUARDED_TABLES)})


def installed_triggers(engine: Engine) -> list[str]:
    """Names of the guard triggers currently present, sorted."""
    expected = [trigger_name(table) for table, _, _ in GUARDED_TABLES]
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT tgname FROM pg_trigger WHERE tgname = ANY(:names) ORDER BY tgname"),
            {"names": expected},
        )
        return [row[0] for row in rows]

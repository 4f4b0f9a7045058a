from datetime import date

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ledger.application.clock import utc_today
from ledger.config import settings
from ledger.infrastructure.db.models import SequenceCounter

SEQUENCE_WIDTH = 5

_UPSERT_BUILDERS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def next_sequence_value(db: Session, *, scope: str) -> int:
    """Atomically increment and return the counter for ``scope``.

    Runs in the caller's transaction, so a rolled back operation never leaks a
    number that someone else could observe.
    """
    dialect_name = db.get_bind().dialect.name
    insert = _UPSERT_BUILDERS.get(dialect_name)
    if insert is None:
        raise RuntimeError(f"Sequence counters are not supported on dialect {dialect_name}")
    statement = (
        insert(SequenceCounter)
        .values(scope=scope, last_value=1)
        .on_conflict_do_update(
            index_elements=[SequenceCounter.scope],
            set_={"last_value": SequenceCounter.last_value + 1},
        )
        .returning(SequenceCounter.last_value)
    )
    return int(db.execute(statement).scalar_one())


def format_reference(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:0{SEQUENCE_WIDTH}d}"


def fiscal_year_for(current_date: date) -> int:
    return current_date.year + settings.fiscal_year_offset


def next_invoice_number(db: Session, *, as_of: date | None = None) -> str:
    year = (as_of or utc_today()).year
    return format_reference("INV", year, next_sequence_value(db, scope=f"invoice:{year}"))


def next_receipt_number(db: Session, *, payment_date: date) -> str:
    year = fiscal_year_for(payment_date)
    return format_reference("RCP", year, next_sequence_value(db, scope=f"receipt:{year}"))

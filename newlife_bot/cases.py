from __future__ import annotations

import logging

from .models import Counter, database

LOGGER = logging.getLogger(__name__)

CASE_COUNTER = "caseNumber"


def next_case_number(counter: str = CASE_COUNTER) -> int:
    """Atomically increment the shared case counter and return the new value.

    The insert-if-missing, increment and read all happen inside one SQLite
    write transaction, so concurrent callers are serialized by the database
    lock and never observe the same number. A number taken by a caller whose
    record later fails to save is simply skipped.
    """
    with database.atomic():
        Counter.insert(name=counter, seq=0).on_conflict_ignore().execute()
        Counter.update(seq=Counter.seq + 1).where(Counter.name == counter).execute()
        seq = Counter.select(Counter.seq).where(Counter.name == counter).scalar()
    LOGGER.debug("Assigned case number %s from counter %s", seq, counter)
    return int(seq)


def current_case_number(counter: str = CASE_COUNTER) -> int:
    row = Counter.get_or_none(Counter.name == counter)
    return int(row.seq) if row else 0

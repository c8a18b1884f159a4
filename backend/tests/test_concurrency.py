# Overview: Pytest coverage for the transaction and retry helpers.

"""
Transaction helper tests.

Verifies:
- a conflict raised by a nested service call re-runs the whole unit of work
- work flushed before the conflict is rolled back, not committed twice
- retries stop after the configured attempts
- document numbers keep counting after a retried unit
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from wms.extensions import db
from wms.models import User
from wms.services.concurrency import in_retry_boundary, run_in_transaction, run_with_retry
from wms.services.document_service import next_sale_number


def _writer_emails():
    return sorted(u.email for u in db.session.query(User).filter(User.email.like("writer%")))


class TestRetryBoundary:
    """Only the outermost boundary rolls back and retries."""

    def test_nested_conflict_reruns_outer_unit(self, db_session):
        units = []
        inner_runs = []

        def inner():
            inner_runs.append(1)
            if len(inner_runs) == 1:
                raise StaleDataError("row changed")
            return "done"

        def unit():
            units.append(1)
            db.session.add(User(name="Writer", email=f"writer{len(units)}@wms.local"))
            db.session.flush()
            return run_with_retry(inner)

        assert run_in_transaction(unit, backoff_base=0) == "done"

        assert len(units) == 2
        assert _writer_emails() == ["writer2@wms.local"]
        assert not in_retry_boundary()

    def test_gives_up_after_attempts(self, db_session):
        runs = []

        def unit():
            runs.append(1)
            db.session.add(User(name="Writer", email=f"writer{len(runs)}@wms.local"))
            db.session.flush()
            raise StaleDataError("always stale")

        with pytest.raises(StaleDataError):
            run_in_transaction(unit, attempts=2, backoff_base=0)

        assert len(runs) == 2
        assert _writer_emails() == []
        assert not in_retry_boundary()

    def test_business_errors_are_not_retried(self, db_session):
        runs = []

        def unit():
            runs.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_in_transaction(unit, backoff_base=0)
        assert len(runs) == 1

    def test_standalone_call_retries_itself(self, db_session):
        runs = []

        def op():
            runs.append(1)
            if len(runs) < 3:
                raise StaleDataError("row changed")
            return len(runs)

        assert run_with_retry(op, backoff_base=0) == 3


class TestSequencesUnderRetry:
    """Sequence rows written by a rolled-back attempt are discarded with it."""

    def test_retried_unit_allocates_from_a_clean_counter(self, db_session):
        attempts = []

        def unit():
            number = next_sale_number()
            attempts.append(number)
            if len(attempts) == 1:
                raise StaleDataError("row changed")
            return number

        number = run_in_transaction(unit, backoff_base=0)

        assert attempts[0] == attempts[1]
        assert number.endswith("0001")
        assert next_sale_number().endswith("0002")

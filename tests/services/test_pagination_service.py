from ledger.application.services.invoice_service import build_student_invoices_query
from ledger.application.services.pagination_service import paginate_scalars
from ledger.infrastructure.db.models import Invoice
from ledger.interfaces.api.v1.schemas.pagination import PaginationParams
from tests.helpers.factories import issue_invoice


def test_paginate_scalars_returns_totals_without_search(db_session):
    """
    Validate paginate_scalars count metadata without search.

    1. Issue three invoices for one student.
    2. Call paginate_scalars with offset zero and limit two.
    3. Validate first page item count follows limit.
    4. Validate total and filtered_total are identical.
    """
    for period_id in (1, 2, 3):
        issue_invoice(db_session, period_id=period_id)
    items, meta = paginate_scalars(
        db_session,
        build_student_invoices_query(student_id=1),
        params=PaginationParams(offset=0, limit=2),
        search_columns=[Invoice.invoice_number],
    )
    assert len(items) == 2
    assert meta.total == 3
    assert meta.filtered_total == 3
    assert meta.has_next is True


def test_paginate_scalars_applies_search_to_configured_columns(db_session):
    """
    Validate paginate_scalars declarative search behavior.

    1. Issue two invoices with sequential numbers.
    2. Search for the second invoice number once.
    3. Validate only matching invoice is returned.
    4. Validate filtered_total reflects search subset.
    """
    issue_invoice(db_session, period_id=1)
    second = issue_invoice(db_session, period_id=2)
    items, meta = paginate_scalars(
        db_session,
        build_student_invoices_query(student_id=1),
        params=PaginationParams(offset=0, limit=10, search=second.invoice_number),
        search_columns=[Invoice.invoice_number],
    )
    assert [invoice.id for invoice in items] == [second.id]
    assert meta.total == 2
    assert meta.filtered_total == 1


def test_paginate_scalars_sets_navigation_flags_for_middle_page(db_session):
    """
    Validate paginate_scalars page navigation metadata.

    1. Issue three invoices for one student.
    2. Call paginate_scalars requesting second page with limit one.
    3. Validate has_prev and has_next are both true.
    4. Validate current_page and filtered_total_pages values.
    """
    for period_id in (1, 2, 3):
        issue_invoice(db_session, period_id=period_id)
    _, meta = paginate_scalars(
        db_session,
        build_student_invoices_query(student_id=1),
        params=PaginationParams(offset=1, limit=1),
    )
    assert meta.has_prev is True
    assert meta.has_next is True
    assert meta.current_page == 2
    assert meta.filtered_total_pages == 3

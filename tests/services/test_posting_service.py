"""
Tests for StockPostingService: document posting, physical counts,
reversals and voids.
"""

from decimal import Decimal

import pytest

from stock_ledger.domain.classifier import DocumentType
from stock_ledger.domain.values import DocumentReference, MovementType, ReferenceType
from stock_ledger.exceptions import (
    InsufficientStockError,
    MovementNotFoundError,
    ValidationError,
)
from stock_ledger.services.movement_writer import AppendStatus
from tests.helpers import (
    ACTOR_ID,
    BUSINESS_ID,
    LOCATION_ID,
    PRODUCT_ID,
    VARIATION_ID,
    day,
    make_event,
)


def balance(posting):
    return posting.writer.projector.current_balance(BUSINESS_ID, VARIATION_ID, LOCATION_ID)


class TestPost:
    def test_sale_reduces_stock(self, posting, opening_stock):
        opening_stock("100")
        result = posting.post(make_event(DocumentType.SALE, 1, "30", transaction_date=day(1)))

        assert result.status is AppendStatus.WRITTEN
        assert result.movements[0].quantity_delta == Decimal("-30")
        assert balance(posting) == Decimal("70")

    def test_oversell_fails_and_balance_stays(self, posting, opening_stock):
        opening_stock("5")
        with pytest.raises(InsufficientStockError):
            posting.post(make_event(DocumentType.SALE, 1, "10"))
        assert balance(posting) == Decimal("5")

    def test_backorder_override(self, posting, opening_stock):
        opening_stock("5")
        posting.post(make_event(DocumentType.SALE, 1, "10"), allow_negative=True)
        assert balance(posting) == Decimal("-5")

    def test_repeat_post_is_success(self, posting, opening_stock):
        opening_stock("10")
        event = make_event(DocumentType.SALE, 1, "3")
        first = posting.post(event)
        second = posting.post(event)

        assert second.status is AppendStatus.ALREADY_EXISTS
        assert second.seqs == first.seqs
        assert balance(posting) == Decimal("7")

    def test_document_posted_logged(self, posting, captured_logs):
        posting.post(make_event(DocumentType.PURCHASE_RECEIPT, 8, "2", unit_cost="3"))
        record = next(r for r in captured_logs() if r["message"] == "document_posted")
        assert record["document_type"] == "purchase_receipt"
        assert record["status"] == "written"


class TestPhysicalCount:
    def _count(self, posting, counted, reference_id=50):
        return posting.post_physical_count(
            BUSINESS_ID, PRODUCT_ID, VARIATION_ID, LOCATION_ID,
            Decimal(counted), reference_id=reference_id, actor_id=ACTOR_ID,
        )

    def test_shortfall_posts_negative_correction(self, posting, opening_stock):
        opening_stock("20")
        result = self._count(posting, "17")

        (movement,) = result.movements
        assert movement.transaction_type == "correction"
        assert movement.quantity_delta == Decimal("-3")
        assert balance(posting) == Decimal("17")

    def test_surplus_posts_positive_correction(self, posting, opening_stock):
        opening_stock("20")
        self._count(posting, "22")
        assert balance(posting) == Decimal("22")

    def test_match_posts_nothing(self, posting, opening_stock):
        opening_stock("20")
        assert self._count(posting, "20") is None

    def test_count_brings_backorder_to_zero(self, posting, opening_stock):
        opening_stock("1")
        posting.post(make_event(DocumentType.SALE, 1, "3"), allow_negative=True)
        self._count(posting, "0")
        assert balance(posting) == 0

    def test_negative_count_rejected(self, posting):
        with pytest.raises(ValidationError):
            self._count(posting, "-1")


class TestReverseDocument:
    def test_reversal_compensates_every_line(self, posting, movement_selector, opening_stock):
        opening_stock("100")
        sale = posting.post(make_event(DocumentType.SALE, 4, "30"))
        reference = DocumentReference(ReferenceType.SALE, 4)

        result = posting.reverse_document(BUSINESS_ID, reference, ACTOR_ID, reason="cancelled order")

        (reversal,) = result.movements
        assert reversal.transaction_type == MovementType.CORRECTION.value
        assert reversal.quantity_delta == Decimal("30")
        assert reversal.idempotency_key.endswith(":rev")
        assert balance(posting) == Decimal("100")

        records = movement_selector.by_reference(BUSINESS_ID, reference)
        assert [r.reverses_seq for r in records] == [None, sale.seqs[0]]
        assert "cancelled order" in records[1].notes

    def test_reversal_is_idempotent(self, posting, opening_stock):
        opening_stock("100")
        posting.post(make_event(DocumentType.SALE, 4, "30"))
        reference = DocumentReference(ReferenceType.SALE, 4)

        first = posting.reverse_document(BUSINESS_ID, reference, ACTOR_ID, reason="x")
        second = posting.reverse_document(BUSINESS_ID, reference, ACTOR_ID, reason="x")

        assert second.status is AppendStatus.ALREADY_EXISTS
        assert second.seqs == first.seqs
        assert balance(posting) == Decimal("100")

    def test_unknown_document(self, posting):
        with pytest.raises(MovementNotFoundError):
            posting.reverse_document(
                BUSINESS_ID, DocumentReference(ReferenceType.SALE, 404), ACTOR_ID, reason="x"
            )

    def test_reason_required(self, posting):
        with pytest.raises(ValidationError):
            posting.reverse_document(
                BUSINESS_ID, DocumentReference(ReferenceType.SALE, 1), ACTOR_ID, reason=""
            )

    def test_repair_markers_cannot_be_reversed(self, posting):
        with pytest.raises(ValidationError):
            posting.reverse_document(
                BUSINESS_ID, DocumentReference(ReferenceType.RECONCILIATION, 1), ACTOR_ID, reason="x"
            )


class TestVoidDocument:
    def test_void_removes_document_effect(self, posting, movement_selector, opening_stock):
        opening_stock("100")
        posting.post(make_event(DocumentType.SALE, 4, "30"))
        reference = DocumentReference(ReferenceType.SALE, 4)

        result = posting.void_document(BUSINESS_ID, reference, ACTOR_ID, reason="duplicate entry")

        assert len(result.voided) == 1
        assert balance(posting) == Decimal("100")
        assert movement_selector.by_reference(BUSINESS_ID, reference, include_voided=False) == []

    def test_unknown_document(self, posting):
        with pytest.raises(MovementNotFoundError):
            posting.void_document(
                BUSINESS_ID, DocumentReference(ReferenceType.SALE, 404), ACTOR_ID, reason="x"
            )

"""
Tests for TransactionClassifier and validate_delta.

Pure domain tests: no database.
"""

from decimal import Decimal

import pytest

from stock_ledger.domain.classifier import (
    DocumentType,
    LineItem,
    StockEvent,
    TransactionClassifier,
    TransferAction,
    validate_delta,
)
from stock_ledger.domain.values import MovementType, ReferenceType
from stock_ledger.exceptions import InvalidDeltaError, ValidationError
from tests.helpers import (
    ACTOR_ID,
    BUSINESS_ID,
    LOCATION_ID,
    OTHER_LOCATION_ID,
    OTHER_VARIATION_ID,
    PRODUCT_ID,
    T0,
    VARIATION_ID,
    make_event,
)


@pytest.fixture
def classifier() -> TransactionClassifier:
    return TransactionClassifier()


class TestSignConventions:
    """Each document type maps to one movement type with a fixed sign."""

    @pytest.mark.parametrize(
        "document_type,movement_type,sign,cost",
        [
            (DocumentType.OPENING_STOCK, MovementType.OPENING_STOCK, 1, "5"),
            (DocumentType.PURCHASE_RECEIPT, MovementType.PURCHASE_RECEIPT, 1, "10"),
            (DocumentType.SALE, MovementType.SALE, -1, None),
            (DocumentType.CUSTOMER_RETURN, MovementType.CUSTOMER_RETURN, 1, None),
            (DocumentType.SUPPLIER_RETURN, MovementType.SUPPLIER_RETURN, -1, None),
        ],
    )
    def test_directional_documents(self, classifier, document_type, movement_type, sign, cost):
        (intent,) = classifier.classify(make_event(document_type, 17, "4", unit_cost=cost))

        assert intent.transaction_type is movement_type
        assert intent.quantity_delta == Decimal("4") * sign
        assert intent.location_id == LOCATION_ID
        assert intent.reference.reference_type is ReferenceType(document_type.value)
        assert intent.reference.reference_id == 17

    def test_correction_keeps_given_sign(self, classifier):
        (down,) = classifier.classify(make_event(DocumentType.CORRECTION, 3, "-2"))
        (up,) = classifier.classify(make_event(DocumentType.CORRECTION, 4, "2"))

        assert down.quantity_delta == Decimal("-2")
        assert up.quantity_delta == Decimal("2")

    def test_transfer_send_debits_source(self, classifier):
        (out,) = classifier.classify(
            make_event(
                DocumentType.TRANSFER, 5, "20",
                action=TransferAction.SEND, destination_location_id=OTHER_LOCATION_ID,
            )
        )
        assert out.transaction_type is MovementType.TRANSFER_OUT
        assert out.quantity_delta == Decimal("-20")
        assert out.location_id == LOCATION_ID
        assert out.notes == f"Transfer 5 to location {OTHER_LOCATION_ID}"

    def test_transfer_receive_credits_destination(self, classifier):
        (inbound,) = classifier.classify(
            make_event(
                DocumentType.TRANSFER, 5, "20",
                action=TransferAction.RECEIVE, destination_location_id=OTHER_LOCATION_ID,
            )
        )
        assert inbound.transaction_type is MovementType.TRANSFER_IN
        assert inbound.quantity_delta == Decimal("20")
        assert inbound.location_id == OTHER_LOCATION_ID

    def test_transfer_complete_yields_both_legs(self, classifier):
        intents = classifier.classify(
            make_event(
                DocumentType.TRANSFER, 5, "20",
                action=TransferAction.COMPLETE, destination_location_id=OTHER_LOCATION_ID,
            )
        )
        assert [(i.transaction_type, i.quantity_delta, i.location_id) for i in intents] == [
            (MovementType.TRANSFER_OUT, Decimal("-20"), LOCATION_ID),
            (MovementType.TRANSFER_IN, Decimal("20"), OTHER_LOCATION_ID),
        ]
        assert sum(i.quantity_delta for i in intents) == 0

    def test_one_intent_per_line(self, classifier):
        event = StockEvent(
            business_id=BUSINESS_ID,
            document_type=DocumentType.PURCHASE_RECEIPT,
            reference_id=12,
            location_id=LOCATION_ID,
            lines=(
                LineItem(PRODUCT_ID, VARIATION_ID, Decimal("3"), Decimal("1.50")),
                LineItem(PRODUCT_ID, OTHER_VARIATION_ID, Decimal("7"), Decimal("2")),
            ),
            actor_id=ACTOR_ID,
            transaction_date=T0,
        )
        intents = classifier.classify(event)

        assert [i.variation_id for i in intents] == [VARIATION_ID, OTHER_VARIATION_ID]
        assert intents[0].total_value == Decimal("4.50")
        assert intents[0].notes == "Purchase receipt 12"

    def test_classification_is_deterministic(self, classifier):
        event = make_event(DocumentType.SALE, 9, "1")
        assert classifier.classify(event) == classifier.classify(event)


class TestRejections:
    """Malformed documents never produce movements."""

    def test_zero_quantity(self, classifier):
        with pytest.raises(ValidationError, match="Zero quantity"):
            classifier.classify(make_event(DocumentType.SALE, 1, "0"))

    def test_negative_quantity_on_sale_is_not_flipped(self, classifier):
        with pytest.raises(ValidationError, match="must be positive"):
            classifier.classify(make_event(DocumentType.SALE, 1, "-3"))

    def test_negative_transfer_quantity(self, classifier):
        with pytest.raises(ValidationError):
            classifier.classify(
                make_event(
                    DocumentType.TRANSFER, 1, "-3",
                    action=TransferAction.SEND, destination_location_id=OTHER_LOCATION_ID,
                )
            )

    def test_unknown_document_type(self, classifier):
        with pytest.raises(ValidationError, match="Unknown document type"):
            classifier.classify(make_event("stocktake", 1, "1"))

    def test_transfer_without_action(self, classifier):
        with pytest.raises(ValidationError, match="requires an action"):
            classifier.classify(
                make_event(DocumentType.TRANSFER, 1, "1", destination_location_id=OTHER_LOCATION_ID)
            )

    def test_transfer_with_unknown_action(self, classifier):
        with pytest.raises(ValidationError):
            classifier.classify(
                make_event(
                    DocumentType.TRANSFER, 1, "1",
                    action="teleport", destination_location_id=OTHER_LOCATION_ID,
                )
            )

    def test_action_on_non_transfer(self, classifier):
        with pytest.raises(ValidationError, match="take no action"):
            classifier.classify(make_event(DocumentType.SALE, 1, "1", action=TransferAction.SEND))

    def test_transfer_to_same_location(self, classifier):
        with pytest.raises(ValidationError, match="source and destination"):
            classifier.classify(
                make_event(
                    DocumentType.TRANSFER, 1, "1",
                    action=TransferAction.COMPLETE, destination_location_id=LOCATION_ID,
                )
            )

    def test_receipt_requires_unit_cost(self, classifier):
        with pytest.raises(ValidationError, match="requires a unit cost"):
            classifier.classify(make_event(DocumentType.PURCHASE_RECEIPT, 1, "1"))

    def test_negative_unit_cost(self, classifier):
        with pytest.raises(ValidationError, match="Unit cost"):
            classifier.classify(make_event(DocumentType.PURCHASE_RECEIPT, 1, "1", unit_cost="-1"))

    def test_too_many_decimal_places(self, classifier):
        with pytest.raises(ValidationError, match="decimal places"):
            classifier.classify(make_event(DocumentType.SALE, 1, "1.00001"))

    def test_float_quantity_refused(self, classifier):
        event = StockEvent(
            business_id=BUSINESS_ID,
            document_type=DocumentType.SALE,
            reference_id=1,
            location_id=LOCATION_ID,
            lines=(LineItem(PRODUCT_ID, VARIATION_ID, 0.1),),
            actor_id=ACTOR_ID,
            transaction_date=T0,
        )
        with pytest.raises(ValidationError):
            classifier.classify(event)

    def test_duplicate_variation_in_document(self, classifier):
        event = StockEvent(
            business_id=BUSINESS_ID,
            document_type=DocumentType.SALE,
            reference_id=1,
            location_id=LOCATION_ID,
            lines=(
                LineItem(PRODUCT_ID, VARIATION_ID, Decimal("1")),
                LineItem(PRODUCT_ID, VARIATION_ID, Decimal("2")),
            ),
            actor_id=ACTOR_ID,
            transaction_date=T0,
        )
        with pytest.raises(ValidationError, match="more than once"):
            classifier.classify(event)

    def test_empty_document(self, classifier):
        event = StockEvent(
            business_id=BUSINESS_ID,
            document_type=DocumentType.SALE,
            reference_id=1,
            location_id=LOCATION_ID,
            lines=(),
            actor_id=ACTOR_ID,
            transaction_date=T0,
        )
        with pytest.raises(ValidationError, match="no line items"):
            classifier.classify(event)

    @pytest.mark.parametrize("bad_id", [0, -1, True, "7"])
    def test_invalid_reference_id(self, classifier, bad_id):
        with pytest.raises(ValidationError):
            classifier.classify(make_event(DocumentType.SALE, bad_id, "1"))


class TestValidateDelta:
    """validate_delta is the sign check the writer repeats on every intent."""

    def test_positive_sale_rejected(self):
        with pytest.raises(InvalidDeltaError) as exc_info:
            validate_delta(MovementType.SALE, Decimal("5"))
        assert exc_info.value.code == "INVALID_DELTA"
        assert exc_info.value.expected == "negative"

    def test_negative_receipt_rejected(self):
        with pytest.raises(InvalidDeltaError):
            validate_delta(MovementType.PURCHASE_RECEIPT, Decimal("-5"))

    def test_invalid_delta_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            validate_delta(MovementType.TRANSFER_IN, Decimal("-1"))

    def test_correction_accepts_either_sign(self):
        validate_delta(MovementType.CORRECTION, Decimal("-5"))
        validate_delta(MovementType.CORRECTION, Decimal("5"))

    def test_zero_rejected_unless_allowed(self):
        with pytest.raises(ValidationError):
            validate_delta(MovementType.CORRECTION, Decimal("0"))
        validate_delta(MovementType.CORRECTION, Decimal("0"), allow_zero=True)


class TestIdempotencyKey:
    """Intent keys identify (business, document, type, variation, location)."""

    def test_key_layout(self, classifier):
        (intent,) = classifier.classify(make_event(DocumentType.SALE, 17, "1"))
        assert intent.idempotency_key == f"{BUSINESS_ID}:sale:17:sale:{VARIATION_ID}:{LOCATION_ID}"

    def test_transfer_legs_have_distinct_keys(self, classifier):
        out, inbound = classifier.classify(
            make_event(
                DocumentType.TRANSFER, 5, "1",
                action=TransferAction.COMPLETE, destination_location_id=OTHER_LOCATION_ID,
            )
        )
        assert out.idempotency_key != inbound.idempotency_key


class TestNotes:
    def test_default_notes_describe_the_document(self, classifier):
        (receipt,) = classifier.classify(
            make_event(DocumentType.PURCHASE_RECEIPT, 17, "1", unit_cost="2")
        )
        assert receipt.notes == "Purchase receipt 17"

        out_leg, in_leg = classifier.classify(
            make_event(
                DocumentType.TRANSFER, 5, "1",
                action=TransferAction.COMPLETE,
                destination_location_id=OTHER_LOCATION_ID,
            )
        )
        assert out_leg.notes == f"Transfer 5 to location {OTHER_LOCATION_ID}"
        assert in_leg.notes == f"Transfer 5 from location {LOCATION_ID}"

    def test_caller_notes_win(self, classifier):
        (sale,) = classifier.classify(make_event(DocumentType.SALE, 3, "1", notes="walk-in"))
        assert sale.notes == "walk-in"

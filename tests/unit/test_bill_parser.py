"""
Unit tests for BillParser
"""

from datetime import date
from decimal import Decimal

import pytest

from src.core.bill_parser import BillParser, UNKNOWN_VENDOR
from src.core.models import ActionKind


SEVEN_BILLS = """Pagos de la semana:
- Luz $850
- Agua $320
- Internet $599
- Renta $8,000
- Gas $450
- Teléfono $299
- Colegiatura $3,500"""


@pytest.fixture
def bill_parser():
    return BillParser()


class TestBillParser:
    """Test BillParser functionality"""

    def test_payment_to_person(self, bill_parser, make_context):
        drafts = bill_parser.parse("Pago 5,000 a Carlos", make_context())

        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.amount == Decimal("5000.00")
        assert draft.vendor == "Carlos"
        assert draft.currency == "MXN"
        assert draft.confidence >= 0.6

    @pytest.mark.parametrize("message,vendor", [
        ("Pago de 2,500 a favor de María López", "María López"),
        ("Transferencia $2,500 a favor de Juan Pérez", "Juan Pérez"),
    ])
    def test_a_favor_de_names_the_vendor(self, bill_parser, make_context, message, vendor):
        draft = bill_parser.parse(message, make_context())[0]

        assert draft.vendor == vendor
        assert draft.amount == Decimal("2500.00")

    def test_bulleted_list_splits_into_one_bill_per_item(self, bill_parser, make_context):
        drafts = bill_parser.parse(SEVEN_BILLS, make_context())

        assert len(drafts) == 7
        assert [draft.vendor for draft in drafts] == [
            "Luz", "Agua", "Internet", "Renta", "Gas", "Teléfono", "Colegiatura"
        ]
        assert drafts[3].amount == Decimal("8000.00")
        assert drafts[0].category == "servicios"
        assert drafts[3].category == "vivienda"
        assert drafts[6].category == "educacion"

    def test_single_amount_list_is_not_split(self, bill_parser, make_context):
        drafts = bill_parser.parse("Pendiente:\n- Luz $850\n- revisar recibo", make_context())
        assert len(drafts) == 1

    def test_invoice_vendor_category_and_due_date(self, bill_parser, make_context):
        drafts = bill_parser.parse("Factura de CFE $1,350 vence el 15 de marzo", make_context())

        draft = drafts[0]
        assert draft.vendor == "CFE"
        assert draft.amount == Decimal("1350.00")
        assert draft.category == "servicios"
        assert draft.due_date == date(2024, 3, 15)

    def test_vendor_after_amount(self, bill_parser, make_context):
        draft = bill_parser.parse("$1,200 de gasolina", make_context())[0]
        assert draft.vendor == "Gasolina"
        assert draft.category == "transporte"

    def test_missing_vendor_is_low_confidence(self, pipeline, make_context):
        drafts = pipeline.parse(ActionKind.CREATE_BILL_PAYABLE, "$500", make_context())

        assert drafts[0].vendor == UNKNOWN_VENDOR
        assert drafts[0].confidence <= 0.4
        assert drafts[0].low_confidence

    def test_ambiguous_numeral_is_flagged(self, bill_parser, make_context):
        draft = bill_parser.parse("Pagué 12,50 a Juan", make_context())[0]

        assert draft.amount == Decimal("12.50")
        assert draft.vendor == "Juan"
        assert draft.metadata['amount_ambiguous'] is True
        assert draft.confidence < 0.9

    def test_no_bill_in_message(self, bill_parser, make_context):
        assert bill_parser.parse("hola, cómo estás", make_context()) == []
        assert bill_parser.parse("", make_context()) == []

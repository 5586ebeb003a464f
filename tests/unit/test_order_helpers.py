import re
from datetime import datetime, timezone

import pytest

from entro.application.order_service import normalize_items
from entro.domain.exceptions import ValidationError
from entro.infrastructure.repositories.order_repository import generate_order_number
from entro.infrastructure.repositories.ticket_repository import (
    TICKET_CODE_ALPHABET,
    generate_ticket_code,
)


def test_normalize_merges_lines_and_drops_zero_quantities():
    items = [
        {"ticket_type_id": "regular", "quantity": 2},
        {"ticket_type_id": "vip", "quantity": 0},
        {"ticket_type_id": "regular", "quantity": 1},
    ]

    assert normalize_items(items) == {"regular": 3}


def test_normalize_rejects_empty_selection():
    with pytest.raises(ValidationError):
        normalize_items([{"ticket_type_id": "regular", "quantity": 0}])


def test_normalize_rejects_negative_quantity():
    with pytest.raises(ValidationError):
        normalize_items([{"ticket_type_id": "regular", "quantity": -1}])


def test_normalize_caps_quantity_per_ticket_type():
    with pytest.raises(ValidationError):
        normalize_items(
            [
                {"ticket_type_id": "regular", "quantity": 30},
                {"ticket_type_id": "regular", "quantity": 21},
            ]
        )


def test_order_number_format():
    number = generate_order_number(datetime(2026, 4, 27, tzinfo=timezone.utc))

    assert re.fullmatch(r"ORD-20260427-[A-Z0-9]{5}", number)


def test_ticket_code_format():
    code = generate_ticket_code()

    assert re.fullmatch(r"[A-Z0-9]{4}-[A-Z0-9]{4}", code)
    assert all(char in TICKET_CODE_ALPHABET for char in code.replace("-", ""))

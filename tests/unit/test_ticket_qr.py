import pytest

from entro.application.event_service import slugify
from entro.application.ticket_service import (
    generate_qr_data,
    get_signing_secret,
    parse_qr_data,
    sign_ticket,
    used_percentage,
    verify_qr_signature,
)
from entro.domain.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def signing_secret(monkeypatch):
    monkeypatch.setenv("TICKET_SIGNING_SECRET", "unit-test-secret")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://tickets.example.nl/")


def test_qr_data_format():
    qr_data = generate_qr_data("ticket-1", "secret-token")

    assert qr_data == f"https://tickets.example.nl/scan/ticket-1:{sign_ticket('secret-token')[:16]}"


def test_parse_accepts_url_and_path():
    qr_data = generate_qr_data("ticket-1", "secret-token")

    from_url = parse_qr_data(qr_data)
    from_path = parse_qr_data(qr_data.replace("https://tickets.example.nl", ""))

    assert from_url == from_path
    assert from_url.ticket_id == "ticket-1"
    assert len(from_url.signature) == 16


def test_parse_rejects_garbage():
    assert parse_qr_data("") is None
    assert parse_qr_data("https://tickets.example.nl/events/ticket-1") is None
    assert parse_qr_data("/scan/ticket-1:not-hex") is None


def test_signature_verification():
    signature = parse_qr_data(generate_qr_data("ticket-1", "secret-token")).signature

    assert verify_qr_signature("secret-token", signature)
    assert verify_qr_signature("secret-token", signature.upper())
    assert not verify_qr_signature("other-token", signature)
    assert not verify_qr_signature("secret-token", signature[:15])


def test_signature_depends_on_secret(monkeypatch):
    before = sign_ticket("secret-token")
    monkeypatch.setenv("TICKET_SIGNING_SECRET", "rotated-secret")

    assert sign_ticket("secret-token") != before


def test_missing_secret_fails_outside_development(monkeypatch):
    monkeypatch.delenv("TICKET_SIGNING_SECRET")
    monkeypatch.setenv("ENTRO_ENV", "production")

    with pytest.raises(ConfigurationError):
        get_signing_secret()


def test_missing_secret_falls_back_in_development(monkeypatch):
    monkeypatch.delenv("TICKET_SIGNING_SECRET")
    monkeypatch.setenv("ENTRO_ENV", "development")

    assert get_signing_secret() == "dev-ticket-signing-secret"


def test_slugify():
    assert slugify("Zomerfestival 2026!") == "zomerfestival-2026"
    assert slugify("  Jazz in de Kerk  ") == "jazz-in-de-kerk"
    assert slugify("Café & Co") == "caf-co"
    assert slugify("!!!") == ""
    assert len(slugify("a" * 80)) == 50


def test_used_percentage_rounds_half_up():
    assert used_percentage(1, 8) == 13
    assert used_percentage(1, 3) == 33
    assert used_percentage(2, 2) == 100
    assert used_percentage(0, 0) == 0

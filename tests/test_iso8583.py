import re
import string
from datetime import datetime

from app_models import Transaction
from iso8583 import (
    CHECKSUM, ICC_HEAD, ICC_PREFIX, ICC_TAIL, PRIMARY_BITMAP, build_error_response, build_response,
    format_iso8583_message, generate_auth_code, generate_stan, generate_wire_format, pack_amount,
    response_for,
)


def field_numbers(formatted):
    return [int(n) for n in re.findall(r"^Field (\d{3})", formatted, re.M)]


class TestFormattedMessage:
    def test_header_and_mti(self, transaction):
        msg = format_iso8583_message(transaction, stan="004242")
        assert msg.formatted.startswith("ISO8583 Message:\nMTI: 0200\nField 002: 4111111111111111\n")
        assert msg.formatted.endswith("Field 064: MAC_WOULD_BE_HERE\n")

    def test_fields_in_ascending_order_without_empty_ones(self, transaction):
        msg = format_iso8583_message(transaction, stan="004242")
        assert field_numbers(msg.formatted) == [
            2, 3, 4, 7, 11, 12, 13, 14, 22, 23, 25, 32, 41, 42, 48, 49, 52, 53, 54, 55, 64,
        ]

    def test_field_values(self, transaction):
        text = format_iso8583_message(transaction, stan="004242").formatted
        assert "Field 003: 000000\n" in text
        assert "Field 004: 000000010000\n" in text
        assert "Field 007: 0307140509\n" in text
        assert "Field 011: 004242\n" in text
        assert "Field 012: 140509\n" in text
        assert "Field 013: 0307\n" in text
        assert "Field 014: 1225\n" in text
        assert "Field 022: 051\n" in text
        assert "Field 042: 123456789012   \n" in text
        assert "Field 049: 840\n" in text
        assert "Field 055 (EMV Tags): 9F26:08A000000000000000," in text

    def test_short_terminal_id_is_space_padded(self, transaction):
        tx = transaction.model_copy(update={"terminal_id": "T1"})
        assert "Field 041: T1      \n" in format_iso8583_message(tx).formatted

    def test_no_emv_tags_drops_field_55(self, transaction):
        tx = transaction.model_copy(update={"emv_tags": None})
        assert 55 not in field_numbers(format_iso8583_message(tx).formatted)

    def test_entry_mode_defaults_to_emv(self, transaction):
        tx = transaction.model_copy(update={"entry_mode": None})
        assert "Field 022: 051\n" in format_iso8583_message(tx).formatted

    def test_currency_numeric_codes(self, transaction):
        eur = transaction.model_copy(update={"currency": "EUR"})
        uyu = transaction.model_copy(update={"currency": "UYU"})
        unknown = transaction.model_copy(update={"currency": "XYZ"})
        assert "Field 049: 978\n" in format_iso8583_message(eur).formatted
        assert "Field 049: 858\n" in format_iso8583_message(uyu).formatted
        assert "Field 049: 840\n" in format_iso8583_message(unknown).formatted


class TestWireFormat:
    def test_layout(self, transaction):
        wire = generate_wire_format(transaction, stan="123456")
        expected_head = (
            "0200" + PRIMARY_BITMAP + "000000" + "000000010000" + "123456" + "0307140509"
            + "4111111111111111" + "12345678" + "123456789012" + ICC_PREFIX + "051" + ICC_HEAD + "840"
        )
        assert wire == expected_head + ICC_TAIL + CHECKSUM

    def test_entry_mode_and_currency_are_spliced_in(self, transaction):
        tx = transaction.model_copy(update={"entry_mode": "022", "currency": "GBP"})
        wire = generate_wire_format(tx, stan="000001")
        assert ICC_PREFIX + "022" + ICC_HEAD + "826" + ICC_TAIL in wire

    def test_stan_shared_between_renditions(self, transaction, rng):
        msg = format_iso8583_message(transaction, rng=rng)
        stan = re.search(r"Field 011: (\d{6})", msg.formatted).group(1)
        assert msg.wire[56:62] == stan


class TestHelpers:
    def test_pack_amount(self):
        assert pack_amount("100.00") == "000000010000"
        assert pack_amount("12.5") == "000000000125"
        assert pack_amount("5") == "000000000005"
        # only the first dot goes, and long input is never cut
        assert pack_amount("1.2.3") == "0000000012.3"
        assert pack_amount("1234567890123.45") == "123456789012345"

    def test_stan_is_six_digits(self, rng):
        for _ in range(50):
            stan = generate_stan(rng)
            assert len(stan) == 6 and stan.isdigit()

    def test_auth_code_alphabet(self, rng):
        code = generate_auth_code(rng)
        assert len(code) == 6
        assert set(code) <= set(string.digits + string.ascii_uppercase)


class TestResponses:
    def test_approved_response(self, transaction):
        wire = generate_wire_format(transaction, stan="000777")
        resp = build_response("00", "APPROVED", "AB12CD", wire)
        assert resp.formatted == (
            "ISO8583 Response:\nMTI: 0210\n"
            "Field 039 (Response Code): 00\n"
            "Field 044 (Response Message): APPROVED\n"
            "Field 038 (Auth Code): AB12CD\n"
        )
        assert resp.wire == "0210" + wire[4:40] + "0000AB12CD" + wire[60:]

    def test_declined_response_blanks_auth_code(self, transaction):
        wire = generate_wire_format(transaction, stan="000777")
        resp = build_response("05", "DECLINED", "", wire)
        assert "Field 038 (Auth Code): \n" in resp.formatted
        assert resp.wire == "0210" + wire[4:40] + "0500" + " " * 6 + wire[60:]

    def test_additional_fields_are_appended(self, transaction):
        wire = generate_wire_format(transaction)
        resp = build_response("00", "APPROVED", "X", wire, additional_fields="Field 063: NOTE")
        assert resp.formatted.endswith("Field 063: NOTE\n")

    def test_error_response(self, transaction):
        wire = generate_wire_format(transaction)
        plain = build_error_response(wire)
        detailed = build_error_response(wire, "Request timed out after 5000ms")
        assert "Field 044 (Response Message): SYSTEM ERROR\n" in plain.formatted
        assert "Field 038" not in plain.formatted
        assert "SYSTEM ERROR - Request timed out after 5000ms" in detailed.formatted
        assert plain.wire == "0210" + wire[4:40] + "9600      " + wire[60:]

    def test_response_for_known_outcome(self, transaction):
        wire = generate_wire_format(transaction)
        approved = transaction.model_copy(update={"status": "approved", "auth_code": "QWE123"})
        declined = transaction.model_copy(update={"status": "declined", "response_code": "96"})
        assert "Field 038 (Auth Code): QWE123" in response_for(approved, wire).formatted
        assert "Field 039 (Response Code): 00" in response_for(approved, wire).formatted
        assert "Field 039 (Response Code): 96" in response_for(declined, wire).formatted
        assert "DECLINED" in response_for(declined, wire).formatted


def test_camel_case_payload_is_accepted():
    tx = Transaction.model_validate({
        "messageType": "0100",
        "cardNumber": "5555555555554444",
        "timestamp": "2024-01-02T03:04:05",
        "entryMode": "071",
    })
    msg = format_iso8583_message(tx, stan="000001")
    assert msg.formatted.startswith("ISO8583 Message:\nMTI: 0100\nField 002: 5555555555554444\n")
    assert "Field 022: 071\n" in msg.formatted
    assert tx.timestamp == datetime(2024, 1, 2, 3, 4, 5)

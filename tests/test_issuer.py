from datetime import datetime

from issuer import authorize

NOW = datetime(2026, 5, 15)


def answer(**tx):
    return authorize({"transaction": tx}, now=NOW)["responseCode"]


def test_expiry_month_is_inclusive():
    assert answer(cardNumber="4111111111111111", expiryDate="0526", amount="1.00") == "00"
    assert answer(cardNumber="4111111111111111", expiryDate="0426", amount="1.00") == "54"


def test_unparseable_expiry_is_honoured():
    assert answer(cardNumber="4111111111111111", expiryDate="13/9", amount="1.00") == "00"


def test_non_finite_amounts_are_declined():
    for amount in ("NaN", "sNaN", "Infinity"):
        assert answer(cardNumber="4111111111111111", expiryDate="1299", amount=amount) == "05"


def test_malformed_payloads():
    assert authorize({}, now=NOW)["responseCode"] == "14"
    assert authorize({"transaction": [1, 2]}, now=NOW)["responseCode"] == "14"
    assert authorize(None, now=NOW)["responseCode"] == "14"


def test_numeric_amount_is_accepted():
    reply = authorize({"transaction": {"cardNumber": "4111111111111111", "expiryDate": "1299",
                                       "amount": 25}}, now=NOW)
    assert reply["approved"] is True
    assert reply["responseMessage"] == "APPROVED"
    assert len(reply["authCode"]) == 6

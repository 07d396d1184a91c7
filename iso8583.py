# iso8583.py
"""
Stylized ISO 8583 rendering for the simulator.

Nothing here is a real packer: the bitmap is a constant, DE 11 is random and
the wire string is a plain concatenation shaped like a captured message. The
two renditions exist so users can see which data elements a POS request
carries and roughly what travels on the line.
"""
import random
import string
from datetime import datetime
from typing import Dict, Optional

from app_models import MessagePair, Transaction
from currency import numeric_code

REQUEST_HEADER = "ISO8583 Message:"
RESPONSE_HEADER = "ISO8583 Response:"
RESPONSE_MTI = "0210"
DEFAULT_ENTRY_MODE = "051"  # ICC/EMV

# Wire constants
PRIMARY_BITMAP = "2210a23002000e80060000000000000010"
ICC_PREFIX = "0130303153"
ICC_HEAD = "324330303030303030303030303018238203233433030"
ICC_TAIL = (
    "3741303030303030303331303130393530353030383030303830303039413033"
    "3233313130373546324130323031373035463334303130303946303230363030"
    "3030303030313230303039463130303730363031304130334130413830333946"
    "3141303230313532394632363038303334443634374339383730343743343946"
    "3237303138303946333430333145303330303946333630323030383039463337"
    "3034424645363137444100"
)
CHECKSUM = "9080000000000000000"

# DEs with a constant value in every request. Empty ones are never printed.
STATIC_FIELDS: Dict[int, str] = {
    23: "001",                          # card sequence number
    25: "00",                           # POS condition code: normal
    32: "12345678",                     # acquiring institution id
    48: "Additional transaction data",
    52: "ENCRYPTED_PIN_BLOCK",
    53: "0100000000000000",             # security related control info
    54: "000000000000000C",             # additional amounts
    59: "",
    62: "",
    64: "MAC_WOULD_BE_HERE",
}

RESPONSE_MESSAGES = {
    "00": "APPROVED",
    "05": "DECLINED",
    "96": "SYSTEM ERROR",
}

_AUTH_ALPHABET = string.digits + string.ascii_uppercase


# ---- helpers ----
def _local(ts: datetime) -> datetime:
    # Timestamps arriving as JSON may be aware; field values use local time.
    return ts.astimezone() if ts.tzinfo is not None else ts


def transmission_datetime(ts: datetime) -> str:
    """DE 7, MMDDhhmmss."""
    return _local(ts).strftime("%m%d%H%M%S")


def local_time(ts: datetime) -> str:
    """DE 12, hhmmss."""
    return _local(ts).strftime("%H%M%S")


def local_date(ts: datetime) -> str:
    """DE 13, MMDD."""
    return _local(ts).strftime("%m%d")


def pack_amount(amount: str) -> str:
    """DE 4: drop the decimal point and left-pad to 12. Longer input is kept whole."""
    return amount.replace(".", "", 1).rjust(12, "0")


def generate_stan(rng=random) -> str:
    """DE 11 System Trace Audit Number: random, zero padded to 6 digits."""
    return f"{rng.randrange(1000000):06d}"


def generate_auth_code(rng=random) -> str:
    """Six uppercase base-36 characters, as handed out on approval."""
    return "".join(rng.choice(_AUTH_ALPHABET) for _ in range(6))


def build_fields(transaction: Transaction, stan: str) -> Dict[int, str]:
    ts = transaction.timestamp
    fields = {
        0: transaction.message_type,
        2: transaction.card_number,
        3: transaction.processing_code,
        4: pack_amount(transaction.amount),
        7: transmission_datetime(ts),
        11: stan,
        12: local_time(ts),
        13: local_date(ts),
        14: transaction.expiry_date,
        22: transaction.entry_mode or DEFAULT_ENTRY_MODE,
        41: transaction.terminal_id.ljust(8, " "),
        42: transaction.merchant_id.ljust(15, " "),
        49: numeric_code(transaction.currency),
        55: transaction.emv_tags or "",
    }
    fields.update(STATIC_FIELDS)
    return fields


# ---- request ----
def format_iso8583_message(transaction: Transaction, rng=random, stan: Optional[str] = None) -> MessagePair:
    """
    Render a request as the formatted listing and the wire string.
    Both renditions share one STAN.
    """
    stan = stan or generate_stan(rng)
    fields = build_fields(transaction, stan)

    lines = [REQUEST_HEADER, f"MTI: {fields[0]}"]
    for de in sorted(fields):
        value = fields[de]
        if de == 0 or not value:
            continue
        if de == 55:
            lines.append(f"Field {de:03d} (EMV Tags): {value}")
        else:
            lines.append(f"Field {de:03d}: {value}")

    return MessagePair(
        formatted="\n".join(lines) + "\n",
        wire=generate_wire_format(transaction, rng=rng, stan=stan),
    )


def generate_wire_format(transaction: Transaction, rng=random, stan: Optional[str] = None) -> str:
    entry_mode = transaction.entry_mode or DEFAULT_ENTRY_MODE
    return "".join([
        transaction.message_type,
        PRIMARY_BITMAP,
        transaction.processing_code,
        pack_amount(transaction.amount),
        stan or generate_stan(rng),
        transmission_datetime(transaction.timestamp),
        transaction.card_number,
        transaction.terminal_id,
        transaction.merchant_id,
        ICC_PREFIX,
        entry_mode,
        ICC_HEAD,
        numeric_code(transaction.currency),
        ICC_TAIL,
        CHECKSUM,
    ])


# ---- response ----
def response_wire(request_wire: str, response_code: str, auth_code: Optional[str]) -> str:
    # 0210 + echoed request slice + DE 39 + "00" + DE 38 (blank when absent) + request tail
    return f"{RESPONSE_MTI}{request_wire[4:40]}{response_code}00{auth_code or ' ' * 6}{request_wire[60:]}"


def build_response(response_code: str, response_message: str, auth_code: Optional[str],
                   request_wire: str, additional_fields: str = "") -> MessagePair:
    formatted = (
        f"{RESPONSE_HEADER}\n"
        f"MTI: {RESPONSE_MTI}\n"
        f"Field 039 (Response Code): {response_code}\n"
        f"Field 044 (Response Message): {response_message}\n"
        f"Field 038 (Auth Code): {auth_code or ''}\n"
    )
    if additional_fields:
        formatted += f"{additional_fields}\n"
    return MessagePair(formatted=formatted, wire=response_wire(request_wire, response_code, auth_code))


def build_error_response(request_wire: str, detail: Optional[str] = None) -> MessagePair:
    message = RESPONSE_MESSAGES["96"]
    if detail:
        message = f"{message} - {detail}"
    formatted = (
        f"{RESPONSE_HEADER}\n"
        f"MTI: {RESPONSE_MTI}\n"
        f"Field 039 (Response Code): 96\n"
        f"Field 044 (Response Message): {message}\n"
    )
    return MessagePair(formatted=formatted, wire=response_wire(request_wire, "96", None))


def response_for(transaction: Transaction, request_wire: str) -> MessagePair:
    """Response rendering for a transaction whose outcome is already known."""
    approved = transaction.status == "approved"
    code = transaction.response_code or ("00" if approved else "05")
    return build_response(code, "APPROVED" if approved else "DECLINED", transaction.auth_code, request_wire)

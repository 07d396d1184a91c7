# issuer.py
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

import config
from iso8583 import generate_auth_code

logger = logging.getLogger(__name__)

# DE 39 codes the demo host can answer with
FIELD_39_RESPONSES = {
    "00": "APPROVED",
    "05": "DO NOT HONOR",
    "14": "INVALID CARD NUMBER",
    "51": "INSUFFICIENT FUNDS",
    "54": "EXPIRED CARD",
    "96": "SYSTEM ERROR",
}


def _expired(expiry: str, now: datetime) -> bool:
    # MMYY; anything unparseable is left for the issuer to honour
    if len(expiry) != 4 or not expiry.isdigit():
        return False
    month, year = int(expiry[:2]), 2000 + int(expiry[2:])
    if not 1 <= month <= 12:
        return False
    return (year, month) < (now.year, now.month)


def authorize(payload: Dict[str, Any], now: datetime = None) -> Dict[str, Any]:
    """
    Tiny issuer behind POST /iso8583 so network mode can be tried without an
    external host. Declines on bad PAN, expired card, or amount over the limit.
    """
    now = now or datetime.now()
    tx = payload.get("transaction") if isinstance(payload, dict) else None
    if not isinstance(tx, dict):
        tx = {}
    pan = str(tx.get("cardNumber", ""))
    expiry = str(tx.get("expiryDate", ""))

    try:
        amount = Decimal(str(tx.get("amount", "0")))
    except InvalidOperation:
        amount = None
    if amount is not None and not amount.is_finite():
        amount = None

    if not pan.isdigit():
        code = "14"
    elif amount is None:
        code = "05"
    elif _expired(expiry, now):
        code = "54"
    elif amount > Decimal(config.DEMO_HOST_LIMIT):
        code = "51"
    else:
        code = "00"

    approved = code == "00"
    logger.info("Demo host answered %s for ****%s", code, pan[-4:])
    return {
        "approved": approved,
        "status": "approved" if approved else "declined",
        "responseCode": code,
        "responseMessage": FIELD_39_RESPONSES[code],
        "authCode": generate_auth_code() if approved else "",
    }

# cards.py
from dataclasses import dataclass
from typing import List, Optional

from app_models import CardOut


@dataclass(frozen=True)
class Card:
    id: str
    name: str
    type: str      # credit | debit
    network: str   # visa | mastercard | amex | discover
    number: str
    expiry_date: str  # MMYY
    pin: str
    color: str
    cardholder_name: str


# Wallet of test cards, each with its own PIN
CARD_OPTIONS: List[Card] = [
    Card("visa-credit", "VISA Credit", "credit", "visa",
         "4111111111111111", "1225", "1234", "from-blue-500 to-blue-700", "JOHN SMITH"),
    Card("visa-debit", "VISA Debit", "debit", "visa",
         "4000123456789010", "0326", "5678", "from-blue-400 to-green-600", "SARAH JOHNSON"),
    Card("mastercard-credit", "Mastercard Credit", "credit", "mastercard",
         "5555555555554444", "0924", "9012", "from-red-500 to-orange-500", "MICHAEL BROWN"),
    Card("mastercard-debit", "Mastercard Debit", "debit", "mastercard",
         "5200828282828210", "0725", "3456", "from-red-400 to-yellow-500", "EMMA WILSON"),
    Card("amex", "American Express", "credit", "amex",
         "378282246310005", "0926", "7890", "from-blue-600 to-blue-900", "DAVID MILLER"),
    Card("discover", "Discover", "credit", "discover",
         "6011111111111117", "0427", "4321", "from-orange-500 to-orange-700", "JENNIFER DAVIS"),
]


def get_card(card_id: Optional[str]) -> Optional[Card]:
    for card in CARD_OPTIONS:
        if card.id == card_id:
            return card
    return None


def card_index(card_id: Optional[str]) -> int:
    """Carousel position of a card; 0 when unknown."""
    for i, card in enumerate(CARD_OPTIONS):
        if card.id == card_id:
            return i
    return 0


def step_index(index: int, direction: int) -> int:
    """Move the wallet carousel one card either way, wrapping at both ends."""
    return (index + direction) % len(CARD_OPTIONS)


def mask_pan(pan: str) -> str:
    d = "".join(ch for ch in pan if ch.isdigit())
    return f"•••• {d[-4:]}" if len(d) >= 4 else d


def card_out(card: Card) -> CardOut:
    # PIN never leaves the server
    return CardOut(
        id=card.id,
        name=card.name,
        type=card.type,
        network=card.network,
        masked_number=mask_pan(card.number),
        expiry_date=card.expiry_date,
        color=card.color,
        cardholder_name=card.cardholder_name,
    )

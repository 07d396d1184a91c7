# app_models.py  (pydantic I/O models)
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from emv import DEFAULT_EMV_TAGS

Status = Literal["approved", "declined"]
Source = Literal["form", "terminal"]


class CamelModel(BaseModel):
    # Accept both cardNumber and card_number; emit camelCase when by_alias=True
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Transaction record ----
class Transaction(CamelModel):
    message_type: str = "0200"
    processing_code: str = "000000"
    amount: str = "100.00"
    card_number: str = "4111111111111111"
    expiry_date: str = "1225"  # MMYY
    merchant_id: str = "123456789012"
    terminal_id: str = "12345678"
    transaction_type: str = "purchase"
    timestamp: datetime = Field(default_factory=datetime.now)
    currency: str = "USD"
    status: Optional[Status] = None
    response_code: Optional[str] = None
    auth_code: Optional[str] = None
    source: Optional[Source] = None
    entry_mode: Optional[str] = None
    emv_tags: Optional[str] = None


class TransactionForm(Transaction):
    """Body of POST /transactions; mirrors the manual entry form."""
    entry_mode: Optional[str] = "051"
    emv_tags: Optional[str] = DEFAULT_EMV_TAGS
    include_emv_tags: bool = True

    def to_transaction(self) -> Transaction:
        data = self.model_dump(exclude={"include_emv_tags"})
        if not self.include_emv_tags:
            data["emv_tags"] = None
        data["source"] = "form"
        return Transaction(**data)


class MessagePair(BaseModel):
    formatted: str
    wire: str


# ---- Output structures ----
class TransactionRecord(Transaction):
    id: int
    masked_pan: str
    display_amount: str
    request_wire: Optional[str] = None
    response_wire: Optional[str] = None


class SimulationOut(CamelModel):
    """What the message viewer shows after a submit, a terminal run or a history click."""
    message: MessagePair
    response: MessagePair
    transaction: Transaction
    record_id: Optional[int] = None
    error: Optional[str] = None


class TxHistoryOut(BaseModel):
    items: List[TransactionRecord]


# ---- Network settings ----
class NetworkConfig(CamelModel):
    enabled: bool = False
    host: str = "localhost"
    port: str = "8080"
    timeout: int = Field(5000, ge=1, description="Request timeout in milliseconds")
    use_ssl: bool = Field(False, alias="useSSL")


class ConnectionTestOut(BaseModel):
    success: bool
    message: str


# ---- Card wallet ----
class CardOut(CamelModel):
    id: str
    name: str
    type: Literal["credit", "debit"]
    network: Literal["visa", "mastercard", "amex", "discover"]
    masked_number: str
    expiry_date: str
    color: str
    cardholder_name: str


class WalletOut(CamelModel):
    cards: List[CardOut]
    current_index: int = 0


# ---- POS terminal ----
class TerminalOpenIn(CamelModel):
    card_id: Optional[str] = None


class TerminalCardIn(CamelModel):
    card_id: str


class TerminalKeyIn(BaseModel):
    key: str = Field(..., description="F1-F4, up, down, cancel, enter, 0-9, 00, clear, backspace")


class PaymentMethodIn(BaseModel):
    method: Literal["swipe", "chip", "contactless"]


class CurrencyOption(BaseModel):
    slot: int
    code: str
    symbol: str
    name: str


class TerminalStateOut(CamelModel):
    session_id: str
    is_open: bool
    step: str
    processing_state: str
    transaction_type: str
    amount: str
    currency: str
    currency_symbol: str
    currency_page: List[CurrencyOption]
    pin_length: int
    pin_error: bool
    show_keypad: bool = False
    payment_method: str
    selected_card: Optional[CardOut] = None
    auth_code: str = ""
    error: Optional[str] = None
    network_enabled: bool = False
    result: Optional[SimulationOut] = None

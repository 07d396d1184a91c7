# terminal.py
"""
POS terminal wizard.

Mirrors the menu screens of a countertop terminal: welcome, main menu,
amount keypad, currency pages, confirmation, card presentation, PIN and
result. The class is a plain state machine; the timers of a physical device
(welcome splash, card read, result display) are collapsed into explicit calls.
Authorization itself is driven from outside (see simulator.run_terminal) once
the terminal reaches the processing step.
"""
import logging
import math
import random
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import config
from app_models import CurrencyOption, SimulationOut, TerminalStateOut, Transaction
from cards import Card, card_out
from currency import CURRENCIES, DEFAULT_CURRENCY, convert, get_currency
from emv import DEFAULT_EMV_TAGS
from iso8583 import generate_auth_code

logger = logging.getLogger(__name__)


class TerminalStep(str, Enum):
    WELCOME = "welcome"
    MAIN_MENU = "main-menu"
    TRANSACTION_TYPE = "transaction-type"
    AMOUNT = "amount"
    CURRENCY = "currency"
    CONFIRMATION = "confirmation"
    PAYMENT_METHOD = "payment-method"
    PAYMENT_ACTION = "payment-action"
    PIN = "pin"
    PROCESSING = "processing"
    RESULT = "result"
    ERROR = "error"


class ProcessingState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    PROCESSING = "processing"
    APPROVED = "approved"
    DECLINED = "declined"
    ERROR = "error"


class PaymentMethod(str, Enum):
    SWIPE = "swipe"
    CHIP = "chip"
    CONTACTLESS = "contactless"


PROCESSING_CODES = {
    "purchase": "000000",
    "withdrawal": "010000",
    "refund": "200000",
    "balance": "310000",
}

# F1..F4 on the main menu
MAIN_MENU_OPTIONS = {1: "purchase", 2: "refund", 3: "balance", 4: "withdrawal"}

ENTRY_MODES = {
    PaymentMethod.CHIP: "051",         # ICC/EMV
    PaymentMethod.CONTACTLESS: "079",  # contactless EMV
    PaymentMethod.SWIPE: "022",        # magnetic stripe
}

CONTACTLESS_NO_PIN_THRESHOLD_UYU = 2500
CURRENCY_PAGE_SIZE = 4
PIN_LENGTH = 4

AMOUNT_KEYS = {str(d) for d in range(10)} | {"00"}
EDIT_KEYS = {"clear", "backspace"}

CANCEL_TARGETS = {
    TerminalStep.AMOUNT: TerminalStep.MAIN_MENU,
    TerminalStep.TRANSACTION_TYPE: TerminalStep.MAIN_MENU,
    TerminalStep.CURRENCY: TerminalStep.MAIN_MENU,
    TerminalStep.CONFIRMATION: TerminalStep.CURRENCY,
    TerminalStep.PAYMENT_METHOD: TerminalStep.CONFIRMATION,
    TerminalStep.PAYMENT_ACTION: TerminalStep.PAYMENT_METHOD,
    TerminalStep.PIN: TerminalStep.PAYMENT_METHOD,
    TerminalStep.ERROR: TerminalStep.MAIN_MENU,
}


class TerminalError(Exception):
    """Raised for an action the terminal does not accept in its current state."""


def format_display_amount(digits: str) -> str:
    """Keypad digits are cents: "1250" -> "12.50", "" -> "0.00"."""
    if not digits:
        return "0.00"
    return f"{int(digits) / 100:.2f}"


class PosTerminal:
    def __init__(self, card: Optional[Card] = None):
        self.selected_card = card
        self.is_open = False
        self.reset()

    # ---- lifecycle ----
    def reset(self):
        self.step = TerminalStep.WELCOME
        self.processing_state = ProcessingState.IDLE
        self.payment_method = PaymentMethod.CHIP
        self.pin_value = ""
        self.pin_error = False
        self.amount_value = ""
        self.selected_currency = DEFAULT_CURRENCY
        self.selected_transaction_type = "purchase"
        self.menu_index = 0
        self.show_keypad = False
        self.auth_code = ""
        self.error: Optional[str] = None
        self.result: Optional[SimulationOut] = None
        self.transaction = self._blank_transaction()

    def _blank_transaction(self) -> Transaction:
        tx = Transaction(source="terminal", entry_mode="051", emv_tags=DEFAULT_EMV_TAGS)
        if self.selected_card:
            tx = tx.model_copy(update={
                "card_number": self.selected_card.number,
                "expiry_date": self.selected_card.expiry_date,
            })
        return tx

    def open(self):
        self.is_open = True
        self.step = TerminalStep.WELCOME

    def close(self):
        self.is_open = False
        self.reset()

    def welcome_elapsed(self):
        """The splash screen times out into the main menu."""
        if self.is_open and self.step == TerminalStep.WELCOME:
            self.step = TerminalStep.MAIN_MENU

    def select_card(self, card: Card):
        self.selected_card = card
        self.transaction = self.transaction.model_copy(update={
            "card_number": card.number,
            "expiry_date": card.expiry_date,
        })

    # ---- keys ----
    def press(self, key: str):
        """Single entry point for the physical keys."""
        if not self.is_open:
            raise TerminalError("Terminal is closed")
        k = key.strip().lower()
        if k in ("f1", "f2", "f3", "f4"):
            self.press_function_key(int(k[1]))
        elif k in ("up", "down", "cancel"):
            self.press_navigation_key(k)
        elif k == "enter":
            if self.step in (TerminalStep.AMOUNT, TerminalStep.PIN):
                self.press_keypad(k)
            else:
                self.press_navigation_key(k)
        elif k in AMOUNT_KEYS or k in EDIT_KEYS:
            self.press_keypad(k)
        else:
            raise TerminalError(f"Unknown key: {key}")

    def press_function_key(self, key: int):
        if self.step == TerminalStep.MAIN_MENU:
            tx_type = MAIN_MENU_OPTIONS.get(key)
            if tx_type is None:
                return
            self._set_transaction_type(tx_type)
            if tx_type == "balance":
                self.step = TerminalStep.PAYMENT_METHOD
            else:
                self.step = TerminalStep.AMOUNT
                self.show_keypad = True
        elif self.step == TerminalStep.CURRENCY:
            if 1 <= key <= CURRENCY_PAGE_SIZE:
                idx = self.menu_index * CURRENCY_PAGE_SIZE + key - 1
                if idx < len(CURRENCIES):
                    self._choose_currency(CURRENCIES[idx].code)
        elif self.step == TerminalStep.CONFIRMATION:
            if key == 1:
                self.step = TerminalStep.PAYMENT_METHOD
            elif key == 4:
                self.step = TerminalStep.MAIN_MENU
        elif self.step == TerminalStep.ERROR:
            self._leave_error()
        elif self.step == TerminalStep.RESULT:
            self.close()

    def press_navigation_key(self, key: str):
        if key == "cancel":
            if self.step in (TerminalStep.WELCOME, TerminalStep.MAIN_MENU, TerminalStep.RESULT):
                self.close()
            elif self.step == TerminalStep.ERROR:
                self._leave_error()
            elif self.step in CANCEL_TARGETS:
                if self.step in (TerminalStep.AMOUNT, TerminalStep.TRANSACTION_TYPE,
                                 TerminalStep.CURRENCY, TerminalStep.PIN):
                    self.show_keypad = False
                self.step = CANCEL_TARGETS[self.step]
        elif key == "enter":
            if self.step == TerminalStep.WELCOME:
                self.step = TerminalStep.MAIN_MENU
            elif self.step == TerminalStep.CURRENCY:
                start = self.menu_index * CURRENCY_PAGE_SIZE
                if start < len(CURRENCIES):
                    self._choose_currency(CURRENCIES[start].code)
            elif self.step == TerminalStep.ERROR:
                self._leave_error()
            elif self.step == TerminalStep.RESULT:
                self.close()
        elif key in ("up", "down") and self.step == TerminalStep.CURRENCY:
            pages = math.ceil(len(CURRENCIES) / CURRENCY_PAGE_SIZE)
            if key == "up":
                self.menu_index = self.menu_index - 1 if self.menu_index > 0 else pages - 1
            else:
                self.menu_index = self.menu_index + 1 if self.menu_index < pages - 1 else 0

    def press_keypad(self, key: str):
        if self.step == TerminalStep.PIN:
            self._pin_key(key)
        elif self.step == TerminalStep.AMOUNT:
            self._amount_key(key)
        # keypad is dark on every other screen

    def _amount_key(self, key: str):
        if key == "clear":
            self.amount_value = ""
        elif key == "backspace":
            self.amount_value = self.amount_value[:-1]
        elif key == "enter":
            if self.amount_value and int(self.amount_value) > 0:
                self.transaction = self.transaction.model_copy(update={"amount": self.display_amount})
                self.step = TerminalStep.CURRENCY
                self.show_keypad = False
        else:
            self.amount_value += key

    def _pin_key(self, key: str):
        if key == "clear":
            self.pin_value = ""
        elif key == "backspace":
            self.pin_value = self.pin_value[:-1]
        elif key == "enter":
            if len(self.pin_value) >= PIN_LENGTH:
                self._check_pin()
        elif len(self.pin_value) < PIN_LENGTH:
            self.pin_error = False
            self.pin_value = (self.pin_value + key)[:PIN_LENGTH]

    def _check_pin(self):
        if self.selected_card and self.pin_value == self.selected_card.pin:
            self.show_keypad = False
            self.pin_value = ""
            self.pin_error = False
            self._start_processing()
        else:
            logger.info("PIN rejected for card %s", self.selected_card.id if self.selected_card else None)
            self.pin_error = True
            self.pin_value = ""

    # ---- payment ----
    def select_payment_method(self, method: PaymentMethod):
        if self.step != TerminalStep.PAYMENT_METHOD:
            raise TerminalError(f"Cannot choose a payment method on the {self.step.value} screen")
        self._require_card()
        self.payment_method = PaymentMethod(method)
        self.step = TerminalStep.PAYMENT_ACTION

    def present_card(self):
        """Swipe, insert or tap, depending on the chosen payment method."""
        if self.step != TerminalStep.PAYMENT_ACTION:
            raise TerminalError(f"No card expected on the {self.step.value} screen")
        self._require_card()
        self.processing_state = ProcessingState.READING
        self.error = None

        method = self.payment_method
        if method == PaymentMethod.CONTACTLESS and self.contactless_below_pin_threshold():
            logger.debug("Contactless payment below threshold, skipping PIN")
            self._start_processing()
        elif method in (PaymentMethod.CHIP, PaymentMethod.CONTACTLESS):
            self.step = TerminalStep.PIN
            self.show_keypad = True
            self.processing_state = ProcessingState.IDLE
        else:
            self._start_processing()

    def contactless_below_pin_threshold(self) -> bool:
        if not self.amount_value:
            return False
        amount_uyu = convert(float(self.display_amount), self.selected_currency, "UYU")
        logger.debug("Amount in UYU: %.2f, threshold: %s", amount_uyu, CONTACTLESS_NO_PIN_THRESHOLD_UYU)
        return amount_uyu < CONTACTLESS_NO_PIN_THRESHOLD_UYU

    @property
    def awaiting_authorization(self) -> bool:
        return self.step == TerminalStep.PROCESSING

    def build_transaction(self) -> Transaction:
        """The request as it leaves the terminal, before any outcome is known."""
        card_present = self.payment_method in (PaymentMethod.CHIP, PaymentMethod.CONTACTLESS)
        update = {
            "amount": self.display_amount,
            "currency": self.selected_currency,
            "transaction_type": self.selected_transaction_type,
            "processing_code": PROCESSING_CODES.get(self.selected_transaction_type, "000000"),
            "timestamp": datetime.now(),
            "source": "terminal",
            "entry_mode": ENTRY_MODES[self.payment_method],
            "emv_tags": DEFAULT_EMV_TAGS if card_present else None,
        }
        if self.selected_card:
            update["card_number"] = self.selected_card.number
            update["expiry_date"] = self.selected_card.expiry_date
        return self.transaction.model_copy(update=update)

    def complete(self, approved: bool, response_code: Optional[str] = None,
                 auth_code: Optional[str] = None, rng=random) -> Transaction:
        if auth_code is None:
            auth_code = generate_auth_code(rng) if approved else ""
        self.auth_code = auth_code
        self.processing_state = ProcessingState.APPROVED if approved else ProcessingState.DECLINED
        self.step = TerminalStep.RESULT

        tx = self.build_transaction().model_copy(update={
            "status": "approved" if approved else "declined",
            "response_code": response_code or ("00" if approved else "05"),
            "auth_code": auth_code or None,
        })
        self.transaction = tx
        logger.info("Terminal transaction completed: %s %s %s", tx.transaction_type, tx.amount, tx.status)
        return tx

    def fail(self, error: str):
        self.error = error or "Failed to process transaction"
        self.step = TerminalStep.ERROR
        self.processing_state = ProcessingState.ERROR

    # ---- internals ----
    @property
    def display_amount(self) -> str:
        return format_display_amount(self.amount_value)

    def _require_card(self):
        if self.selected_card is None:
            raise TerminalError("Please select a card from the wallet first")

    def _start_processing(self):
        self.step = TerminalStep.PROCESSING
        self.processing_state = ProcessingState.PROCESSING

    def _set_transaction_type(self, tx_type: str):
        self.selected_transaction_type = tx_type
        self.transaction = self.transaction.model_copy(update={
            "transaction_type": tx_type,
            "processing_code": PROCESSING_CODES[tx_type],
        })

    def _choose_currency(self, code: str):
        self.selected_currency = code
        self.transaction = self.transaction.model_copy(update={"currency": code})
        self.step = TerminalStep.CONFIRMATION

    def _leave_error(self):
        self.error = None
        self.processing_state = ProcessingState.IDLE
        self.step = TerminalStep.MAIN_MENU

    # ---- view ----
    def currency_page(self):
        start = self.menu_index * CURRENCY_PAGE_SIZE
        page = CURRENCIES[start:start + CURRENCY_PAGE_SIZE]
        return [CurrencyOption(slot=i + 1, code=c.code, symbol=c.symbol, name=c.name) for i, c in enumerate(page)]

    def to_state(self, session_id: str, network_enabled: bool = False) -> TerminalStateOut:
        return TerminalStateOut(
            session_id=session_id,
            is_open=self.is_open,
            step=self.step.value,
            processing_state=self.processing_state.value,
            transaction_type=self.selected_transaction_type,
            amount=self.display_amount,
            currency=self.selected_currency,
            currency_symbol=get_currency(self.selected_currency).symbol,
            currency_page=self.currency_page(),
            pin_length=len(self.pin_value),
            pin_error=self.pin_error,
            show_keypad=self.show_keypad,
            payment_method=self.payment_method.value,
            selected_card=card_out(self.selected_card) if self.selected_card else None,
            auth_code=self.auth_code,
            error=self.error,
            network_enabled=network_enabled,
            result=self.result,
        )


class TerminalRegistry:
    """Open terminal sessions, keyed by a random id. Process memory only."""

    def __init__(self, max_sessions: int = config.TERMINAL_MAX_SESSIONS):
        self.max_sessions = max_sessions
        self._sessions: Dict[str, PosTerminal] = {}

    def create(self, card: Optional[Card] = None) -> Tuple[str, PosTerminal]:
        # oldest sessions go first once the registry is full
        while self._sessions and len(self._sessions) >= self.max_sessions:
            stale = next(iter(self._sessions))
            logger.info("Evicting terminal session %s", stale)
            del self._sessions[stale]
        session_id = uuid.uuid4().hex
        terminal = PosTerminal(card=card)
        terminal.open()
        self._sessions[session_id] = terminal
        return session_id, terminal

    def get(self, session_id: str) -> PosTerminal:
        return self._sessions[session_id]

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self):
        return len(self._sessions)

# simulator.py
import asyncio
import logging
import random
from datetime import datetime
from typing import Optional, Tuple

import httpx

import config
from app_models import MessagePair, NetworkConfig, SimulationOut, Transaction
from iso8583 import (
    build_error_response, build_response, format_iso8583_message, generate_auth_code, response_for,
)
from network import extract_outcome, parse_network_response, send_transaction
from terminal import PosTerminal, TerminalError

logger = logging.getLogger(__name__)

# Terminal runs already spent time on the card read, so they wait less.
TERMINAL_LATENCY_FACTOR = 2 / 3


class Iso8583Simulator:
    """
    Builds the request message for a transaction and produces its response,
    either from the configured network host or locally at random.
    """

    def __init__(self, latency: float = config.SIMULATED_LATENCY_MS / 1000,
                 approval_rate: float = config.APPROVAL_RATE,
                 rng: Optional[random.Random] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.latency = latency
        self.approval_rate = approval_rate
        self.rng = rng or random.Random()
        self.transport = transport

    # ---- entry points ----
    async def submit(self, transaction: Transaction, cfg: NetworkConfig) -> SimulationOut:
        """Form path."""
        tx = transaction.model_copy(update={"source": transaction.source or "form"})
        return await self._process(tx, cfg, self.latency, honour_status=False)

    async def process_terminal_transaction(self, transaction: Transaction, cfg: NetworkConfig) -> SimulationOut:
        """Terminal path: a status decided by the terminal is kept in simulation mode."""
        tx = transaction.model_copy(update={"timestamp": datetime.now(), "source": "terminal"})
        return await self._process(tx, cfg, self.latency * TERMINAL_LATENCY_FACTOR, honour_status=True)

    def select_transaction(self, transaction: Transaction) -> SimulationOut:
        """Re-render request and response for a history entry."""
        message = format_iso8583_message(transaction, rng=self.rng)
        return SimulationOut(
            message=message,
            response=response_for(transaction, message.wire),
            transaction=transaction,
        )

    async def run_terminal(self, terminal: PosTerminal, cfg: NetworkConfig) -> Optional[SimulationOut]:
        """
        Authorize whatever the terminal has reached the processing step with.
        Returns None when the host could not be reached; the terminal then
        shows its error screen and nothing is recorded.
        """
        if not terminal.awaiting_authorization:
            raise TerminalError("Terminal is not waiting for authorization")

        if not cfg.enabled:
            completed = terminal.complete(self._approve(), rng=self.rng)
            outcome = await self.process_terminal_transaction(completed, cfg)
            terminal.result = outcome
            return outcome

        tx = terminal.build_transaction()
        message = format_iso8583_message(tx, rng=self.rng)
        logger.info("Sending terminal transaction to %s:%s", cfg.host, cfg.port)
        result = await send_transaction(tx, cfg, transport=self.transport)
        if not result.success:
            terminal.fail(result.error)
            return None
        if not isinstance(result.response, dict):
            terminal.fail("Invalid response from host")
            return None

        approved, response_code, auth_code = extract_outcome(result.response, self.rng)
        completed = terminal.complete(approved, response_code, auth_code, rng=self.rng)
        outcome = self.from_host_response(completed, message, result.response,
                                          outcome=(approved, response_code, auth_code))
        terminal.result = outcome
        return outcome

    # ---- internals ----
    def _approve(self) -> bool:
        return self.rng.random() < self.approval_rate

    async def _process(self, tx: Transaction, cfg: NetworkConfig, latency: float,
                       honour_status: bool) -> SimulationOut:
        message = format_iso8583_message(tx, rng=self.rng)
        try:
            if cfg.enabled:
                logger.info("Sending %s transaction to %s:%s", tx.source, cfg.host, cfg.port)
                result = await send_transaction(tx, cfg, transport=self.transport)
                if not result.success:
                    error = result.error or "Failed to process transaction"
                    return self._failed(tx, message, error, detail=error)
                return self.from_host_response(tx, message, result.response)
            return await self._simulate(tx, message, latency, honour_status)
        except Exception as e:
            logger.exception("Transaction processing error")
            return self._failed(tx, message, str(e) or "An unexpected error occurred")

    def from_host_response(self, tx: Transaction, message: MessagePair, response,
                           outcome: Optional[Tuple[bool, str, str]] = None) -> SimulationOut:
        if not isinstance(response, dict):
            return self._failed(tx, message, "Invalid response from host")

        outcome = outcome or extract_outcome(response, self.rng)
        approved, response_code, auth_code = outcome
        done = tx.model_copy(update={
            "timestamp": datetime.now(),
            "status": "approved" if approved else "declined",
            "response_code": response_code,
            "auth_code": auth_code or None,
        })
        return SimulationOut(
            message=message,
            response=parse_network_response(response, message.wire, outcome=outcome),
            transaction=done,
        )

    async def _simulate(self, tx: Transaction, message: MessagePair, latency: float,
                        honour_status: bool) -> SimulationOut:
        if latency > 0:
            await asyncio.sleep(latency)

        if honour_status and tx.status:
            approved = tx.status == "approved"
        else:
            approved = self._approve()
        response_code = (tx.response_code if honour_status else None) or ("00" if approved else "05")
        auth_code = (tx.auth_code if honour_status else None) or (
            generate_auth_code(self.rng) if approved else "")

        done = tx.model_copy(update={
            "timestamp": datetime.now(),
            "status": "approved" if approved else "declined",
            "response_code": response_code,
            "auth_code": auth_code or None,
        })
        response = build_response(response_code, "APPROVED" if approved else "DECLINED", auth_code, message.wire)
        return SimulationOut(message=message, response=response, transaction=done)

    def _failed(self, tx: Transaction, message: MessagePair, error: str,
                detail: Optional[str] = None) -> SimulationOut:
        logger.warning("Transaction declined with 96: %s", error)
        done = tx.model_copy(update={
            "timestamp": datetime.now(),
            "status": "declined",
            "response_code": "96",
            "auth_code": None,
        })
        return SimulationOut(
            message=message,
            response=build_error_response(message.wire, detail),
            transaction=done,
            error=error,
        )

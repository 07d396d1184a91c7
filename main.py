# main.py
import logging

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

import config
import network
from app_models import (
    ConnectionTestOut, MessagePair, NetworkConfig, PaymentMethodIn, SimulationOut, TerminalCardIn,
    TerminalKeyIn, TerminalOpenIn, TerminalStateOut, Transaction, TransactionForm, TxHistoryOut, WalletOut,
)
from cards import CARD_OPTIONS, card_index, card_out, get_card, step_index
from db import get_db, init_db
from emv import expand_emv_tags
from iso8583 import format_iso8583_message
from issuer import authorize
from notify import (
    MESSAGE_BUILT, NETWORK_FAIL, NETWORK_SENT, TERMINAL_STEP, TX_COMPLETED, TX_STARTED, emit, manager,
)
from simulator import Iso8583Simulator
from storage import (
    clear_transactions, get_transaction, list_transactions, load_network_config, save_network_config,
    save_transaction, to_transaction,
)
from terminal import PaymentMethod, PosTerminal, TerminalError, TerminalRegistry

logging.basicConfig(
    level=logging.DEBUG if config.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("iso8583_simulator")
if not config.DEBUG:
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

app = FastAPI(
    title=config.APP_NAME,
    description="Build, send and inspect stylized ISO 8583 POS messages",
    version=config.APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()

simulator = Iso8583Simulator()
terminals = TerminalRegistry()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.debug(f"Incoming request: {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled exception while processing request")
        raise
    logger.debug(f"Response status: {response.status_code} for {request.method} {request.url.path}")
    return response


def current_config(db: Session) -> NetworkConfig:
    return load_network_config(db, network.DEFAULT_NETWORK_CONFIG)


def record_outcome(db: Session, outcome: SimulationOut) -> SimulationOut:
    rec = save_transaction(db, outcome.transaction, outcome.message.wire, outcome.response.wire)
    return outcome.model_copy(update={"record_id": rec.id})


# --------------------- Health ---------------------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/version")
def version():
    return {"name": config.APP_NAME, "version": config.APP_VERSION, "debug": config.DEBUG}


# --------------------- WebSocket ---------------------
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, ref: str | None = None):
    """Live transaction events; ?ref=<terminal session id> narrows them to one terminal."""
    await manager.connect(websocket, ref)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await manager.disconnect(websocket)


# --------------------- Messages -------------------
@app.post("/messages/format", response_model=MessagePair)
def format_message(transaction: Transaction, expand_emv: bool = False):
    """Preview the request a transaction would produce, without sending it."""
    message = format_iso8583_message(transaction)
    if expand_emv:
        message = MessagePair(formatted=expand_emv_tags(message.formatted), wire=message.wire)
    return message


# --------------------- Transactions -------------------
@app.post("/transactions", response_model=SimulationOut)
async def submit_transaction(form: TransactionForm, db: Session = Depends(get_db)):
    cfg = current_config(db)
    tx = form.to_transaction()
    await emit(TX_STARTED, "form", {"amount": tx.amount, "currency": tx.currency, "network": cfg.enabled})

    outcome = await simulator.submit(tx, cfg)
    await emit(MESSAGE_BUILT, "form", {"wire": outcome.message.wire})
    if outcome.error:
        await emit(NETWORK_FAIL, "form", {"error": outcome.error})
    elif cfg.enabled:
        await emit(NETWORK_SENT, "form", {"host": network.base_url(cfg)})

    outcome = record_outcome(db, outcome)
    await emit(TX_COMPLETED, str(outcome.record_id), {
        "status": outcome.transaction.status,
        "responseCode": outcome.transaction.response_code,
    })
    return outcome


@app.get("/transactions", response_model=TxHistoryOut)
def transaction_history(limit: int = 500, db: Session = Depends(get_db)):
    return TxHistoryOut(items=list_transactions(db, limit=limit))


@app.get("/transactions/{tx_id}", response_model=SimulationOut)
def select_transaction(tx_id: int, db: Session = Depends(get_db)):
    row = get_transaction(db, tx_id)
    if row is None:
        raise HTTPException(404, detail="Transaction not found")
    outcome = simulator.select_transaction(to_transaction(row))
    return outcome.model_copy(update={"record_id": row.id})


@app.delete("/transactions")
def delete_history(db: Session = Depends(get_db)):
    return {"deleted": clear_transactions(db)}


# --------------------- Network settings -------------------
@app.get("/network-config", response_model=NetworkConfig)
def get_network_config(db: Session = Depends(get_db)):
    return current_config(db)


@app.put("/network-config", response_model=NetworkConfig)
def put_network_config(cfg: NetworkConfig, db: Session = Depends(get_db)):
    logger.info("Network mode %s (%s)", "enabled" if cfg.enabled else "disabled", network.base_url(cfg))
    return save_network_config(db, cfg)


@app.post("/network-config/test", response_model=ConnectionTestOut)
async def test_network_config(cfg: NetworkConfig | None = None, db: Session = Depends(get_db)):
    """Check <host>/health with the given settings, or the saved ones."""
    success, message = await network.test_connection(cfg or current_config(db), transport=simulator.transport)
    return ConnectionTestOut(success=success, message=message)


# --------------------- Demo issuer host -------------------
@app.post("/iso8583")
def demo_host(payload: dict):
    return authorize(payload)


# --------------------- Card wallet -------------------
@app.get("/cards", response_model=WalletOut)
def wallet(selected: str | None = None, step: int = 0):
    """Card carousel; step=1/-1 moves from the selected card, wrapping around."""
    index = step_index(card_index(selected), step) if step else card_index(selected)
    return WalletOut(cards=[card_out(c) for c in CARD_OPTIONS], current_index=index)


# --------------------- POS terminal -------------------
def _terminal(session_id: str) -> PosTerminal:
    try:
        return terminals.get(session_id)
    except KeyError:
        raise HTTPException(404, detail="Terminal session not found")


def _card_or_400(card_id: str):
    card = get_card(card_id)
    if card is None:
        raise HTTPException(400, detail=f"Unknown card: {card_id}")
    return card


async def _settle(session_id: str, terminal: PosTerminal, db: Session) -> TerminalStateOut:
    """Run authorization when the terminal reached processing, then report its screen."""
    cfg = current_config(db)
    if terminal.awaiting_authorization:
        outcome = await simulator.run_terminal(terminal, cfg)
        if outcome is None:
            await emit(NETWORK_FAIL, session_id, {"error": terminal.error})
        else:
            if cfg.enabled:
                await emit(NETWORK_SENT, session_id, {"host": network.base_url(cfg)})
            outcome = record_outcome(db, outcome)
            terminal.result = outcome
            await emit(TX_COMPLETED, str(outcome.record_id), {
                "status": outcome.transaction.status,
                "responseCode": outcome.transaction.response_code,
                "source": "terminal",
            })
    await emit(TERMINAL_STEP, session_id, {"step": terminal.step.value})
    state = terminal.to_state(session_id, cfg.enabled)
    if not terminal.is_open:
        # result screen or cancel on the menu powered the terminal off
        terminals.remove(session_id)
        logger.info("Terminal session %s closed", session_id)
    return state


@app.post("/terminal", response_model=TerminalStateOut)
def open_terminal(body: TerminalOpenIn | None = None, db: Session = Depends(get_db)):
    card = _card_or_400(body.card_id) if body and body.card_id else None
    session_id, terminal = terminals.create(card)
    logger.info("Terminal session %s opened", session_id)
    return terminal.to_state(session_id, current_config(db).enabled)


@app.get("/terminal/{session_id}", response_model=TerminalStateOut)
def terminal_state(session_id: str, db: Session = Depends(get_db)):
    return _terminal(session_id).to_state(session_id, current_config(db).enabled)


@app.post("/terminal/{session_id}/welcome", response_model=TerminalStateOut)
def terminal_welcome_elapsed(session_id: str, db: Session = Depends(get_db)):
    terminal = _terminal(session_id)
    terminal.welcome_elapsed()
    return terminal.to_state(session_id, current_config(db).enabled)


@app.put("/terminal/{session_id}/card", response_model=TerminalStateOut)
def terminal_select_card(session_id: str, body: TerminalCardIn, db: Session = Depends(get_db)):
    terminal = _terminal(session_id)
    terminal.select_card(_card_or_400(body.card_id))
    return terminal.to_state(session_id, current_config(db).enabled)


@app.post("/terminal/{session_id}/keys", response_model=TerminalStateOut)
async def terminal_key(session_id: str, body: TerminalKeyIn, db: Session = Depends(get_db)):
    terminal = _terminal(session_id)
    try:
        terminal.press(body.key)
    except TerminalError as e:
        raise HTTPException(409, detail=str(e))
    return await _settle(session_id, terminal, db)


@app.post("/terminal/{session_id}/payment-method", response_model=TerminalStateOut)
def terminal_payment_method(session_id: str, body: PaymentMethodIn, db: Session = Depends(get_db)):
    terminal = _terminal(session_id)
    try:
        terminal.select_payment_method(PaymentMethod(body.method))
    except TerminalError as e:
        raise HTTPException(409, detail=str(e))
    return terminal.to_state(session_id, current_config(db).enabled)


@app.post("/terminal/{session_id}/present", response_model=TerminalStateOut)
async def terminal_present_card(session_id: str, db: Session = Depends(get_db)):
    """Swipe / insert / tap with the payment method chosen on the previous screen."""
    terminal = _terminal(session_id)
    try:
        terminal.present_card()
    except TerminalError as e:
        raise HTTPException(409, detail=str(e))
    return await _settle(session_id, terminal, db)


@app.delete("/terminal/{session_id}")
def close_terminal(session_id: str):
    terminal = _terminal(session_id)
    terminal.close()
    terminals.remove(session_id)
    return {"closed": session_id}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(config.NETWORK_PORT), reload=config.DEBUG)

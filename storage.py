# storage.py
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, Session, mapped_column

from app_models import NetworkConfig, Transaction, TransactionRecord
from cards import mask_pan
from currency import format_currency
from db import Base

logger = logging.getLogger(__name__)

# settings row holding the saved network config
NETWORK_CONFIG_KEY = "iso8583-network-config"


# ---- ORM tables ----
class TransactionORM(Base):
    __tablename__ = "transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[str] = mapped_column(String, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime)
    message_type: Mapped[str] = mapped_column(String(4))
    processing_code: Mapped[str] = mapped_column(String(6))
    amount: Mapped[str] = mapped_column(String)
    card_number: Mapped[str] = mapped_column(String)
    expiry_date: Mapped[str] = mapped_column(String)
    merchant_id: Mapped[str] = mapped_column(String)
    terminal_id: Mapped[str] = mapped_column(String)
    transaction_type: Mapped[str] = mapped_column(String)
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    response_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    auth_code: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    entry_mode: Mapped[str | None] = mapped_column(String(3), nullable=True)
    emv_tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_wire: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_wire: Mapped[str | None] = mapped_column(Text, nullable=True)


class SettingORM(Base):
    __tablename__ = "settings"
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text)


# ---- helpers ----
def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


_TX_FIELDS = list(Transaction.model_fields)


def to_record(row: TransactionORM) -> TransactionRecord:
    data = {name: getattr(row, name) for name in _TX_FIELDS}
    return TransactionRecord(
        id=row.id,
        masked_pan=mask_pan(row.card_number),
        display_amount=format_currency(row.amount, row.currency),
        request_wire=row.request_wire,
        response_wire=row.response_wire,
        **data,
    )


def to_transaction(row: TransactionORM) -> Transaction:
    return Transaction(**{name: getattr(row, name) for name in _TX_FIELDS})


def save_transaction(db: Session, tx: Transaction, request_wire: Optional[str] = None,
                     response_wire: Optional[str] = None) -> TransactionRecord:
    row = TransactionORM(
        created_at=now_iso(),
        request_wire=request_wire,
        response_wire=response_wire,
        **tx.model_dump(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return to_record(row)


def get_transaction(db: Session, tx_id: int) -> TransactionORM | None:
    return db.get(TransactionORM, tx_id)


def list_transactions(db: Session, limit: int = 500) -> List[TransactionRecord]:
    # newest first, like the history panel
    rows = db.query(TransactionORM).order_by(TransactionORM.id.desc()).limit(limit).all()
    return [to_record(r) for r in rows]


def clear_transactions(db: Session) -> int:
    n = db.query(TransactionORM).delete()
    db.commit()
    return n


def load_network_config(db: Session, default: NetworkConfig) -> NetworkConfig:
    row = db.get(SettingORM, NETWORK_CONFIG_KEY)
    if row is None:
        return default
    try:
        return NetworkConfig.model_validate(json.loads(row.value))
    except (ValueError, ValidationError) as e:
        logger.error("Failed to parse saved network config: %s", e)
        return default


def save_network_config(db: Session, cfg: NetworkConfig) -> NetworkConfig:
    value = cfg.model_dump_json(by_alias=True)
    row = db.get(SettingORM, NETWORK_CONFIG_KEY)
    if row is None:
        db.add(SettingORM(key=NETWORK_CONFIG_KEY, value=value))
    else:
        row.value = value
    db.commit()
    return cfg

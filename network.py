# network.py
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

import httpx

import config
from app_models import MessagePair, NetworkConfig, Transaction
from iso8583 import build_error_response, build_response, generate_auth_code

logger = logging.getLogger(__name__)

TRANSACTION_PATH = "/iso8583"
HEALTH_PATH = "/health"

DEFAULT_NETWORK_CONFIG = NetworkConfig(
    enabled=config.NETWORK_ENABLED,
    host=config.NETWORK_HOST,
    port=config.NETWORK_PORT,
    timeout=config.NETWORK_TIMEOUT_MS,
    use_ssl=config.NETWORK_USE_SSL,
)


@dataclass
class SendResult:
    success: bool
    response: Any = None
    error: Optional[str] = None


def base_url(cfg: NetworkConfig) -> str:
    scheme = "https" if cfg.use_ssl else "http"
    return f"{scheme}://{cfg.host}:{cfg.port}"


def _timeout(cfg: NetworkConfig) -> float:
    return cfg.timeout / 1000


async def send_transaction(transaction: Transaction, cfg: NetworkConfig,
                           transport: Optional[httpx.AsyncBaseTransport] = None) -> SendResult:
    """
    POST the transaction as JSON to <host>/iso8583. Failures never raise;
    they come back as SendResult(success=False, error=...).
    """
    if not cfg.enabled:
        return SendResult(False, error="Network mode is not enabled")

    url = base_url(cfg) + TRANSACTION_PATH
    payload = {
        "transaction": transaction.model_dump(mode="json", by_alias=True, exclude_none=True),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    try:
        async with httpx.AsyncClient(timeout=_timeout(cfg), transport=transport) as client:
            r = await client.post(url, json=payload)
            if r.is_error:
                raise httpx.HTTPStatusError(
                    f"HTTP error {r.status_code}: {r.reason_phrase}", request=r.request, response=r
                )
            data = r.json()
    except httpx.TimeoutException:
        logger.warning("Transaction POST to %s timed out after %sms", url, cfg.timeout)
        return SendResult(False, error=f"Request timed out after {cfg.timeout}ms")
    except httpx.HTTPStatusError as e:
        logger.warning("Host rejected transaction: %s", e)
        return SendResult(False, error=str(e))
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Transaction POST to %s failed: %s", url, e)
        return SendResult(False, error=str(e) or "Failed to send transaction")

    logger.debug("Host %s answered %s", url, data)
    return SendResult(True, response=data)


async def test_connection(cfg: NetworkConfig,
                          transport: Optional[httpx.AsyncBaseTransport] = None) -> Tuple[bool, str]:
    if not cfg.enabled:
        return False, "Network mode is disabled. Enable it to test the connection."

    url = base_url(cfg) + HEALTH_PATH
    try:
        async with httpx.AsyncClient(timeout=_timeout(cfg), transport=transport) as client:
            r = await client.get(url)
    except httpx.TimeoutException:
        return False, f"Connection timed out after {cfg.timeout}ms"
    except httpx.HTTPError as e:
        return False, f"Connection failed: {e}"

    if r.is_success:
        return True, f"Connection successful! Server responded with status {r.status_code}."
    return False, f"Server responded with status {r.status_code}: {r.reason_phrase}"


def extract_outcome(response: Any, rng=None) -> Tuple[bool, str, str]:
    """(approved, response code, auth code) from a host reply, filling the blanks."""
    approved = response.get("approved") is True or response.get("status") == "approved"
    response_code = str(response.get("responseCode") or ("00" if approved else "05"))
    auth_code = str(response.get("authCode") or "")
    if not auth_code and approved:
        auth_code = generate_auth_code(rng) if rng else generate_auth_code()
    return approved, response_code, auth_code


def parse_network_response(response: Any, request_wire: str,
                           outcome: Optional[Tuple[bool, str, str]] = None, rng=None) -> MessagePair:
    """Turn a host reply into the response pair shown next to the request."""
    if not isinstance(response, dict):
        logger.error("Unusable host response: %r", response)
        return build_error_response(request_wire)

    formatted, wire = response.get("formatted"), response.get("wire")
    if formatted and wire:
        return MessagePair(formatted=formatted, wire=wire)

    approved, response_code, auth_code = outcome or extract_outcome(response, rng)
    message = response.get("responseMessage") or ("APPROVED" if approved else "DECLINED")
    return build_response(
        response_code, message, auth_code, request_wire,
        additional_fields=response.get("additionalFields") or "",
    )

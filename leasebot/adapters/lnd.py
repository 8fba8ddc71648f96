from __future__ import annotations

import base64
import json
import logging
import ssl
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from leasebot.core.orders import channel_point_from_txid_bytes, split_channel_point

logger = logging.getLogger(__name__)

ALREADY_CONNECTED = "already connected"


@dataclass(frozen=True, slots=True)
class NodeIdentity:
    pubkey: str
    alias: str


def load_macaroon_hex(path: str) -> str:
    raw = Path(path).expanduser().read_bytes()
    if not raw:
        raise ValueError(f"macaroon file is empty: {path}")
    return raw.hex()


def build_tls_context(tls_cert_path: str) -> ssl.SSLContext:
    cert_path = Path(tls_cert_path).expanduser()
    if not cert_path.is_file():
        raise FileNotFoundError(f"tls cert not found: {cert_path}")
    return ssl.create_default_context(cafile=str(cert_path))


def _decode_txid(value: Any) -> bytes:
    try:
        txid = base64.b64decode(str(value or ""), validate=True)
    except ValueError as exc:
        raise RuntimeError(f"lnd_invalid_txid:{value}") from exc
    if not txid:
        raise RuntimeError("lnd_invalid_txid:empty")
    return txid


class LndRestAdapter:
    """LND node adapter over the REST gateway, authenticated with a macaroon header."""

    def __init__(
        self,
        rest_host: str,
        *,
        macaroon_hex: str,
        ssl_context: ssl.SSLContext | None,
        timeout_seconds: int = 50,
    ) -> None:
        host = rest_host.strip().rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        self._base_url = host
        self._macaroon_hex = macaroon_hex
        self._ssl_context = ssl_context
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_files(
        cls,
        rest_host: str,
        *,
        macaroon_path: str,
        tls_cert_path: str,
        timeout_seconds: int = 50,
    ) -> LndRestAdapter:
        return cls(
            rest_host,
            macaroon_hex=load_macaroon_hex(macaroon_path),
            ssl_context=build_tls_context(tls_cert_path),
            timeout_seconds=timeout_seconds,
        )

    def get_identity(self) -> NodeIdentity:
        info = self._request("GET", "/v1/getinfo")
        pubkey = str(info.get("identity_pubkey", "")).strip()
        if not pubkey:
            raise RuntimeError("lnd_getinfo_missing_pubkey")
        return NodeIdentity(pubkey=pubkey, alias=str(info.get("alias", "")))

    def available_funds(self) -> int:
        balance = self._request("GET", "/v1/balance/blockchain")
        return int(balance.get("confirmed_balance") or 0)

    def connect(self, pubkey: str, address: str) -> None:
        body = {
            "addr": {"pubkey": pubkey, "host": address},
            "perm": False,
            "timeout": str(self._timeout_seconds),
        }
        try:
            self._request("POST", "/v1/peers", body=body)
        except RuntimeError as exc:
            if ALREADY_CONNECTED in str(exc):
                logger.debug("peer_already_connected pubkey=%s", pubkey)
                return
            raise

    def create_invoice(self, amount: int, expiry_seconds: int, memo: str) -> str:
        body = {"memo": memo, "value": str(int(amount)), "expiry": str(int(expiry_seconds))}
        invoice = self._request("POST", "/v1/invoices", body=body)
        payment_request = str(invoice.get("payment_request", "")).strip()
        if not payment_request:
            raise RuntimeError("lnd_invoice_missing_payment_request")
        return payment_request

    def open_channel(self, amount: int, fee_rate: int, peer_pubkey: str) -> str:
        try:
            pubkey_bytes = bytes.fromhex(peer_pubkey)
        except ValueError as exc:
            raise ValueError(f"invalid peer pubkey: {peer_pubkey}") from exc
        body = {
            "node_pubkey": base64.b64encode(pubkey_bytes).decode("ascii"),
            "local_funding_amount": str(int(amount)),
            "sat_per_vbyte": str(int(fee_rate)),
        }
        update = self._first_stream_update("POST", "/v1/channels/stream", body=body)
        pending = update.get("chan_pending")
        if isinstance(pending, dict):
            return channel_point_from_txid_bytes(
                _decode_txid(pending.get("txid")), int(pending.get("output_index") or 0)
            )
        opened = update.get("chan_open")
        if isinstance(opened, dict):
            point = opened.get("channel_point") or {}
            output_index = int(point.get("output_index") or 0)
            txid_str = str(point.get("funding_txid_str") or "").strip()
            if txid_str:
                return f"{txid_str}:{output_index}"
            return channel_point_from_txid_bytes(
                _decode_txid(point.get("funding_txid_bytes")), output_index
            )
        raise RuntimeError(f"lnd_stream_error:unexpected_open_update:{sorted(update)}")

    def is_channel_open(self, channel_point: str) -> bool:
        txid, output_index = split_channel_point(channel_point)
        listing = self._request("GET", "/v1/channels")
        for channel in listing.get("channels") or []:
            if not isinstance(channel, dict):
                continue
            try:
                if split_channel_point(str(channel.get("channel_point", ""))) == (txid, output_index):
                    return True
            except ValueError:
                continue
        return False

    def close_channel(self, fee_rate: int, channel_point: str) -> str:
        txid, output_index = split_channel_point(channel_point)
        query = urllib.parse.urlencode({"sat_per_vbyte": str(int(fee_rate))})
        path = f"/v1/channels/{urllib.parse.quote(txid)}/{output_index}?{query}"
        update = self._first_stream_update("DELETE", path)
        pending = update.get("close_pending")
        if not isinstance(pending, dict):
            raise RuntimeError(f"lnd_stream_error:unexpected_close_update:{sorted(update)}")
        return bytes(reversed(_decode_txid(pending.get("txid")))).hex()

    def _build_request(
        self, method: str, path: str, body: dict[str, Any] | None
    ) -> urllib.request.Request:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {
            "Grpc-Metadata-macaroon": self._macaroon_hex,
            "Accept": "application/json",
        }
        if data is not None:
            headers["Content-Type"] = "application/json"
        return urllib.request.Request(
            f"{self._base_url}{path}",
            data=data,
            method=method,
            headers=headers,
        )

    def _open(self, req: urllib.request.Request):
        try:
            return urllib.request.urlopen(
                req, timeout=self._timeout_seconds, context=self._ssl_context
            )
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace").strip()
            snippet = raw[:300] if raw else ""
            message = f"lnd_http_error:{exc.code}"
            if snippet:
                message = f"{message}:{snippet}"
            raise RuntimeError(message) from exc
        except urllib.error.URLError as exc:
            raise RuntimeError(f"lnd_network_error:{exc.reason}") from exc
        except TimeoutError as exc:
            raise RuntimeError("lnd_network_error:timeout") from exc

    def _request(
        self, method: str, path: str, *, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        with self._open(self._build_request(method, path, body)) as resp:
            payload = json.loads(resp.read().decode("utf-8") or "{}")
        if not isinstance(payload, dict):
            raise RuntimeError("lnd_invalid_response")
        return payload

    def _first_stream_update(
        self, method: str, path: str, *, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Read the first update of a server stream and stop consuming it."""
        with self._open(self._build_request(method, path, body)) as resp:
            while True:
                line = resp.readline()
                if not line:
                    raise RuntimeError("lnd_stream_error:eof_before_update")
                text = line.decode("utf-8").strip()
                if text:
                    break
        message = json.loads(text)
        if not isinstance(message, dict):
            raise RuntimeError("lnd_invalid_response")
        error = message.get("error")
        if error:
            detail = error.get("message", error) if isinstance(error, dict) else error
            raise RuntimeError(f"lnd_stream_error:{detail}")
        result = message.get("result", message)
        if not isinstance(result, dict):
            raise RuntimeError("lnd_invalid_response")
        return result

import asyncio
import hmac
import hashlib
import json
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import aiohttp

from config import config


MAINNET_URL = "https://api.bybit.com"
TESTNET_URL = "https://api-testnet.bybit.com"


class BybitAPIError(Exception):
    def __init__(self, status: int, code: Optional[int], msg: Optional[str], body: str):
        self.status = status
        self.code = code
        self.msg = msg
        self.body = body
        text = f"Bybit API error (status={status}, code={code}, msg={msg})"
        super().__init__(text)


class BybitRESTClient:
    """Async Bybit v5 REST client with HMAC request signing."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
    ):
        testnet = bool(config.exchange.get("testnet", True))
        self.base_url = (base_url or (TESTNET_URL if testnet else MAINNET_URL)).rstrip("/")
        self.api_key: Optional[str] = _clean_secret(api_key or config.exchange.get("api_key"))
        self.api_secret: Optional[str] = _clean_secret(api_secret or config.exchange.get("api_secret"))
        self.recv_window = int(config.exchange.get("recv_window_ms", 5000))
        self.timeout = float(config.exchange.get("request_timeout_s", 15))
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    def sign(self, timestamp: str, payload: str) -> str:
        if not self.api_key or not self.api_secret:
            raise RuntimeError("Bybit API key/secret required for signed request")
        prehash = f"{timestamp}{self.api_key}{self.recv_window}{payload}"
        return hmac.new(
            self.api_secret.encode("utf-8"),
            prehash.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        session = await self._get_session()
        method = method.upper()
        params = {k: v for k, v in (params or {}).items() if v is not None}
        headers: Dict[str, str] = {}

        query: Optional[str] = None
        body: Optional[str] = None
        if method == "GET":
            query = urlencode(params, doseq=True)
            payload_text = query
        else:
            body = json.dumps(params, separators=(",", ":"))
            payload_text = body
            headers["Content-Type"] = "application/json"

        if signed:
            timestamp = str(int(time.time() * 1000))
            headers.update({
                "X-BAPI-API-KEY": self.api_key or "",
                "X-BAPI-TIMESTAMP": timestamp,
                "X-BAPI-RECV-WINDOW": str(self.recv_window),
                "X-BAPI-SIGN": self.sign(timestamp, payload_text),
            })

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        async with session.request(
            method,
            url,
            data=body,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as resp:
            text = await resp.text()
            try:
                payload = json.loads(text)
            except ValueError:
                payload = text

            code = None
            msg = None
            if isinstance(payload, dict):
                code = payload.get("retCode")
                msg = payload.get("retMsg")

            if resp.status >= 400 or (code is not None and code != 0):
                raise BybitAPIError(resp.status, code, msg, text)
            if not isinstance(payload, dict):
                raise BybitAPIError(resp.status, None, "non-JSON response", text)

            return payload.get("result") or {}

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        return await self._request("GET", path, params=params, signed=signed)

    async def post(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = True,
    ) -> Any:
        return await self._request("POST", path, params=params, signed=signed)


def _clean_secret(value: Optional[str]) -> Optional[str]:
    # Unresolved ${ENV} placeholders count as missing
    if not value or (value.startswith("${") and value.endswith("}")):
        return None
    return value

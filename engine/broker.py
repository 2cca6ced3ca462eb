from __future__ import annotations

from enum import Enum
import logging
import threading
import time
from typing import Dict, Optional

import requests


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class BrokerConnection:
    name = "broker"

    def status(self) -> ConnectionStatus:
        raise NotImplementedError

    def is_connected(self) -> bool:
        return self.status() == ConnectionStatus.CONNECTED


class SimulatedBrokerConnection(BrokerConnection):
    name = "simulated"

    def __init__(self, connected: bool = False):
        self.logger = logging.getLogger("broker")
        self._lock = threading.Lock()
        self._connected = connected

    def connect(self) -> ConnectionStatus:
        with self._lock:
            self._connected = True
        self.logger.info("simulated broker connected")
        return ConnectionStatus.CONNECTED

    def disconnect(self) -> ConnectionStatus:
        with self._lock:
            self._connected = False
        self.logger.info("simulated broker disconnected")
        return ConnectionStatus.DISCONNECTED

    def status(self) -> ConnectionStatus:
        with self._lock:
            return ConnectionStatus.CONNECTED if self._connected else ConnectionStatus.DISCONNECTED


class RestBrokerConnection(BrokerConnection):
    """
    Looks up the user's active broker link in the hosted data store:
    - REST query against ig_broker_connections
    - Retry with backoff on 429/5xx
    - Result cached for a short TTL
    """

    name = "rest"
    TABLE_PATH = "/rest/v1/ig_broker_connections"
    RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        base_url: str,
        api_key: str,
        user_id: str,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        validation_ttl_seconds: int = 15,
        timeout_seconds: int = 10,
    ):
        self.logger = logging.getLogger("broker")
        if not base_url:
            raise RuntimeError("BROKER_BASE_URL not set")
        if not api_key:
            raise RuntimeError("BROKER_API_KEY not set")
        if not user_id:
            raise RuntimeError("BROKER_USER_ID not set")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.user_id = user_id
        self.session = requests.Session()

        self._max_retries = max_retries
        self._base_backoff = backoff_base
        self._timeout = timeout_seconds

        self._validation_lock = threading.Lock()
        self._validation_ttl_seconds = validation_ttl_seconds
        self._last_validation_ts = 0.0
        self._last_status: Optional[ConnectionStatus] = None

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    def _backoff(self, attempt: int, reason: object) -> None:
        delay = self._base_backoff * (2 ** attempt)
        self.logger.warning(
            "broker_lookup_retry user_id=%s reason=%s attempt=%s backoff=%.2f",
            self.user_id, reason, attempt + 1, delay,
        )
        time.sleep(delay)

    def _get_with_backoff(self, params: Dict[str, str]) -> requests.Response:
        """GET the connection table, retrying throttling, 5xx and transport errors."""
        url = f"{self.base_url}{self.TABLE_PATH}"
        for attempt in range(self._max_retries + 1):
            last_attempt = attempt >= self._max_retries
            try:
                resp = self.session.request(
                    method="GET", url=url, params=params, headers=self._headers(), timeout=self._timeout
                )
            except requests.RequestException as exc:
                if last_attempt:
                    raise
                self._backoff(attempt, type(exc).__name__)
                continue

            if resp.status_code in self.RETRYABLE_STATUSES and not last_attempt:
                self._backoff(attempt, resp.status_code)
                continue
            resp.raise_for_status()
            return resp

        raise RuntimeError(f"broker lookup gave up after {self._max_retries} retries")

    def fetch_status(self) -> ConnectionStatus:
        try:
            resp = self._get_with_backoff(
                {
                    "select": "id",
                    "user_id": f"eq.{self.user_id}",
                    "is_active": "eq.true",
                    "limit": "1",
                }
            )
            rows = resp.json()
        except (requests.RequestException, ValueError) as exc:
            self.logger.error("broker_connection_check_failed user_id=%s error=%s", self.user_id, exc)
            return ConnectionStatus.ERROR

        return ConnectionStatus.CONNECTED if rows else ConnectionStatus.DISCONNECTED

    def status(self, force: bool = False) -> ConnectionStatus:
        with self._validation_lock:
            now = time.time()
            fresh = (now - self._last_validation_ts) < self._validation_ttl_seconds
            if not force and fresh and self._last_status is not None:
                return self._last_status

            result = self.fetch_status()
            self._last_validation_ts = now
            self._last_status = result
            return result


def broker_from_config(config) -> BrokerConnection:
    if config.broker_mode == "rest":
        return RestBrokerConnection(
            base_url=config.broker_base_url,
            api_key=config.broker_api_key,
            user_id=config.broker_user_id,
            max_retries=config.broker_max_retries,
            backoff_base=config.broker_backoff_base,
        )
    return SimulatedBrokerConnection(connected=False)

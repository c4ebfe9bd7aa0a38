"""
SiliconFlow balance client.

Reads account balances for tracked API keys through the OpenAI-compatible
API. Every failure mode is reported as `UpstreamFailure`, never as a
partial reading.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI

from ..config.loader import DEFAULT_BASE_URL

SUCCESS_CODE = 20000
USER_INFO_PATH = "/user/info"


class UpstreamFailure(Exception):
    """Raised when a balance could not be read from the upstream API.

    Covers timeouts, transport errors, non-success status codes and
    malformed payloads.
    """

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


@dataclass(frozen=True)
class BalanceReading:
    """Balance and account status reported for one key."""
    balance: float
    status: str


class SiliconFlowClient:
    """Upstream balance client.

    A short-lived OpenAI client is built per call because every tracked
    key authenticates as itself. Retries are disabled: a failed check is
    retried on the next batch pass, not inside it.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 30.0):
        """Initialize the client.

        Args:
            base_url: API root, e.g. "https://api.siliconflow.cn/v1"
            timeout: Request timeout in seconds

        Raises:
            ValueError: If timeout is not positive
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.base_url = base_url
        self.timeout = timeout

    def _client(self, api_key: str) -> OpenAI:
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")
        return OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def fetch_balance(self, api_key: str) -> BalanceReading:
        """Fetch the current balance of a key.

        Args:
            api_key: Plaintext API key

        Returns:
            BalanceReading with balance and status

        Raises:
            UpstreamFailure: On any transport, status or payload problem
        """
        client = self._client(api_key)
        try:
            response = client.get(USER_INFO_PATH, cast_to=httpx.Response)
        except openai.APITimeoutError as e:
            raise UpstreamFailure(f"Request timed out after {self.timeout}s") from e
        except openai.APIConnectionError as e:
            raise UpstreamFailure(f"Connection error: {e}") from e
        except openai.APIStatusError as e:
            raise UpstreamFailure(f"HTTP error: {e.status_code}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise UpstreamFailure(f"Failed to fetch balance: {e}") from e
        finally:
            client.close()

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFailure("Response is not valid JSON") from e

        return parse_user_info(payload)

    def list_models(
        self,
        api_key: str,
        model_type: Optional[str] = None,
        sub_type: Optional[str] = None
    ) -> List[str]:
        """List model ids available to a key.

        Raises:
            UpstreamFailure: If the listing cannot be fetched
        """
        query: Dict[str, str] = {}
        if model_type:
            query["type"] = model_type
        if sub_type:
            query["sub_type"] = sub_type

        client = self._client(api_key)
        try:
            page = client.models.list(extra_query=query or None)
            return [model.id for model in page.data]
        except openai.APIStatusError as e:
            raise UpstreamFailure(f"HTTP error: {e.status_code}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise UpstreamFailure(f"Failed to list models: {e}") from e
        finally:
            client.close()


def parse_user_info(payload: Any) -> BalanceReading:
    """Extract a BalanceReading from a `/user/info` payload.

    The balance falls back to `totalBalance`, then 0; the status falls
    back to "active".

    Raises:
        UpstreamFailure: If the payload is not a successful user info body
    """
    if not isinstance(payload, dict):
        raise UpstreamFailure("Invalid API response: not an object")
    if payload.get("code") != SUCCESS_CODE:
        raise UpstreamFailure(f"Invalid API response code: {payload.get('code')}")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise UpstreamFailure("Invalid API response: missing data")

    raw_balance = data.get("balance")
    if raw_balance is None:
        raw_balance = data.get("totalBalance", 0)
    try:
        balance = float(raw_balance)
    except (TypeError, ValueError) as e:
        raise UpstreamFailure(f"Invalid balance value: {raw_balance!r}") from e
    if not math.isfinite(balance):
        raise UpstreamFailure(f"Invalid balance value: {raw_balance!r}")

    status = data.get("status") or "active"
    return BalanceReading(balance=balance, status=str(status))

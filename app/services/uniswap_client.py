"""
Client for the Uniswap v2 subgraph (price data only).
"""
import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp

from app.core.errors import TransientIOError


def query_bundles() -> Dict[str, str]:
    """Payload for the global ETH price in USD."""
    return {
        "query": """
            query bundles {
                bundles(where: { id: "1" }) {
                    ethPrice
                }
            }
        """
    }


def query_token(address: str) -> Dict[str, str]:
    """Payload for one token's price expressed in ETH."""
    return {
        "query": f"""
            query tokens {{
                tokens(where: {{ id: "{address.lower()}" }}) {{
                    id
                    name
                    symbol
                    derivedETH
                    totalLiquidity
                }}
            }}
        """
    }


def parse_eth_price(body: str) -> float:
    return _parse_first_decimal(body, "bundles", "ethPrice")


def parse_derived_eth(body: str) -> float:
    return _parse_first_decimal(body, "tokens", "derivedETH")


def _parse_first_decimal(body: str, collection: str, field: str) -> float:
    try:
        payload = json.loads(body)
        rows = payload["data"][collection]
        return float(rows[0][field])
    except (ValueError, TypeError, KeyError, IndexError) as error:
        raise TransientIOError(f"malformed {collection} response: missing {field}") from error


class UniswapGraphClient:
    """Lightweight async client for the Uniswap subgraph endpoint."""

    def __init__(
        self,
        url: str = "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v2",
        timeout_seconds: float = 10.0,
        max_concurrency: int = 8,
    ):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=max(float(timeout_seconds), 0.1))
        self._semaphore = asyncio.Semaphore(max(1, int(max_concurrency)))
        self._session: Optional[aiohttp.ClientSession] = None
        self._metrics = {
            "requests": 0,
            "timeouts": 0,
            "errors": 0,
        }

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_eth_price(self) -> float:
        body = await self.request(query_bundles())
        return parse_eth_price(body)

    async def fetch_derived_eth(self, token_address: str) -> float:
        body = await self.request(query_token(token_address))
        return parse_derived_eth(body)

    async def request(self, payload: Dict[str, Any], target: Optional[asyncio.Queue] = None) -> str:
        """
        POST one graph query and return the raw response body.

        When ``target`` is given the body is also put on that queue. There is no
        retry here; callers decide whether and when to try again.

        Raises:
            TransientIOError: on timeout, connection failure or a non-2xx status
        """
        session = await self._get_session()
        self._metrics["requests"] += 1
        try:
            async with self._semaphore:
                async with session.post(self.url, json=payload, timeout=self.timeout) as response:
                    response.raise_for_status()
                    body = await response.text()
        except asyncio.TimeoutError as error:
            self._metrics["timeouts"] += 1
            raise TransientIOError(f"price oracle request timed out after {self.timeout.total}s") from error
        except aiohttp.ClientError as error:
            self._metrics["errors"] += 1
            raise TransientIOError(f"price oracle request failed: {error}") from error

        if target is not None:
            await target.put(body)
        return body

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Content-Type": "application/json"})
        return self._session

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

"""
Venue API Clients
==================

Order book connectivity for the two venues the bot compares:
Aevo and dYdX (v4 indexer). Each client can fetch a REST snapshot
and stream incremental order book messages over WebSocket.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from exchange_client.models import (
    OrderBook,
    OrderBookMessage,
    PriceLevel,
    Venue,
)


logger = logging.getLogger(__name__)


AEVO_WS_URL = "wss://ws.aevo.xyz"
AEVO_REST_URL = "https://api.aevo.xyz"
DYDX_WS_URL = "wss://indexer.dydx.trade/v4/ws"
DYDX_REST_URL = "https://indexer.dydx.trade/v4"


def _parse_level(raw: Any) -> Optional[PriceLevel]:
    """Parse a level given as [price, size, ...] or {"price", "size"|"amount"}."""
    try:
        if isinstance(raw, dict):
            size = raw.get("size", raw.get("amount"))
            return PriceLevel(price=float(raw["price"]), size=float(size))
        if isinstance(raw, (list, tuple)) and len(raw) >= 2:
            return PriceLevel(price=float(raw[0]), size=float(raw[1]))
    except (KeyError, TypeError, ValueError):
        pass
    return None


def _parse_levels(raw_levels: Any) -> list[PriceLevel]:
    levels = []
    for raw in raw_levels or []:
        level = _parse_level(raw)
        if level is not None:
            levels.append(level)
    return levels


def parse_aevo_message(payload: dict) -> Optional[OrderBookMessage]:
    """
    Parse an Aevo orderbook channel frame.
    
    Frames look like {"channel": "orderbook:ETH-PERP", "data": {"type":
    "snapshot"|"update", "bids": [[price, amount, iv]], "asks": [...]}}.
    Subscription acks and other frames return None.
    """
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    
    msg_type = data.get("type")
    if msg_type not in ("snapshot", "update"):
        return None
    
    return OrderBookMessage(
        kind=msg_type,
        bids=_parse_levels(data.get("bids")),
        asks=_parse_levels(data.get("asks")),
        raw=payload,
    )


def parse_dydx_message(payload: dict) -> Optional[OrderBookMessage]:
    """
    Parse a dYdX v4 ``v4_orderbook`` frame.
    
    The first frame after subscribing carries both sides and is treated
    as a snapshot; later frames carry one side (or both, as updates when
    the type is ``channel_data``).
    """
    contents = payload.get("contents")
    if not isinstance(contents, dict):
        return None
    
    has_bids = "bids" in contents
    has_asks = "asks" in contents
    if not has_bids and not has_asks:
        return None
    
    msg_type = payload.get("type")
    if msg_type == "subscribed" or (has_bids and has_asks and msg_type != "channel_data"):
        kind = "snapshot"
    else:
        kind = "update"
    
    return OrderBookMessage(
        kind=kind,
        bids=_parse_levels(contents.get("bids")),
        asks=_parse_levels(contents.get("asks")),
        raw=payload,
    )


class BaseVenueClient(ABC):
    """Abstract base class for venue client implementations."""
    
    venue: Venue
    
    def __init__(
        self,
        symbol: str,
        rest_url: str,
        ws_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        reconnect_delay: float = 1.0,
    ):
        self.symbol = symbol
        self.rest_url = rest_url.rstrip("/")
        self.ws_url = ws_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.reconnect_delay = reconnect_delay
        
        self._http_client: Optional[httpx.AsyncClient] = None
        self._running = False
    
    async def __aenter__(self) -> "BaseVenueClient":
        await self.connect()
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
    
    async def connect(self) -> None:
        """Initialize HTTP client."""
        self._http_client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Accept": "application/json"},
        )
        self._running = True
        logger.info(f"{self.venue.value} client connected for {self.symbol}")
    
    async def disconnect(self) -> None:
        """Close connections."""
        self._running = False
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info(f"{self.venue.value} client disconnected")
    
    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> Any:
        """Make an HTTP request with retry logic."""
        if not self._http_client:
            await self.connect()
        
        url = f"{self.rest_url}{endpoint}"
        
        for attempt in range(self.max_retries):
            try:
                response = await self._http_client.request(method, url, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                logger.warning(f"HTTP error {e.response.status_code} on {url}: {e}")
                if e.response.status_code >= 500 and attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise
            except httpx.RequestError as e:
                logger.warning(f"Request error on {url}: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise
    
    @abstractmethod
    def subscribe_message(self) -> dict:
        """WebSocket subscription request for the configured symbol."""
        pass
    
    @abstractmethod
    def parse_message(self, payload: dict) -> Optional[OrderBookMessage]:
        """Parse a decoded WebSocket frame."""
        pass
    
    @abstractmethod
    async def get_orderbook(self) -> OrderBook:
        """Fetch a full order book snapshot over REST."""
        pass
    
    async def stream_orderbook(self) -> AsyncIterator[OrderBookMessage]:
        """
        Stream order book messages.
        
        Reconnects after connection errors until disconnect() is called.
        Frames that fail to decode are skipped.
        """
        while self._running:
            try:
                async with websockets.connect(
                    self.ws_url,
                    ping_interval=30,
                    ping_timeout=10,
                ) as ws:
                    await ws.send(json.dumps(self.subscribe_message()))
                    logger.info(f"{self.venue.value} subscribed to order book {self.symbol}")
                    
                    async for raw in ws:
                        try:
                            payload = json.loads(raw)
                        except (TypeError, ValueError):
                            logger.debug(f"{self.venue.value} received undecodable frame {raw!r}")
                            continue
                        
                        message = self.parse_message(payload) if isinstance(payload, dict) else None
                        if message is None:
                            logger.debug(f"{self.venue.value} received unknown message {payload}")
                            continue
                        yield message
                        
            except asyncio.CancelledError:
                logger.info(f"{self.venue.value} order book stream cancelled")
                raise
            except (ConnectionClosed, InvalidHandshake, OSError) as e:
                logger.warning(f"{self.venue.value} WebSocket error: {e}, reconnecting")
            
            if self._running:
                await asyncio.sleep(self.reconnect_delay)


class AevoClient(BaseVenueClient):
    """Aevo order book client."""
    
    venue = Venue.AEVO
    
    def __init__(
        self,
        symbol: str,
        rest_url: str = AEVO_REST_URL,
        ws_url: str = AEVO_WS_URL,
        **kwargs,
    ):
        super().__init__(symbol, rest_url, ws_url, **kwargs)
    
    def subscribe_message(self) -> dict:
        return {"op": "subscribe", "data": [f"orderbook:{self.symbol}"]}
    
    def parse_message(self, payload: dict) -> Optional[OrderBookMessage]:
        return parse_aevo_message(payload)
    
    async def get_orderbook(self) -> OrderBook:
        """
        Fetch the current book.
        
        GET https://api.aevo.xyz/orderbook?instrument_name={symbol}
        """
        data = await self._request("GET", "/orderbook", params={"instrument_name": self.symbol})
        book = OrderBook(venue=self.venue, symbol=self.symbol)
        book.apply_snapshot(
            _parse_levels(data.get("bids")),
            _parse_levels(data.get("asks")),
            datetime.utcnow(),
        )
        return book


class DydxClient(BaseVenueClient):
    """dYdX v4 indexer order book client."""
    
    venue = Venue.DYDX
    
    def __init__(
        self,
        symbol: str,
        rest_url: str = DYDX_REST_URL,
        ws_url: str = DYDX_WS_URL,
        **kwargs,
    ):
        super().__init__(symbol, rest_url, ws_url, **kwargs)
    
    def subscribe_message(self) -> dict:
        return {"type": "subscribe", "channel": "v4_orderbook", "id": self.symbol}
    
    def parse_message(self, payload: dict) -> Optional[OrderBookMessage]:
        return parse_dydx_message(payload)
    
    async def get_orderbook(self) -> OrderBook:
        """
        Fetch the current book.
        
        GET https://indexer.dydx.trade/v4/orderbooks/perpetualMarket/{symbol}
        """
        data = await self._request("GET", f"/orderbooks/perpetualMarket/{self.symbol}")
        book = OrderBook(venue=self.venue, symbol=self.symbol)
        book.apply_snapshot(
            _parse_levels(data.get("bids")),
            _parse_levels(data.get("asks")),
            datetime.utcnow(),
        )
        return book


def create_client(venue: Venue, symbol: str, **kwargs) -> BaseVenueClient:
    """Build the client for a venue."""
    if venue == Venue.AEVO:
        return AevoClient(symbol, **kwargs)
    return DydxClient(symbol, **kwargs)

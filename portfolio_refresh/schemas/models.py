"""
Data models for the portfolio refresh pipeline.

Defines holdings as loaded from the database, quote results from the
providers, the enriched snapshot served to clients, and the refresh
queue message. Snapshots serialize with camelCase keys, which is the
shape stored in the cache and returned over HTTP.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, Any, Optional, List


DEFAULT_EXCHANGE = "NSE"


def round2(value: float) -> float:
    """Round half away from zero to two decimals."""
    try:
        quantized = Decimal(repr(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return float(value)
    return float(quantized)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


@dataclass
class Holding:
    """One position in a user's portfolio as stored in the database."""
    symbol: str
    purchase_price: float
    quantity: float
    exchange: str = DEFAULT_EXCHANGE
    investment: Optional[float] = None
    id: Optional[str] = None
    name: Optional[str] = None
    industry: Optional[str] = None

    def __post_init__(self):
        if not self.exchange:
            self.exchange = DEFAULT_EXCHANGE
        if self.investment is None:
            self.investment = round2(self.purchase_price * self.quantity)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Holding":
        """Build a holding from a database row."""
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            symbol=str(row["symbol"]),
            name=row.get("name"),
            industry=row.get("industry"),
            exchange=row.get("exchange") or DEFAULT_EXCHANGE,
            purchase_price=float(row["purchase_price"]),
            quantity=float(row["quantity"]),
            investment=_optional_float(row.get("investment")),
        )


@dataclass
class QuoteResult:
    """Merged quote for one symbol. Every field may be absent."""
    cmp: Optional[float] = None
    previous_close: Optional[float] = None
    pe_ratio: Optional[float] = None
    latest_earnings: Optional[str] = None

    @classmethod
    def empty(cls) -> "QuoteResult":
        return cls()

    def is_empty(self) -> bool:
        return (
            self.cmp is None
            and self.previous_close is None
            and self.pe_ratio is None
            and self.latest_earnings is None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the cache entry shape."""
        return {
            "cmp": self.cmp,
            "previousClose": self.previous_close,
            "peRatio": self.pe_ratio,
            "latestEarnings": self.latest_earnings,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuoteResult":
        earnings = data.get("latestEarnings")
        return cls(
            cmp=_optional_float(data.get("cmp")),
            previous_close=_optional_float(data.get("previousClose")),
            pe_ratio=_optional_float(data.get("peRatio")),
            latest_earnings=str(earnings) if earnings else None,
        )


@dataclass
class StockLine:
    """A holding enriched with market data and derived valuation."""
    symbol: str
    exchange: str
    purchase_price: float
    quantity: float
    investment: float
    present_value: float
    gain_loss: float
    portfolio_percent: float
    cmp: Optional[float] = None
    pe_ratio: Optional[float] = None
    latest_earnings: Optional[str] = None
    id: Optional[str] = None
    stock_name: Optional[str] = None
    industry: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stockName": self.stock_name,
            "symbol": self.symbol,
            "industry": self.industry,
            "exchange": self.exchange,
            "purchasePrice": self.purchase_price,
            "quantity": self.quantity,
            "investment": self.investment,
            "cmp": self.cmp,
            "presentValue": self.present_value,
            "gainLoss": self.gain_loss,
            "peRatio": self.pe_ratio,
            "latestEarnings": self.latest_earnings,
            "portfolioPercent": self.portfolio_percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StockLine":
        if not isinstance(data, dict):
            raise TypeError(f"stock line must be an object, got {type(data).__name__}")
        return cls(
            id=data.get("id"),
            stock_name=data.get("stockName"),
            symbol=str(data["symbol"]),
            industry=data.get("industry"),
            exchange=data.get("exchange") or DEFAULT_EXCHANGE,
            purchase_price=float(data["purchasePrice"]),
            quantity=float(data["quantity"]),
            investment=float(data["investment"]),
            cmp=_optional_float(data.get("cmp")),
            present_value=float(data["presentValue"]),
            gain_loss=float(data["gainLoss"]),
            pe_ratio=_optional_float(data.get("peRatio")),
            latest_earnings=data.get("latestEarnings"),
            portfolio_percent=float(data["portfolioPercent"]),
        )


@dataclass
class PortfolioSnapshot:
    """Complete enriched portfolio for one user, replaced as a whole."""
    user_id: str
    stocks: List[StockLine] = field(default_factory=list)
    total_investment: float = 0.0
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def empty(cls, user_id: str, name: Optional[str] = None, email: Optional[str] = None) -> "PortfolioSnapshot":
        return cls(user_id=user_id, name=name, email=email)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "name": self.name,
            "email": self.email,
            "stocks": [line.to_dict() for line in self.stocks],
            "totalInvestment": self.total_investment,
            "cachedAt": self.cached_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortfolioSnapshot":
        return cls(
            user_id=str(data["userId"]),
            name=data.get("name"),
            email=data.get("email"),
            stocks=[StockLine.from_dict(item) for item in data.get("stocks") or []],
            total_investment=float(data.get("totalInvestment") or 0.0),
            cached_at=_parse_timestamp(data.get("cachedAt")),
        )


@dataclass(frozen=True)
class RefreshMessage:
    """One refresh request read from the queue."""
    stream_id: str
    user_id: str


@dataclass
class UserProfile:
    """Owner details attached to a snapshot."""
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None

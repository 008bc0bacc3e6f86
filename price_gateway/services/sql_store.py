from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from price_gateway.schemas.price import CacheEntry, PriceQuote
from price_gateway.services.clock import ensure_utc


class Base(DeclarativeBase):
    pass


class PriceSnapshot(Base):
    __tablename__ = "price_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    namespace: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(28, 10), nullable=False)
    price_btc: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    market_cap: Mapped[Decimal | None] = mapped_column(Numeric(28, 2), nullable=True)
    volume_24h: Mapped[Decimal | None] = mapped_column(Numeric(28, 2), nullable=True)
    change_24h: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    quoted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)


class ProviderCall(Base):
    __tablename__ = "provider_calls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    called_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


def _to_entry(row: PriceSnapshot) -> CacheEntry:
    quote = PriceQuote(
        symbol=row.symbol,
        price=row.price,
        price_btc=row.price_btc,
        market_cap=row.market_cap,
        volume_24h=row.volume_24h,
        change_24h=row.change_24h,
        timestamp=ensure_utc(row.quoted_at),
        source=row.source,
    )
    return CacheEntry(symbol=row.symbol, quote=quote, fetched_at=ensure_utc(row.captured_at))


class SqlPriceStore:
    """PriceStore backed by a SQL database, so cache and quota state survive restarts."""

    def __init__(self, url: str) -> None:
        kwargs: dict = {"future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in {"sqlite://", "sqlite+pysqlite://"}:
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)
        Base.metadata.create_all(self.engine)

    def append_snapshot(self, entry: CacheEntry, namespace: str) -> None:
        quote = entry.quote
        with self.Session() as session, session.begin():
            session.add(
                PriceSnapshot(
                    namespace=namespace,
                    symbol=entry.symbol,
                    price=quote.price,
                    price_btc=quote.price_btc,
                    market_cap=quote.market_cap,
                    volume_24h=quote.volume_24h,
                    change_24h=quote.change_24h,
                    quoted_at=ensure_utc(quote.timestamp),
                    captured_at=ensure_utc(entry.fetched_at),
                    source=quote.source,
                )
            )

    def latest_snapshot(self, symbol: str, namespace: str) -> CacheEntry | None:
        stmt = (
            select(PriceSnapshot)
            .where(PriceSnapshot.namespace == namespace, PriceSnapshot.symbol == symbol)
            .order_by(PriceSnapshot.captured_at.desc(), PriceSnapshot.id.desc())
            .limit(1)
        )
        with self.Session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _to_entry(row) if row is not None else None

    def latest_capture_time(self, namespace: str, symbols: list[str] | None = None) -> datetime | None:
        stmt = select(func.max(PriceSnapshot.captured_at)).where(PriceSnapshot.namespace == namespace)
        if symbols is not None:
            stmt = stmt.where(PriceSnapshot.symbol.in_(symbols))
        with self.Session() as session:
            value = session.execute(stmt).scalar()
        return ensure_utc(value) if value is not None else None

    def record_call(self, provider: str, at: datetime) -> None:
        with self.Session() as session, session.begin():
            session.add(ProviderCall(provider=provider, called_at=ensure_utc(at)))

    def count_calls(self, provider: str, since: datetime, until: datetime | None = None) -> int:
        stmt = select(func.count(ProviderCall.id)).where(
            ProviderCall.provider == provider,
            ProviderCall.called_at >= ensure_utc(since),
        )
        if until is not None:
            stmt = stmt.where(ProviderCall.called_at <= ensure_utc(until))
        with self.Session() as session:
            return int(session.execute(stmt).scalar() or 0)

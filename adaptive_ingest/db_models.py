from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, func, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class ForeignResidentStat(Base):
    __tablename__ = "foreign_residents_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region: Mapped[str] = mapped_column(String(128), index=True)
    resident_count: Mapped[int] = mapped_column(BigInteger, default=0, server_default=text("0"))
    nationality: Mapped[str | None] = mapped_column(String(128), nullable=True)
    visa_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_type: Mapped[str] = mapped_column(String(16), default="FILE", server_default="FILE")
    raw_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    collected_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, server_default=func.current_timestamp())


class LocalPolicy(Base):
    __tablename__ = "local_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region: Mapped[str] = mapped_column(String(128), index=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(128))
    budget: Mapped[int] = mapped_column(BigInteger, default=0, server_default=text("0"))
    target_audience: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_type: Mapped[str] = mapped_column(String(16), default="FILE", server_default="FILE")
    raw_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    collected_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, server_default=func.current_timestamp())

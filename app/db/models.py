# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# One table: report_runs, a row per finished pipeline run.
#
# ┌───────────────────────────────┐
# │  report_runs                  │
# ├───────────────────────────────┤
# │ id (PK)                       │
# │ run_id (uuid string, unique)  │
# │ company_name                  │
# │ status                        │  passed / passed_with_warnings /
# │ attempts                      │  failed / cancelled
# │ error_category                │
# │ input_tokens / output_tokens  │
# │ total_cost_usd                │
# │ total_latency_ms              │
# │ model_ids (jsonb)             │
# │ created_at                    │
# └───────────────────────────────┘
#
# Reports themselves are NOT stored: persisting the last successful
# report is the host application's job. This table is telemetry only.
# =============================================================================

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""


class ReportRun(Base):
    """Per-run outcome, cost and latency telemetry."""

    __tablename__ = "report_runs"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True,
    )
    run_id: Mapped[str] = mapped_column(
        String(36), unique=True, index=True, nullable=False,
    )
    company_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True,
    )

    # --- Outcome ---
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_category: Mapped[str | None] = mapped_column(
        String(50), nullable=True,
    )

    # --- Cost & tokens ---
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_cost_usd: Mapped[float] = mapped_column(Float, default=0.0)

    # --- Latency (milliseconds) ---
    total_latency_ms: Mapped[int | None] = mapped_column(
        Integer, nullable=True,
    )

    # Distinct model ids used across generation and correction
    model_ids: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ReportRun(run_id={self.run_id!r}, status={self.status!r}, "
            f"attempts={self.attempts})>"
        )

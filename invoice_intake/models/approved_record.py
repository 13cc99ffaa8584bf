import uuid
from datetime import datetime
from sqlalchemy import String, Float, DateTime, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from invoice_intake.core.database import Base, utcnow


class ApprovedRecord(Base):
    __tablename__ = "approved_records"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # One approved record per job; approving the same job twice is a no-op
    job_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    counterparty_id: Mapped[str] = mapped_column(
        String, ForeignKey("counterparties.id"), nullable=False, index=True
    )

    invoice_number: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    counterparty_name: Mapped[str | None] = mapped_column(String, nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Full CandidateRecord as approved
    record: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    line_items: Mapped[list["ApprovedLineItem"]] = relationship(
        back_populates="approved_record",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovedRecord {self.invoice_number} - {self.counterparty_name}>"


class ApprovedLineItem(Base):
    __tablename__ = "approved_line_items"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    record_id: Mapped[str] = mapped_column(
        String, ForeignKey("approved_records.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    hsn_code: Mapped[str | None] = mapped_column(String, nullable=True)

    approved_record: Mapped[ApprovedRecord] = relationship(back_populates="line_items")

    def __repr__(self) -> str:
        return f"<ApprovedLineItem {self.name} - {self.hsn_code}>"

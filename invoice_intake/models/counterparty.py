import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from invoice_intake.core.database import Base, utcnow


class Counterparty(Base):
    __tablename__ = "counterparties"

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    name: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
    )
    tax_id: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        index=True,
    )
    # Learned Template, serialized with Template.model_dump(mode="json")
    template: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Counterparty {self.name} - {self.tax_id}>"

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.user_models import Base


class EmergencyRecord(Base):
    __tablename__ = "recordings"

    id: Mapped[str] = mapped_column(Text, primary_key=True)

    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    user_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Empty until the recording has been uploaded
    file_url: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # {"latitude": .., "longitude": ..}
    location: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    # {"platform": .., "user_agent": .., "app_version": ..}
    device_info: Mapped[dict] = mapped_column(JSONB, nullable=False)

    # [{"name", "phone", "relationship", "notified", "notification_time"}]
    emergency_contacts: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'cancelled')",
            name="chk_recordings_status",
        ),
        Index("idx_recordings_user_id_timestamp", "user_id", "timestamp"),
    )

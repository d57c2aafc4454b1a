"""
Synced project data

One row per tracked project, written by the spreadsheet sync job.
json_data holds the raw sheet export: either a list of row records or an
object with `rows`/`data`, plus optional `label` and `meta`.
"""
from sqlalchemy import Column, String, Text, DateTime
from datetime import datetime, timezone

from ranklens.models.base import Base


def utc_now():
    return datetime.now(timezone.utc)


class SyncedData(Base):
    __tablename__ = "synced_data"

    sheet_name = Column(String, primary_key=True, index=True)
    json_data = Column(Text, nullable=False)
    last_updated = Column(DateTime, default=utc_now, onupdate=utc_now)

from sqlalchemy import Column, Integer, String, DateTime, JSON
from shared.database import Base

class CachedBooking(Base):
    __tablename__ = "cached_bookings"

    booking_key = Column(String, primary_key=True)  # server id, or local-<uuid> before first sync
    user_id = Column(String, nullable=False, index=True)
    position = Column(Integer, nullable=False)  # order of the last save, newest first
    payload = Column(JSON, nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=True)  # NULL = optimistic local write

class SyncQueueEntry(Base):
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    table_name = Column(String, nullable=False)
    action = Column(String, nullable=False)  # create/update/delete
    booking_key = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    enqueued_at = Column(DateTime(timezone=True), nullable=False)

class BookingKeyAlias(Base):
    __tablename__ = "booking_key_aliases"

    local_key = Column(String, primary_key=True)
    server_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)

"""SQLAlchemy models for classes and the songs they perform."""

from sqlalchemy import Column, ForeignKey, Integer, String

from eventaudio.db.base import Base


class SchoolClass(Base):
    """A group of children within an event. May own zero songs."""

    __tablename__ = "classes"

    class_id = Column(String(64), primary_key=True)
    class_name = Column(String(255), nullable=False)
    event_id = Column(String(64), ForeignKey("events.event_id"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0, comment="Declaration order within the event.")


class Song(Base):
    """A named piece associated with exactly one class."""

    __tablename__ = "songs"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    artist = Column(String(255), nullable=True)
    class_id = Column(String(64), ForeignKey("classes.class_id"), index=True, nullable=False)
    event_id = Column(String(64), ForeignKey("events.event_id"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0, comment="Order within the class.")

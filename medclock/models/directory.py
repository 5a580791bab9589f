"""Directory model definitions.

Only the columns the scheduling core reads are mapped; the rest of the
professional and service records belong to the directory CRUD.
"""

from sqlalchemy import Boolean, Column, Integer, Numeric, String
from medclock.database import Base


class Professional(Base):
    """A health professional who can hold weekly windows."""
    __tablename__ = "professionals"

    id = Column(Integer, primary_key=True)
    name = Column(String)
    active = Column(Boolean, default=True)


class Service(Base):
    """A bookable service or procedure."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    name = Column(String)
    duration_minutes = Column(Integer)
    price = Column(Numeric(10, 2))

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # server-side timestamps come back with the INSERT/UPDATE itself
    __mapper_args__ = {"eager_defaults": True}

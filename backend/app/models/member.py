"""
Member as seen by the booking engine.

Member profiles are owned by the member platform; this table is read for
rosters and the booking engine never writes to it.
"""

from sqlalchemy import Column, Integer, String

from app.db.base import Base, TimestampMixin


class Member(Base, TimestampMixin):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, email={self.email})>"

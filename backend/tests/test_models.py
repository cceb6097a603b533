"""
Mapper configuration checks.
"""

from sqlalchemy import inspect

from app.db.base import Base
from app.models import Booking, ClassSession


def test_no_relationship_uses_noload():
    for mapper in Base.registry.mappers:
        for rel in mapper.relationships:
            assert rel.lazy != "noload", f"{mapper.class_.__name__}.{rel.key}"


def test_booking_and_session_rows_carry_plain_keys():
    assert list(inspect(Booking).relationships) == []
    assert list(inspect(ClassSession).relationships) == []
    assert inspect(Booking).columns["class_session_id"].foreign_keys
    assert inspect(Booking).columns["member_id"].foreign_keys

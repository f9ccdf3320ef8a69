"""
Module: insurance_kernel.db.base
Responsibility: Declarative base for the ORM models of the legacy worksheet
    database.  The legacy tables own their keys (integer ``PK`` columns or
    natural keys), so the base declares no primary key of its own.
Architecture position: Kernel > DB.  Lowest-level import target of the
    database side; MUST NOT import from models/, selectors/ or outer layers.

Invariants enforced:
    - Decimal maps to Numeric(38, 9).  Amounts are never floats.
    - int maps to Integer so SQLite test databases autoincrement keys.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import Date, DateTime, Integer, Numeric
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for every legacy-table model."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(),
        date: Date(),
        int: Integer,
    }

"""
models/__init__.py
------------------
Re-export all models so create_tables.py and the record store can import
Base and discover all tables via a single import:

    from app.models import Base
"""

from app.db.base import Base
from app.models.record import RecordCollection

__all__ = ["Base", "RecordCollection"]

"""Import all models so SQLAlchemy metadata knows about them."""
from hashdoc.models.base import Base
from hashdoc.models.file_record import FileRecordRow

__all__ = ["Base", "FileRecordRow"]

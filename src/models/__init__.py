from src.models.base import Base
from src.models.token import GraduatedToken, ScanCheckpoint

__all__ = [
    "Base",
    "GraduatedToken",
    "ScanCheckpoint",
]

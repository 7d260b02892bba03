"""
library/models.py -- Domain dataclasses for the Shelfnote book list.

Pure data containers with zero logic. Persistence lives in library/store.py.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Book:
    """A book on one user's shelf.

    id is None before the record is written to the database.
    rating is 0-10 when present.
    """

    user_id: int
    title: str
    author: str = ""
    id: Optional[int] = None
    isbn: Optional[str] = None
    rating: Optional[int] = None
    summary: Optional[str] = None
    notes: Optional[str] = None
    review: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert

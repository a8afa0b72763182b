"""Database models."""

from database import Base

from models.account import Account, AccountSnapshot
from models.post import Post, PostSnapshot

__all__ = [
    "Base",
    "Account",
    "AccountSnapshot",
    "Post",
    "PostSnapshot",
]

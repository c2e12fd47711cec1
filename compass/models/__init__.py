from .user import User
from .company import Company
from .task import Task
from .note import Note
from .document import Document
from .market_research import MarketResearch

__all__ = [
    "User",
    "Company",
    "Task",
    "Note",
    "Document",
    "MarketResearch",
]

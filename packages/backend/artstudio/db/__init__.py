from .database import Database, get_database, reset_database
from .migrations import init_db
from .models import Configuration, Merchant, normalize_shop_domain

__all__ = [
    "Database",
    "get_database",
    "reset_database",
    "init_db",
    "Merchant",
    "Configuration",
    "normalize_shop_domain",
]

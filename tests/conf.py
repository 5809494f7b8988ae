"""
Data definitions used for unit testing
"""

from typing import Optional

# Set the database URL to be used by the SQL store tests (default: None) which
# will be passed to SQLAlchemy, so make sure it's understood by SQLAlchemy
# (using None enables the in-memory sqlite database instead, see below)
DATABASE_URL: Optional[str] = None

# Fallback database URL (in-memory sqlite database) when no URL was set above
DATABASE_FALLBACK_URL: str = "sqlite://"

# Enable or disable echoing of commands issued by SQLAlchemy (default: False)
SQLALCHEMY_ECHOING: bool = False

# Default and maximum page sizes of the resources during the API tests
DEFAULT_PAGE_SIZE: int = 10
MAX_PAGE_SIZE: int = 20

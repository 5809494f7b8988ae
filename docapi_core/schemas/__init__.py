"""
docapi schema definitions

The resource schemas themselves are plain pydantic models, which are wrapped
and registered by the ``engine`` module. This package exports the shared
models of the API itself, the error and the event models.

This package also contains the ``config`` and ``engine`` modules,
but they're not exported by default to avoid circular imports.
"""

from .errors import *
from .events import *

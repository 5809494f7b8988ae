"""
docapi core unit tests
"""

import unittest
from .access import access_suite
from .api import api_suite
from .cache import cache_suite
from .context import context_suite
from .crud import crud_suite
from .hooks import hooks_suite
from .notifier import notifier_suite
from .query import query_suite
from .routes import routes_suite
from .schemas import schemas_suite
from .store import store_suite


TEST_SUITES = [
    access_suite,
    api_suite,
    cache_suite,
    context_suite,
    crud_suite,
    hooks_suite,
    notifier_suite,
    query_suite,
    routes_suite,
    schemas_suite,
    store_suite,
]


def get_suite() -> unittest.TestSuite:
    suite = unittest.TestSuite()
    for module_suite in TEST_SUITES:
        suite.addTests(module_suite)
    return suite

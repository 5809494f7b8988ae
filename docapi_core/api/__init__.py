"""
docapi REST API package

The application factory lives in the ``api`` module of this package,
the generic resource machinery in ``module``, ``dispatcher`` and ``crud``.
"""

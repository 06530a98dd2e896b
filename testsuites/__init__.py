"""
Test suites package.

Unit tests for the collection runner live under `testsuites/unit/`; shared
fakes and fixtures are in `testsuites/conftest.py`.
"""

"""Shared fixtures for embroot tests."""

import hashlib
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from embroot.builds import models as builds_models  # noqa: F401 - registers tables
from embroot.db import Base
from embroot.packages.io import parse_package_data
from embroot.packages.schema import PackageSpec


def _make_spec(
    name: str,
    version: str = "1.0.0",
    depends: list[str] | None = None,
    requires: list[str] | None = None,
    source: dict[str, Any] | None = None,
    **sections: Any,
) -> PackageSpec:
    digest = hashlib.sha256(f"{name}-{version}".encode()).hexdigest()
    data: dict[str, Any] = {
        "package": {
            "name": name,
            "version": version,
            "depends": depends or [],
            "requires": requires or [],
        },
        "source": source
        or {"url": f"https://example.com/{name}-{version}.tar.gz", "sha256": digest},
    }
    data.update(sections)
    return parse_package_data(data)


@pytest.fixture
def make_spec():
    """Factory for package definitions with a URL source by default."""
    return _make_spec


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory(engine):
    """Create a session factory for testing."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

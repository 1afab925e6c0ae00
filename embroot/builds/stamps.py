"""Incremental build stamps.

A stamp records the fingerprint and installed tree of a package's last
successful build. A later build with the same fingerprint reuses the
tree as long as it still exists.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from embroot.builds.models import BuildStamp
from embroot.db import get_session

logger = logging.getLogger(__name__)


class StampStore:
    """Persisted stamp store.

    Args:
        session_factory: SQLAlchemy session factory for the stamp database.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory
        self._lock = threading.Lock()

    def get(self, package: str) -> BuildStamp | None:
        with self._lock, get_session(self.session_factory) as session:
            return session.scalars(
                select(BuildStamp).where(BuildStamp.package == package)
            ).first()

    def lookup(self, package: str, version: str, fingerprint: str) -> Path | None:
        """Return the recorded installed tree if the stamp matches.

        Args:
            package: Package name.
            version: Package version.
            fingerprint: Current build fingerprint.

        Returns:
            The staging directory, or None if there is no usable stamp.
        """
        stamp = self.get(package)
        if stamp is None or stamp.version != version or stamp.fingerprint != fingerprint:
            return None
        staging = Path(stamp.staging_dir)
        if not staging.is_dir():
            logger.debug("Stamp for %s points at missing %s", package, staging)
            return None
        return staging

    def record(
        self,
        package: str,
        version: str,
        fingerprint: str,
        staging_dir: Path,
        log_path: Path | None = None,
    ) -> None:
        """Create or replace the stamp for a package."""
        with self._lock, get_session(self.session_factory) as session:
            stamp = session.scalars(
                select(BuildStamp).where(BuildStamp.package == package)
            ).first()
            if stamp is None:
                stamp = BuildStamp(package=package)
                session.add(stamp)
            stamp.version = version
            stamp.fingerprint = fingerprint
            stamp.staging_dir = str(staging_dir)
            stamp.log_path = str(log_path) if log_path else None
            stamp.built_at = datetime.now(timezone.utc)

    def clear(self, package: str | None = None) -> int:
        """Delete one stamp, or all stamps when ``package`` is None."""
        with self._lock, get_session(self.session_factory) as session:
            statement = delete(BuildStamp)
            if package is not None:
                statement = statement.where(BuildStamp.package == package)
            return session.execute(statement).rowcount or 0


__all__ = ["StampStore"]

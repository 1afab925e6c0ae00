"""Build ORM models.

This module defines the BuildStamp model recording the last successful
build of each package, used to skip rebuilding unchanged packages.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from embroot.db import Base


class BuildStamp(Base):
    """ORM model for incremental build stamps.

    Attributes:
        id: Primary key.
        package: Package name (unique).
        version: Version that was built.
        fingerprint: Build fingerprint of that build.
        staging_dir: Installed tree produced by the build.
        log_path: Build log, if the package was compiled.
        built_at: Timestamp of the build.
    """

    __tablename__ = "build_stamps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    staging_dir: Mapped[str] = mapped_column(Text, nullable=False)
    log_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    built_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<BuildStamp(package={self.package!r}, version={self.version!r}, "
            f"fingerprint={self.fingerprint[:16]!r})>"
        )


__all__ = ["BuildStamp"]

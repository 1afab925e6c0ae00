"""Tests for lockfile module."""

import pytest
import yaml

from embroot.lockfile import (
    LockEntry,
    LockFile,
    LockFileError,
    LockMismatchError,
    SourceLocator,
    read_lock_file,
    verify_plan,
    write_lock_file,
)
from embroot.lockfile.verify import find_mismatches
from embroot.packages.universe import InMemoryUniverse
from embroot.resolver import resolve

COMMIT = "c" * 40


def entry_for(spec, toolchain="zig 0.11.0", **overrides):
    data = {
        "name": spec.name,
        "version": str(spec.version),
        "checksum": spec.source.sha256,
        "source": "registry",
        "dependencies": {},
        "toolchain": toolchain,
    }
    data.update(overrides)
    return LockEntry(**data)


class TestSourceLocator:
    """Tests for SourceLocator."""

    @pytest.mark.parametrize(
        ("text", "kind", "location", "ref"),
        [
            ("registry", "registry", None, None),
            ("registry:https://pkgs.example.com", "registry", "https://pkgs.example.com", None),
            ("path:packages/zlib/1.3.1.yaml", "path", "packages/zlib/1.3.1.yaml", None),
            (
                f"git:https://example.com/r.git#{COMMIT}",
                "git",
                "https://example.com/r.git",
                COMMIT,
            ),
        ],
    )
    def test_parse(self, text, kind, location, ref):
        """Should parse every locator form and render it back."""
        locator = SourceLocator.parse(text)
        assert (locator.kind, locator.location, locator.ref) == (kind, location, ref)
        assert str(locator) == text

    @pytest.mark.parametrize("text", ["", "path:", "git:https://example.com/r.git", "ftp:x"])
    def test_invalid(self, text):
        """Should reject malformed locators."""
        with pytest.raises(LockFileError) as exc_info:
            SourceLocator.parse(text)
        assert exc_info.value.code == "invalid_locator"


class TestLockFileIO:
    """Tests for reading and writing lock files."""

    def test_write_then_read(self, tmp_path, make_spec):
        """Should preserve entries and their order."""
        lock = LockFile(
            tool_version="0.1.0",
            toolchain_version="zig 0.11.0",
            packages=[
                entry_for(make_spec("zlib")),
                entry_for(make_spec("curl"), dependencies={"zlib": "1.0.0"}),
            ],
        )
        path = tmp_path / "embroot.lock"

        write_lock_file(lock, path)
        loaded = read_lock_file(path)

        assert path.read_text().startswith("# This file is generated by embroot")
        assert [e.name for e in loaded.packages] == ["zlib", "curl"]
        assert loaded.get("curl").dependencies == {"zlib": "1.0.0"}
        assert loaded.generated_at == lock.generated_at

    def test_missing(self, tmp_path):
        """Should raise lock_file_missing."""
        with pytest.raises(LockFileError) as exc_info:
            read_lock_file(tmp_path / "embroot.lock")
        assert exc_info.value.code == "lock_file_missing"

    def test_invalid_document(self, tmp_path):
        """Should reject documents that fail validation."""
        path = tmp_path / "embroot.lock"
        path.write_text(yaml.safe_dump({"version": 99, "tool_version": "x"}))
        with pytest.raises(LockFileError) as exc_info:
            read_lock_file(path)
        assert exc_info.value.code == "invalid_lock_file"

    def test_invalid_source(self):
        """Should validate entry locators."""
        with pytest.raises(ValueError):
            LockEntry(name="a", version="1.0.0", checksum="x", source="cvs:x", toolchain="t")


class TestVerifyPlan:
    """Tests for locked-mode verification."""

    @pytest.fixture
    def specs(self, make_spec):
        return [make_spec("zlib", "1.3.1"), make_spec("curl", "8.5.0", depends=["zlib"])]

    @pytest.fixture
    def plan(self, specs):
        return resolve({"curl": "*"}, InMemoryUniverse(specs))

    @pytest.fixture
    def toolchains(self):
        return {"zlib": "zig 0.11.0", "curl": "zig 0.11.0"}

    def lock_for(self, specs, **overrides):
        entries = [entry_for(s) for s in specs]
        for index, changes in overrides.items():
            entries[int(index)] = entries[int(index)].model_copy(update=changes)
        return LockFile(tool_version="0.1.0", toolchain_version="zig 0.11.0", packages=entries)

    def test_matching(self, plan, specs, toolchains):
        """Should accept a plan that matches the lock file."""
        verify_plan(plan, self.lock_for(specs), toolchains)

    def test_version_and_checksum(self, plan, specs, toolchains):
        """Should report a changed version and checksum."""
        lock = self.lock_for(specs, **{"0": {"version": "1.2.0", "checksum": "0" * 64}})

        mismatches = find_mismatches(plan, lock, toolchains)

        assert [(m.package, m.field) for m in mismatches] == [
            ("zlib", "checksum"),
            ("zlib", "version"),
        ]

    def test_toolchain(self, plan, specs, toolchains):
        """Should report a changed toolchain identity."""
        lock = self.lock_for(specs)
        with pytest.raises(LockMismatchError) as exc_info:
            verify_plan(plan, lock, {**toolchains, "curl": "gcc https://example.com/t.tar.bz2"})
        assert [m.field for m in exc_info.value.mismatches] == ["toolchain"]
        assert exc_info.value.code == "lock_mismatch"

    def test_added_and_removed_packages(self, plan, specs, toolchains, make_spec):
        """Should report packages missing on either side."""
        lock = self.lock_for([specs[0], make_spec("openssl")])

        mismatches = find_mismatches(plan, lock, toolchains)

        assert [(m.package, m.field) for m in mismatches] == [
            ("curl", "package"),
            ("openssl", "package"),
        ]

    def test_git_location(self, make_spec, toolchains):
        """Should report a git source that moved to another repository."""
        spec = make_spec("zlib", source={"git": "https://example.com/new.git", "rev": COMMIT})
        plan = resolve({"zlib": "*"}, InMemoryUniverse([spec]))
        lock = LockFile(
            tool_version="0.1.0",
            toolchain_version="zig 0.11.0",
            packages=[
                LockEntry(
                    name="zlib",
                    version="1.0.0",
                    checksum=COMMIT,
                    source=f"git:https://example.com/old.git#{COMMIT}",
                    toolchain="zig 0.11.0",
                )
            ],
        )

        mismatches = find_mismatches(plan, lock, toolchains)

        assert [m.field for m in mismatches] == ["source"]

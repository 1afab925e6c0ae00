"""Tests for versions module."""

import pytest

from embroot.versions import Constraint, Version, VersionError, parse_requirement


class TestVersionParse:
    """Tests for Version.parse."""

    def test_full_version(self):
        """Should parse major, minor and patch."""
        v = Version.parse("1.2.3")
        assert v.release == (1, 2, 3)
        assert not v.is_prerelease

    def test_missing_components_default_to_zero(self):
        """Should fill missing minor and patch with zero."""
        assert Version.parse("2") == Version(2, 0, 0)
        assert Version.parse("2.5") == Version(2, 5, 0)

    def test_prerelease_and_build(self):
        """Should keep pre-release identifiers and build metadata."""
        v = Version.parse("2.0.0-rc.1+abc")
        assert v.prerelease == ("rc", "1")
        assert v.build == "abc"
        assert str(v) == "2.0.0-rc.1+abc"

    def test_invalid(self):
        """Should reject non-versions."""
        with pytest.raises(VersionError):
            Version.parse("latest")


class TestVersionOrdering:
    """Tests for semver precedence."""

    def test_numeric_components(self):
        """Should compare numerically, not lexically."""
        assert Version.parse("1.10.0") > Version.parse("1.9.0")

    def test_prerelease_before_release(self):
        """Should order a pre-release before its release."""
        assert Version.parse("1.0.0-alpha") < Version.parse("1.0.0")

    def test_prerelease_identifiers(self):
        """Should follow semver identifier precedence."""
        ordered = [
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-alpha.beta",
            "1.0.0-beta",
            "1.0.0-beta.2",
            "1.0.0-beta.11",
            "1.0.0-rc.1",
            "1.0.0",
        ]
        versions = [Version.parse(v) for v in ordered]
        assert sorted(reversed(versions)) == versions

    def test_build_metadata_ignored(self):
        """Should ignore build metadata for equality."""
        assert Version.parse("1.0.0+a") == Version.parse("1.0.0+b")


class TestConstraint:
    """Tests for Constraint parsing and matching."""

    @pytest.mark.parametrize(
        ("text", "allowed", "rejected"),
        [
            ("^1.2.3", ["1.2.3", "1.9.0"], ["1.2.2", "2.0.0"]),
            ("^0.3", ["0.3.0", "0.3.9"], ["0.4.0", "0.2.9"]),
            ("^0.0.3", ["0.0.3"], ["0.0.4"]),
            ("~1.2", ["1.2.0", "1.2.9"], ["1.3.0"]),
            (">=1.2, <2", ["1.2.0", "1.99.0"], ["1.1.9", "2.0.0"]),
            (">= 1.2 < 2", ["1.5.0"], ["2.0.0"]),
            ("1.*", ["1.0.0", "1.9.9"], ["2.0.0"]),
            ("1.2.*", ["1.2.7"], ["1.3.0"]),
            ("1.2.3", ["1.2.3"], ["1.2.4"]),
            ("==1.2.3", ["1.2.3"], ["1.2.4"]),
            ("*", ["0.0.1", "99.0.0"], []),
            ("", ["3.0.0"], []),
        ],
    )
    def test_matching(self, text, allowed, rejected):
        """Should accept and reject versions per the constraint."""
        constraint = Constraint.parse(text)
        for v in allowed:
            assert constraint.allows(Version.parse(v)), f"{text} should allow {v}"
        for v in rejected:
            assert not constraint.allows(Version.parse(v)), f"{text} should reject {v}"

    def test_prerelease_needs_explicit_opt_in(self):
        """Should only match pre-releases named by the constraint."""
        assert not Constraint.parse(">=1.0.0").allows(Version.parse("2.0.0-rc.1"))
        assert Constraint.parse(">=2.0.0-rc.1").allows(Version.parse("2.0.0-rc.2"))
        assert not Constraint.parse(">=2.0.0-rc.1").allows(Version.parse("3.0.0-rc.1"))

    def test_exact(self):
        """Should build an exact pin from a version."""
        constraint = Constraint.exact(Version.parse("1.2.3"))
        assert constraint.allows(Version.parse("1.2.3"))
        assert not constraint.allows(Version.parse("1.2.4"))

    @pytest.mark.parametrize("text", [">=", "^abc", ">=1.0 <", ">1.*"])
    def test_invalid(self, text):
        """Should reject malformed constraints."""
        with pytest.raises(VersionError) as exc_info:
            Constraint.parse(text)
        assert exc_info.value.code == "invalid_constraint"


class TestParseRequirement:
    """Tests for parse_requirement function."""

    def test_with_constraint(self):
        """Should split name and constraint."""
        name, constraint = parse_requirement("zlib>=1.2.11")
        assert name == "zlib"
        assert constraint.allows(Version.parse("1.3.0"))
        assert not constraint.allows(Version.parse("1.2.10"))

    def test_bare_name(self):
        """Should accept any version for a bare name."""
        name, constraint = parse_requirement("busybox")
        assert name == "busybox"
        assert constraint.allows(Version.parse("1.36.1"))

    def test_caret(self):
        """Should parse caret requirements."""
        name, constraint = parse_requirement("openssl^3.0")
        assert name == "openssl"
        assert not constraint.allows(Version.parse("4.0.0"))

"""Tests for packages module (schema, io, options, universes)."""

import json

import pytest
import yaml

from embroot.packages import (
    ConfigurationError,
    DirectoryUniverse,
    InMemoryUniverse,
    LayeredUniverse,
    load_package,
    load_packages_from_directory,
    option_env,
    parse_package_data,
    resolve_options,
)
from embroot.types import BuildSystem

SHA = "ab" * 32


def package_data(**overrides):
    data = {
        "package": {"name": "zlib", "version": "1.3.1"},
        "source": {"url": "https://example.com/zlib-1.3.1.tar.gz", "sha256": SHA},
    }
    data.update(overrides)
    return data


class TestSourceValidation:
    """Tests for source descriptor validation."""

    def test_url_source(self):
        """Should accept a URL with a digest."""
        spec = parse_package_data(package_data())
        assert spec.source.kind == "url"
        assert spec.source.files()[0].effective_filename == "zlib-1.3.1.tar.gz"

    def test_url_and_git_conflict(self):
        """Should name both conflicting fields."""
        data = package_data(
            source={
                "url": "https://example.com/z.tar.gz",
                "sha256": SHA,
                "git": "https://example.com/z.git",
                "tag": "v1",
            }
        )
        with pytest.raises(ConfigurationError) as exc_info:
            parse_package_data(data)

        assert exc_info.value.code == "invalid_source"
        assert exc_info.value.fields == ["source.url", "source.git"]

    def test_missing_source_kind(self):
        """Should reject a source with no kind."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_package_data(package_data(source={}))
        assert exc_info.value.fields == ["source"]

    def test_url_requires_sha256(self):
        """Should require a digest for URL sources."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_package_data(package_data(source={"url": "https://example.com/z.tar.gz"}))
        assert exc_info.value.code == "invalid_package"

    def test_invalid_sha256(self):
        """Should reject malformed digests."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_package_data(
                package_data(source={"url": "https://example.com/z.tar.gz", "sha256": "abc"})
            )
        assert "source.sha256" in exc_info.value.fields

    def test_git_requires_one_ref(self):
        """Should require exactly one of tag, branch or rev."""
        with pytest.raises(ConfigurationError):
            parse_package_data(
                package_data(
                    source={"git": "https://example.com/z.git", "tag": "v1", "branch": "main"}
                )
            )
        with pytest.raises(ConfigurationError):
            parse_package_data(package_data(source={"git": "https://example.com/z.git"}))

    def test_git_source(self):
        """Should expose the git ref."""
        spec = parse_package_data(
            package_data(source={"git": "https://example.com/z.git", "branch": "main"})
        )
        assert spec.source.kind == "git"
        assert spec.source.git_ref == ("branch", "main")

    def test_multiple_sources(self):
        """Should accept a list of named files."""
        spec = parse_package_data(
            package_data(
                source={
                    "sources": [
                        {"url": "https://example.com/a.tar.gz", "sha256": SHA},
                        {"url": "https://example.com/b", "sha256": SHA, "filename": "b.patch"},
                    ]
                }
            )
        )
        assert [f.effective_filename for f in spec.source.files()] == ["a.tar.gz", "b.patch"]


class TestPackageSchema:
    """Tests for the remaining package sections."""

    def test_dependencies(self):
        """Should parse build dependencies with constraints."""
        spec = parse_package_data(
            package_data(
                package={"name": "curl", "version": "8.5.0", "depends": ["zlib>=1.2", "openssl"]}
            )
        )
        names = [name for name, _ in spec.build_dependencies]
        assert names == ["zlib", "openssl"]

    def test_invalid_dependency(self):
        """Should reject malformed requirements."""
        with pytest.raises(ConfigurationError):
            parse_package_data(
                package_data(
                    package={"name": "curl", "version": "8.5.0", "depends": ["zlib>=abc"]}
                )
            )

    def test_build_type_defaults(self):
        """Should default to autotools, or custom when steps are given."""
        assert parse_package_data(package_data()).build.type == BuildSystem.AUTOTOOLS
        spec = parse_package_data(package_data(build={"steps": [{"run": "make"}]}))
        assert spec.build.type == BuildSystem.CUSTOM

    def test_custom_requires_steps(self):
        """Should reject custom builds without steps."""
        with pytest.raises(ConfigurationError):
            parse_package_data(package_data(build={"type": "custom"}))

    def test_option_default_validated(self):
        """Should validate option defaults against their own definition."""
        with pytest.raises(ConfigurationError):
            parse_package_data(
                package_data(
                    options={"mode": {"type": "choice", "default": "x", "choices": ["a", "b"]}}
                )
            )

    def test_install_script_and_files_exclusive(self):
        """Should reject an install section with both script and files."""
        with pytest.raises(ConfigurationError):
            parse_package_data(
                package_data(install={"script": "true", "files": [{"src": "a", "dst": "/a"}]})
            )

    def test_explicit_toolchain_hosts(self):
        """Should reject unknown host keys."""
        with pytest.raises(ConfigurationError):
            parse_package_data(
                package_data(build={"toolchain": {"url": {"windows-x86_64": "https://x"}}})
            )

    def test_unknown_field(self):
        """Should reject unknown fields."""
        with pytest.raises(ConfigurationError):
            parse_package_data(package_data(extra_field=True))


class TestLoading:
    """Tests for file and directory loading."""

    def test_load_yaml(self, tmp_path):
        """Should load a YAML definition and record its origin."""
        path = tmp_path / "zlib.yaml"
        path.write_text(yaml.safe_dump(package_data()))

        spec = load_package(path)
        assert spec.name == "zlib"
        assert spec.locator == f"path:{path}"
        assert spec.base_dir == tmp_path

    def test_load_json(self, tmp_path):
        """Should load a JSON definition."""
        path = tmp_path / "zlib.json"
        path.write_text(json.dumps(package_data()))
        assert load_package(path).name == "zlib"

    def test_parse_error(self, tmp_path):
        """Should wrap YAML errors."""
        path = tmp_path / "bad.yaml"
        path.write_text("package: [unclosed")
        with pytest.raises(ConfigurationError) as exc_info:
            load_package(path)
        assert exc_info.value.code == "parse_error"

    def test_unsupported_extension(self, tmp_path):
        """Should reject unknown extensions."""
        path = tmp_path / "zlib.toml"
        path.write_text("")
        with pytest.raises(ConfigurationError) as exc_info:
            load_package(path)
        assert exc_info.value.code == "unsupported_format"

    def test_directory_tree(self, tmp_path):
        """Should load versions from per-package directories and collect errors."""
        (tmp_path / "zlib").mkdir()
        (tmp_path / "zlib" / "1.3.1.yaml").write_text(yaml.safe_dump(package_data()))
        older = package_data(package={"name": "zlib", "version": "1.2.13"})
        (tmp_path / "zlib" / "1.2.13.yaml").write_text(yaml.safe_dump(older))
        (tmp_path / "broken.yaml").write_text(yaml.safe_dump({"package": {}}))

        result = load_packages_from_directory(tmp_path)

        assert sorted(str(s.version) for s in result.packages) == ["1.2.13", "1.3.1"]
        assert {s.locator for s in result.packages} == {
            "path:zlib/1.2.13.yaml",
            "path:zlib/1.3.1.yaml",
        }
        assert list(result.errors) == ["broken.yaml"]
        assert not result.ok


class TestUniverses:
    """Tests for package universes."""

    def test_in_memory_sorted(self, make_spec):
        """Should list versions in ascending order."""
        universe = InMemoryUniverse([make_spec("a", "2.0.0"), make_spec("a", "1.0.0")])
        assert [str(s.version) for s in universe.lookup("a")] == ["1.0.0", "2.0.0"]
        assert universe.lookup("missing") == []

    def test_layered_first_layer_wins(self, make_spec):
        """Should return the first layer that knows a package."""
        local = InMemoryUniverse([make_spec("a", "9.0.0")])
        registry = InMemoryUniverse([make_spec("a", "1.0.0"), make_spec("b")])
        universe = LayeredUniverse(local, registry)

        assert [str(s.version) for s in universe.lookup("a")] == ["9.0.0"]
        assert universe.lookup("b")[0].name == "b"

    def test_directory_universe_strict(self, tmp_path):
        """Should raise on invalid definitions in strict mode."""
        (tmp_path / "broken.yaml").write_text(yaml.safe_dump({"package": {}}))
        with pytest.raises(ConfigurationError):
            DirectoryUniverse(tmp_path)
        assert DirectoryUniverse(tmp_path, strict=False).names() == []


class TestResolveOptions:
    """Tests for resolve_options function."""

    @pytest.fixture
    def spec(self):
        return parse_package_data(
            package_data(
                options={
                    "with_ssl": {"type": "bool", "default": False},
                    "mode": {"type": "choice", "default": "small", "choices": ["small", "full"]},
                    "threads": {"type": "number", "default": 2, "min": 1, "max": 8},
                    "hostname": {
                        "type": "string",
                        "default": "router",
                        "pattern": "[a-z][a-z0-9-]*",
                        "allow_empty": False,
                    },
                }
            )
        )

    def test_defaults(self, spec):
        """Should use defaults without overrides."""
        assert resolve_options(spec) == {
            "hostname": "router",
            "mode": "small",
            "threads": 2,
            "with_ssl": False,
        }

    def test_overrides(self, spec):
        """Should apply and normalize overrides."""
        values = resolve_options(spec, {"with_ssl": "true", "threads": "4", "mode": "full"})
        assert values["with_ssl"] is True
        assert values["threads"] == 4
        assert values["mode"] == "full"

    def test_unknown_option(self, spec):
        """Should reject unknown option names."""
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_options(spec, {"colour": "red"})
        assert exc_info.value.code == "unknown_option"
        assert exc_info.value.fields == ["options.zlib.colour"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"threads": 9},
            {"threads": True},
            {"mode": "tiny"},
            {"hostname": ""},
            {"hostname": "Bad Name"},
            {"with_ssl": "yes"},
        ],
    )
    def test_invalid_values(self, spec, overrides):
        """Should reject values outside the option's type."""
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_options(spec, overrides)
        assert exc_info.value.code == "invalid_option"

    def test_option_env(self, spec):
        """Should expose options as OPT_ variables, booleans as 1/0."""
        env = option_env(resolve_options(spec, {"with_ssl": True}))
        assert env["OPT_WITH_SSL"] == "1"
        assert env["OPT_THREADS"] == "2"
        assert env["OPT_HOSTNAME"] == "router"

"""
Tests for the AUR backend (allpac/aur.py).
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from allpac.aur import AurAdapter, build_token, http_get, parse_pkgbuild_version
from allpac.errors import BackendError, InstallError, NotFoundError


PKGBUILD = """\
# Maintainer: someone
pkgname=yay
pkgver=12.3.5
pkgrel=1
pkgdesc="Yet another yogurt"
arch=('x86_64')
"""


def rpc_payload(results, type_="multiinfo"):
    return json.dumps({"version": 5, "type": type_, "resultcount": len(results), "results": results}).encode()


def fake_git_and_makepkg(pkgbuild=PKGBUILD, clone_rc=0, build_rc=0, installed=None):
    """
    subprocess.run replacement: 'git clone' writes a PKGBUILD into the target directory.

    'pacman -Q' reports the installed version, or fails when installed is None.
    """
    calls = []

    def run(command, **kwargs):
        calls.append((command, kwargs))
        if "git" in command and "clone" in command:
            target = Path(command[-1])
            target.mkdir(parents=True)
            if pkgbuild is not None:
                (target / "PKGBUILD").write_text(pkgbuild)
            return MagicMock(returncode=clone_rc, stdout="", stderr="fatal: repository not found" if clone_rc else "")
        if command[0] == "pacman":
            if installed is None:
                return MagicMock(returncode=1, stdout="", stderr=f"error: package '{command[-1]}' was not found")
            return MagicMock(returncode=0, stdout=f"{command[-1]} {installed}\n", stderr="")
        return MagicMock(returncode=build_rc, stdout="", stderr="==> ERROR: A failure occurred" if build_rc else "")

    run.calls = calls
    return run


class TestParsePkgbuildVersion:
    """Tests for PKGBUILD version extraction."""

    def test_pkgver_and_pkgrel(self):
        """Test the plain pkgver-pkgrel form."""
        assert parse_pkgbuild_version(PKGBUILD) == "12.3.5-1"

    def test_epoch(self):
        """Test that a non-zero epoch is prefixed."""
        text = "pkgver=1.0\npkgrel=2\nepoch=3\n"
        assert parse_pkgbuild_version(text) == "3:1.0-2"

    def test_zero_epoch_omitted(self):
        """Test that epoch=0 is not shown."""
        assert parse_pkgbuild_version("epoch=0\npkgver=1.0\npkgrel=1\n") == "1.0-1"

    def test_quotes_and_comments(self):
        """Test quoted values and trailing comments."""
        text = "pkgver='2.1'  # upstream\npkgrel=\"4\"\n"
        assert parse_pkgbuild_version(text) == "2.1-4"

    def test_first_assignment_wins(self):
        """Test that later reassignments (e.g. inside pkgver()) are ignored."""
        text = "pkgver=1.0\npkgrel=1\npkgver() {\n  pkgver=9.9\n}\n"
        assert parse_pkgbuild_version(text) == "1.0-1"

    def test_variable_expansion(self):
        """Test $var, ${var} and ${var//pattern/replacement} references."""
        text = "_pkgver=1.2.3\npkgver=${_pkgver//-/_}\npkgrel=1\n"
        assert parse_pkgbuild_version(text) == "1.2.3-1"
        text = "_major=2\n_minor=7\npkgver=\"$_major.${_minor}\"\npkgrel=3\n"
        assert parse_pkgbuild_version(text) == "2.7-3"
        text = "_ver=1.0-rc1\npkgver=${_ver//-/}\npkgrel=1\n"
        assert parse_pkgbuild_version(text) == "1.0rc1-1"

    def test_unknown_variable(self):
        """Test that an unexpandable pkgver is rejected."""
        with pytest.raises(ValueError, match="cannot expand"):
            parse_pkgbuild_version("pkgver=$(date +%Y)$_undefined\npkgrel=1\n")

    def test_missing_pkgver(self):
        """Test that a PKGBUILD without pkgver is rejected."""
        with pytest.raises(ValueError, match="pkgver not found"):
            parse_pkgbuild_version("pkgname=foo\n")


class TestBuildToken:
    """Tests for build working-directory tokens."""

    def test_tokens_are_unique(self):
        """Test that consecutive tokens differ."""
        tokens = {build_token() for _ in range(50)}
        assert len(tokens) == 50


class TestHttpGet:
    """Tests for http_get."""

    @patch("allpac.aur.urllib.request.urlopen")
    def test_failure_becomes_backend_error(self, mock_urlopen):
        """Test that network errors are wrapped."""
        mock_urlopen.side_effect = OSError("connection refused")
        with pytest.raises(BackendError, match="connection refused"):
            http_get("https://aur.archlinux.org/rpc/?v=5", timeout=1)


class TestAurRpc:
    """Tests for RPC-backed lookups."""

    @patch("allpac.aur.http_get")
    def test_search(self, mock_get, tmp_path):
        """Test formatting search results."""
        mock_get.return_value = rpc_payload(
            [
                {"Name": "yay", "Version": "12.3.5-1", "Description": "Yet another yogurt"},
                {"Name": "yay-bin", "Version": "12.3.5-1", "Description": None},
            ],
            type_="search",
        )
        adapter = AurAdapter(cache_dir=tmp_path)
        assert adapter.search("yay") == ["yay 12.3.5-1 - Yet another yogurt", "yay-bin 12.3.5-1"]
        assert "type=search&arg=yay" in mock_get.call_args.args[0]

    @patch("allpac.aur.http_get")
    def test_latest_version(self, mock_get, tmp_path):
        """Test reading Version from an info query."""
        mock_get.return_value = rpc_payload([{"Name": "yay", "Version": "12.3.5-1"}])
        assert AurAdapter(cache_dir=tmp_path).latest_version("yay") == "12.3.5-1"

    @patch("allpac.aur.http_get")
    def test_latest_version_not_found(self, mock_get, tmp_path):
        """Test that an empty info result raises NotFoundError."""
        mock_get.return_value = rpc_payload([])
        with pytest.raises(NotFoundError, match="not found in AUR"):
            AurAdapter(cache_dir=tmp_path).latest_version("nope")

    @patch("allpac.aur.http_get")
    def test_rpc_error(self, mock_get, tmp_path):
        """Test that an RPC error response raises BackendError."""
        mock_get.return_value = json.dumps({"type": "error", "error": "Too many package results."}).encode()
        with pytest.raises(BackendError, match="Too many package results"):
            AurAdapter(cache_dir=tmp_path).search("a")

    @patch("allpac.aur.http_get")
    def test_invalid_json(self, mock_get, tmp_path):
        """Test that a non-JSON response raises BackendError."""
        mock_get.return_value = b"<html>"
        with pytest.raises(BackendError, match="error decoding AUR response"):
            AurAdapter(cache_dir=tmp_path).latest_version("yay")

    def test_custom_base_url(self, tmp_path):
        """Test that the clone URL follows the configured base URL."""
        adapter = AurAdapter(cache_dir=tmp_path, base_url="https://aur.example.org/")
        assert adapter.repo_url("yay") == "https://aur.example.org/yay.git"


class TestAurInstall:
    """Tests for clone-and-build installs."""

    def test_install_falls_back_to_pkgbuild_version(self, tmp_path):
        """Test the clone -> makepkg flow when pacman cannot report the version."""
        run = fake_git_and_makepkg()
        with patch("allpac.backends.subprocess.run", side_effect=run):
            version = AurAdapter(cache_dir=tmp_path, use_sudo=False).install("yay")

        assert version == "12.3.5-1"
        clone_cmd, _ = run.calls[0]
        build_cmd, build_kwargs = run.calls[1]
        assert clone_cmd[:4] == ("git", "clone", "--depth", "1")
        assert build_cmd == ("makepkg", "-si", "--noconfirm")
        workdir = Path(build_kwargs["cwd"])
        assert workdir.parent == tmp_path / "yay"
        assert (workdir / "PKGBUILD").exists()

    def test_install_returns_pacman_version(self, tmp_path):
        """Test that the version pacman reports after the build is recorded."""
        pkgbuild = "_pkgver=1.2-3\npkgver=${_pkgver//-/_}\npkgrel=1\n"
        run = fake_git_and_makepkg(pkgbuild=pkgbuild, installed="1.2_3-1")
        with patch("allpac.backends.subprocess.run", side_effect=run):
            version = AurAdapter(cache_dir=tmp_path, use_sudo=False).install("foo")

        assert version == "1.2_3-1"
        assert run.calls[-1][0] == ("pacman", "-Q", "foo")

    def test_install_fallback_expands_variables(self, tmp_path):
        """Test the PKGBUILD fallback with a variable-based pkgver."""
        pkgbuild = "_pkgver=1.2.3\npkgver=${_pkgver//-/_}\npkgrel=1\n"
        run = fake_git_and_makepkg(pkgbuild=pkgbuild)
        with patch("allpac.backends.subprocess.run", side_effect=run):
            assert AurAdapter(cache_dir=tmp_path).install("foo") == "1.2.3-1"

    @pytest.mark.parametrize("name", ["../evil", "a/b", "..", "."])
    def test_path_like_names_rejected(self, tmp_path, name):
        """Test that names which would escape the cache directory are refused."""
        outside = tmp_path / "outside"
        outside.mkdir()
        adapter = AurAdapter(cache_dir=tmp_path / "cache")
        with pytest.raises(BackendError, match="invalid AUR package name"):
            adapter.discard_cache(name)
        with patch("allpac.backends.subprocess.run") as mock_run:
            with pytest.raises(BackendError, match="invalid AUR package name"):
                adapter.install(name)
        mock_run.assert_not_called()
        assert outside.is_dir()

    def test_builds_use_separate_directories(self, tmp_path):
        """Test that two builds of one package never share a working directory."""
        run = fake_git_and_makepkg()
        adapter = AurAdapter(cache_dir=tmp_path)
        with patch("allpac.backends.subprocess.run", side_effect=run):
            adapter.install("yay")
            adapter.install("yay")
        cwds = [kwargs["cwd"] for command, kwargs in run.calls if command[0] == "makepkg"]
        assert len(set(cwds)) == 2

    def test_clone_failure(self, tmp_path):
        """Test that a failed clone raises InstallError."""
        run = fake_git_and_makepkg(clone_rc=128)
        with patch("allpac.backends.subprocess.run", side_effect=run):
            with pytest.raises(InstallError, match="error cloning AUR repo"):
                AurAdapter(cache_dir=tmp_path).install("yay")

    def test_empty_repository(self, tmp_path):
        """Test that a clone without PKGBUILD is reported as a missing package."""
        run = fake_git_and_makepkg(pkgbuild=None)
        with patch("allpac.backends.subprocess.run", side_effect=run):
            with pytest.raises(InstallError, match="empty repository"):
                AurAdapter(cache_dir=tmp_path).install("nope")
        assert len(run.calls) == 1

    def test_build_failure(self, tmp_path):
        """Test that a makepkg failure raises InstallError."""
        run = fake_git_and_makepkg(build_rc=4)
        with patch("allpac.backends.subprocess.run", side_effect=run):
            with pytest.raises(InstallError, match="makepkg"):
                AurAdapter(cache_dir=tmp_path).install("yay")

    def test_batch_update_collects_failures(self, tmp_path):
        """Test that one failed rebuild does not stop the others."""
        adapter = AurAdapter(cache_dir=tmp_path)
        built = []

        def install(name):
            if name == "broken":
                raise InstallError("boom", package=name, source="aur")
            built.append(name)
            return "1.0-1"

        with patch.object(adapter, "install", side_effect=install):
            with pytest.raises(BackendError, match="broken"):
                adapter.batch_update(["yay", "broken", "paru"])
        assert built == ["yay", "paru"]

    def test_discard_cache(self, tmp_path):
        """Test removing every cached build of one package."""
        (tmp_path / "yay" / "123").mkdir(parents=True)
        (tmp_path / "paru").mkdir()
        adapter = AurAdapter(cache_dir=tmp_path)
        adapter.discard_cache("yay")
        adapter.discard_cache("never-built")
        assert not (tmp_path / "yay").exists()
        assert (tmp_path / "paru").exists()

    @patch("allpac.backends.subprocess.run")
    def test_uninstall_goes_through_pacman(self, mock_run, tmp_path):
        """Test that AUR packages are removed with pacman."""
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        AurAdapter(cache_dir=tmp_path, use_sudo=True).uninstall("yay")
        assert mock_run.call_args.args[0] == ("sudo", "pacman", "-Rns", "--noconfirm", "yay")

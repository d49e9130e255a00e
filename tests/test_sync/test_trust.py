"""Tests for SSH host key trust handling."""

import stat

import pytest

from staticomment.sync.trust import (
    HostKeyError,
    HostTrustStore,
    KnownHostsFile,
    RemoteHost,
    extract_host,
    parse_remote,
)

KEY_LINE = "git.example.com ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOld"


class TestParseRemote:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("git@github.com:owner/repo.git", RemoteHost("github.com")),
            ("github.com:owner/repo.git", RemoteHost("github.com")),
            ("ssh://git@gitlab.example.org/owner/repo.git", RemoteHost("gitlab.example.org")),
            ("ssh://git@git.example.com:2222/repo.git", RemoteHost("git.example.com", 2222)),
            ("https://token@github.com/owner/repo.git", RemoteHost("github.com")),
        ],
    )
    def test_forms(self, url, expected):
        assert parse_remote(url) == expected

    @pytest.mark.parametrize("url", ["", "/srv/git/repo.git", "ssh:///repo.git", ":repo"])
    def test_no_host(self, url):
        with pytest.raises(HostKeyError):
            parse_remote(url)

    def test_extract_host(self):
        assert extract_host("git@codeberg.org:me/site.git") == "codeberg.org"

    def test_known_hosts_name(self):
        assert RemoteHost("h.example").known_hosts_name == "h.example"
        assert RemoteHost("h.example", 22).known_hosts_name == "h.example"
        assert RemoteHost("h.example", 2222).known_hosts_name == "[h.example]:2222"


class TestKnownHostsFile:
    def test_missing_file_is_empty(self, tmp_path):
        known = KnownHostsFile(tmp_path / "ssh" / "known_hosts")
        assert known.load() == []
        assert not known.contains("git.example.com")

    def test_append_creates_private_file(self, tmp_path):
        known = KnownHostsFile(tmp_path / "ssh" / "known_hosts")
        known.append(KEY_LINE)

        assert known.contains("git.example.com")
        assert stat.S_IMODE(known.path.stat().st_mode) == 0o600
        assert stat.S_IMODE(known.path.parent.stat().st_mode) == 0o700

    def test_append_keeps_existing_entries(self, tmp_path):
        path = tmp_path / "known_hosts"
        path.write_text("other.example ssh-rsa AAAA")
        known = KnownHostsFile(path)
        known.append(KEY_LINE)
        assert known.load() == ["other.example ssh-rsa AAAA", KEY_LINE]

    def test_contains_matches_host_lists_exactly(self, tmp_path):
        path = tmp_path / "known_hosts"
        path.write_text(
            "# git.example.com comment\n"
            "@revoked git.example.com ssh-rsa AAAA\n"
            "mirror.example,git.example.com ssh-ed25519 AAAA\n"
            "[other.example]:2222 ssh-ed25519 AAAA\n"
        )
        known = KnownHostsFile(path)
        assert known.contains("git.example.com")
        assert known.contains("[other.example]:2222")
        assert not known.contains("other.example")
        assert not known.contains("example.com")

    def test_overwrite_replaces_content(self, tmp_path):
        known = KnownHostsFile(tmp_path / "known_hosts")
        known.append("stale.example ssh-rsa OLD")
        known.overwrite(KEY_LINE)
        assert known.load() == [KEY_LINE]
        assert stat.S_IMODE(known.path.stat().st_mode) == 0o600
        assert [p.name for p in tmp_path.iterdir()] == ["known_hosts"]


class TestHostTrustStore:
    @pytest.mark.asyncio
    async def test_scans_unknown_host(self, tmp_path, fake_scanner):
        known = KnownHostsFile(tmp_path / "known_hosts")
        store = HostTrustStore("git@git.example.com:site/blog.git", known, scanner=fake_scanner)

        assert await store.ensure_host_keys() is True
        assert fake_scanner.scanned == [RemoteHost("git.example.com")]
        assert known.contains("git.example.com")

    @pytest.mark.asyncio
    async def test_known_host_not_rescanned(self, tmp_path, fake_scanner):
        known = KnownHostsFile(tmp_path / "known_hosts")
        known.append(KEY_LINE)
        store = HostTrustStore("git@git.example.com:site/blog.git", known, scanner=fake_scanner)

        assert await store.ensure_host_keys() is False
        assert fake_scanner.scanned == []
        assert known.load() == [KEY_LINE]

    @pytest.mark.asyncio
    async def test_non_default_port_uses_bracketed_name(self, tmp_path, scanner_factory):
        scanner = scanner_factory(material="[git.example.com]:2222 ssh-ed25519 AAAA")
        known = KnownHostsFile(tmp_path / "known_hosts")
        store = HostTrustStore("ssh://git@git.example.com:2222/blog.git", known, scanner=scanner)

        await store.ensure_host_keys()
        assert scanner.scanned == [RemoteHost("git.example.com", 2222)]
        assert known.contains("[git.example.com]:2222")

    @pytest.mark.asyncio
    async def test_insecure_mode_skips_scanning(self, tmp_path, fake_scanner):
        known = KnownHostsFile(tmp_path / "known_hosts")
        store = HostTrustStore(
            "git@git.example.com:site/blog.git", known, strict=False, scanner=fake_scanner
        )
        assert await store.ensure_host_keys() is False
        assert fake_scanner.scanned == []
        assert not known.path.exists()

    @pytest.mark.asyncio
    async def test_refresh_overwrites(self, tmp_path, fake_scanner):
        known = KnownHostsFile(tmp_path / "known_hosts")
        known.append(KEY_LINE)
        store = HostTrustStore("git@git.example.com:site/blog.git", known, scanner=fake_scanner)

        await store.refresh_host_keys()
        assert known.load() == [fake_scanner.material]

    @pytest.mark.asyncio
    async def test_scan_failure_propagates(self, tmp_path, scanner_factory):
        scanner = scanner_factory(error=HostKeyError("unreachable"))
        store = HostTrustStore(
            "git@git.example.com:site/blog.git",
            KnownHostsFile(tmp_path / "known_hosts"),
            scanner=scanner,
        )
        with pytest.raises(HostKeyError):
            await store.ensure_host_keys()

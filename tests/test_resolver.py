"""
Tests for source resolution: candidate ordering, origin providers and URL construction.
"""

import json
import subprocess

import pytest
import requests

from modlock.download.interfaces import ModuleInfo, Origin, PackageRef, StrategyKind
from modlock.download.privacy import PrivacyMatcher
from modlock.download.resolver import (
    GoListProvider,
    ProxyInfoProvider,
    SourceResolver,
    infer_origin_from_version,
    is_full_commit,
)
from modlock.exceptions import ResolutionError

pytestmark = [pytest.mark.unit, pytest.mark.core_downloads]

PROXY = "https://proxy.example"
FULL_HASH = "abcdef123456" + "0" * 28
PSEUDO = "v0.0.0-20231201120000-abcdef123456"


def _origin_provider(origin):
    def _provider(ref, private):
        return ModuleInfo(version=ref.version, origin=origin)

    return _provider


def _urls(resolution):
    return [c.url for c in resolution.candidates]


class TestIsFullCommit:
    """Test full commit detection."""

    @pytest.mark.parametrize(
        "value, expected",
        [(FULL_HASH, True), (FULL_HASH.upper(), True), ("abcdef123456", False), (None, False), ("z" * 40, False)],
    )
    def test_values(self, value, expected):
        assert is_full_commit(value) is expected


class TestSourceResolverOrdering:
    """Test candidate ordering rules."""

    def test_public_module_uses_proxy_first(self):
        resolver = SourceResolver(proxy=PROXY, providers=[])
        resolution = resolver.resolve("host.example/org/repo", "v1.2.3")
        assert resolution.private is False
        assert resolution.candidates[0].kind is StrategyKind.PROXY
        assert resolution.candidates[0].url == f"{PROXY}/host.example/org/repo/@v/v1.2.3.zip"
        assert resolution.candidates[0].auth_host == "proxy.example"
        assert _urls(resolution)[1:] == [
            "https://host.example/host.example/org/repo/@v/v1.2.3.zip"
        ]

    def test_private_module_prefers_pinned_commit(self):
        """A full hash from `go list` puts the pinned archive before anything else."""

        def runner(command, **kwargs):
            payload = {
                "Path": "host.example/org/repo",
                "Version": PSEUDO,
                "Origin": {"VCS": "git", "URL": "https://host.example/org/repo", "Hash": FULL_HASH},
            }
            return subprocess.CompletedProcess(command, 0, stdout=json.dumps(payload), stderr="")

        resolver = SourceResolver(
            proxy=PROXY,
            privacy=PrivacyMatcher("host.example/org/*"),
            vcs_hosts=("host.example",),
            providers=[GoListProvider(runner=runner), infer_origin_from_version],
        )
        resolution = resolver.resolve("host.example/org/repo", PSEUDO)

        assert resolution.private is True
        first = resolution.candidates[0]
        assert first.kind is StrategyKind.VCS_PINNED_COMMIT
        assert first.pinned_commit == FULL_HASH
        assert first.url == f"https://host.example/org/repo/archive/{FULL_HASH}.zip"
        assert all(c.kind is not StrategyKind.PROXY for c in resolution.candidates)
        assert resolution.origin.hash == FULL_HASH

    def test_private_snapshot_falls_back_to_short_commit(self):
        resolver = SourceResolver(
            proxy=PROXY,
            privacy=PrivacyMatcher("github.com/acme/*"),
            providers=[lambda ref, private: None, infer_origin_from_version],
        )
        resolution = resolver.resolve("github.com/acme/tool", PSEUDO)
        assert _urls(resolution) == ["https://github.com/acme/tool/archive/abcdef123456.zip"]
        assert resolution.candidates[0].kind is StrategyKind.VCS_ARCHIVE
        assert resolution.candidates[0].pinned_commit is None

    def test_private_tag_uses_tag_archive(self):
        resolver = SourceResolver(
            proxy=PROXY,
            privacy=PrivacyMatcher("github.com/myorg/*"),
            providers=[infer_origin_from_version],
        )
        resolution = resolver.resolve("github.com/myorg/private", "v1.0.0")
        assert _urls(resolution) == [
            "https://github.com/myorg/private/archive/refs/tags/v1.0.0.zip"
        ]

    def test_no_proxy_uses_direct(self):
        resolver = SourceResolver(proxy=None, providers=[infer_origin_from_version])
        resolution = resolver.resolve("github.com/example/repo", "v1.2.3")
        assert _urls(resolution) == [
            "https://github.com/example/repo/archive/refs/tags/v1.2.3.zip"
        ]

    def test_public_vcs_module_proxy_then_archive(self):
        resolver = SourceResolver(proxy=PROXY, providers=[infer_origin_from_version])
        resolution = resolver.resolve("github.com/example/repo", "v1.2.3")
        assert [c.kind for c in resolution.candidates] == [
            StrategyKind.PROXY,
            StrategyKind.VCS_ARCHIVE,
        ]

    def test_full_hash_and_tag_give_both_archives(self):
        origin = Origin(
            vcs="git", url="https://github.com/example/repo", ref="refs/tags/v1.0.0", hash=FULL_HASH
        )
        resolver = SourceResolver(proxy=None, providers=[_origin_provider(origin)])
        resolution = resolver.resolve("github.com/example/repo", "v1.0.0")
        assert _urls(resolution) == [
            f"https://github.com/example/repo/archive/{FULL_HASH}.zip",
            "https://github.com/example/repo/archive/refs/tags/v1.0.0.zip",
        ]


class TestSourceResolverUrls:
    """Test URL construction for each strategy."""

    def test_submodule_uses_repository_root(self):
        resolver = SourceResolver(providers=[infer_origin_from_version])
        resolution = resolver.resolve("github.com/example/repo/sub/module", "v1.0.0")
        assert _urls(resolution) == [
            "https://github.com/example/repo/archive/refs/tags/v1.0.0.zip"
        ]

    def test_pseudo_version_archive(self):
        resolver = SourceResolver(providers=[infer_origin_from_version])
        resolution = resolver.resolve(
            "github.com/example/repo", "v0.0.0-20231201120000-abc123def456"
        )
        assert _urls(resolution) == ["https://github.com/example/repo/archive/abc123def456.zip"]

    def test_prerelease_tag(self):
        resolver = SourceResolver(providers=[infer_origin_from_version])
        resolution = resolver.resolve("github.com/example/repo", "v1.0.0-rc.1")
        assert _urls(resolution) == [
            "https://github.com/example/repo/archive/refs/tags/v1.0.0-rc.1.zip"
        ]

    def test_schema_registry_embeds_full_path(self):
        resolver = SourceResolver(providers=[])
        resolution = resolver.resolve("buf.build/gen/go/owner/repo/connectrpc/go", "v1.0.0")
        assert _urls(resolution) == [
            "https://buf.build/gen/go/buf.build/gen/go/owner/repo/connectrpc/go/@v/v1.0.0.zip"
        ]
        assert resolution.candidates[0].kind is StrategyKind.REGISTRY_PATH

    def test_uppercase_path_is_escaped(self):
        resolver = SourceResolver(proxy=PROXY, providers=[])
        resolution = resolver.resolve("github.com/Example/Repo", "v1.0.0")
        assert resolution.candidates[0].url == f"{PROXY}/github.com/!example/!repo/@v/v1.0.0.zip"

    @pytest.mark.parametrize(
        "version", ["v1.2.3", "v1.0.0+incompatible", "v0.0.0-20231201120000-abc123"]
    )
    def test_version_kept_in_proxy_url(self, version):
        resolver = SourceResolver(proxy=PROXY, providers=[])
        resolution = resolver.resolve("example.com/repo", version)
        assert version in resolution.candidates[0].url

    def test_branch_ref(self):
        origin = Origin(vcs="git", url="https://github.com/example/repo.git/", ref="refs/heads/main")
        resolver = SourceResolver(providers=[_origin_provider(origin)])
        resolution = resolver.resolve("github.com/example/repo", "v0.0.0-20240101000000-abcdef123456")
        assert _urls(resolution) == ["https://github.com/example/repo/archive/refs/heads/main.zip"]

    def test_proxy_trailing_slash_stripped(self):
        resolver = SourceResolver(proxy=PROXY + "/", providers=[])
        resolution = resolver.resolve("example.com/repo", "v1.0.0")
        assert resolution.candidates[0].url == f"{PROXY}/example.com/repo/@v/v1.0.0.zip"

    def test_duplicate_urls_removed(self):
        origin = Origin(vcs="git", url="https://github.com/example/repo", hash=FULL_HASH)
        resolver = SourceResolver(providers=[_origin_provider(origin)])
        resolution = resolver.resolve("github.com/example/repo", "v1.0.0")
        assert len(resolution.candidates) == 1
        assert resolution.candidates[0].kind is StrategyKind.VCS_PINNED_COMMIT


class TestSourceResolverOrigins:
    """Test origin acceptance and the provider chain."""

    @pytest.mark.parametrize(
        "origin",
        [
            Origin(vcs="hg", url="https://github.com/example/repo", hash=FULL_HASH),
            Origin(vcs="git", url="http://github.com/example/repo", hash=FULL_HASH),
            Origin(vcs="git", url="https://evil.example/example/repo", hash=FULL_HASH),
        ],
    )
    def test_unacceptable_origin_falls_through(self, origin):
        resolver = SourceResolver(
            providers=[_origin_provider(origin), infer_origin_from_version]
        )
        resolution = resolver.resolve("github.com/example/repo", "v1.0.0")
        assert _urls(resolution) == [
            "https://github.com/example/repo/archive/refs/tags/v1.0.0.zip"
        ]

    def test_no_origin_gives_generic_registry(self):
        """Without provenance a version-control host still gets a registry-path candidate."""
        resolver = SourceResolver(providers=[lambda ref, private: None])
        resolution = resolver.resolve("github.com/example/repo", "v1.0.0")
        assert resolution.origin is None
        assert _urls(resolution) == [
            "https://github.com/github.com/example/repo/@v/v1.0.0.zip"
        ]

    def test_providers_not_consulted_for_other_hosts(self, mocker):
        provider = mocker.Mock(return_value=None)
        SourceResolver(providers=[provider]).resolve("golang.org/x/mod", "v0.32.0")
        provider.assert_not_called()

    def test_provider_receives_privacy(self, mocker):
        provider = mocker.Mock(return_value=None)
        resolver = SourceResolver(privacy=PrivacyMatcher("github.com/*"), providers=[provider])
        resolver.resolve("github.com/example/repo", "v1.0.0")
        provider.assert_called_once_with(PackageRef("github.com/example/repo", "v1.0.0"), True)

    def test_default_chain(self):
        resolver = SourceResolver(proxy=PROXY, use_go_list=False)
        assert isinstance(resolver.providers[0], ProxyInfoProvider)
        assert resolver.providers[1] is infer_origin_from_version
        assert len(resolver.providers) == 2
        assert any(
            isinstance(p, GoListProvider) for p in SourceResolver(proxy=PROXY).providers
        )

    @pytest.mark.parametrize(
        "path, version",
        [("", "v1.0.0"), ("example.com/m", ""), ("/example.com/m", "v1.0.0")],
    )
    def test_invalid_input(self, path, version):
        with pytest.raises(ResolutionError) as exc_info:
            SourceResolver(providers=[]).resolve(path, version)
        assert exc_info.value.path == path
        assert exc_info.value.version == version


class TestInferOrigin:
    """Test provenance inferred from the version string."""

    def test_tagged(self):
        info = infer_origin_from_version(PackageRef("github.com/a/b", "v1.0.0"), False)
        assert info.origin == Origin(vcs="git", url="https://github.com/a/b", ref="refs/tags/v1.0.0")

    def test_snapshot(self):
        info = infer_origin_from_version(PackageRef("github.com/a/b/c", PSEUDO), True)
        assert info.origin.url == "https://github.com/a/b"
        assert info.origin.hash == "abcdef123456"
        assert info.origin.ref is None

    def test_short_path(self):
        assert infer_origin_from_version(PackageRef("github.com/a", "v1.0.0"), False) is None


class TestProxyInfoProvider:
    """Test the proxy metadata provider."""

    def test_reads_origin(self, mocker, fake_response):
        session = mocker.Mock()
        session.get.return_value = fake_response(
            json_data={
                "Version": "v1.0.0",
                "Time": "2023-12-01T12:00:00Z",
                "Origin": {"VCS": "git", "URL": "https://github.com/Acme/tool", "Ref": "refs/tags/v1.0.0", "Hash": FULL_HASH},
            }
        )
        provider = ProxyInfoProvider(PROXY, session=session, timeout=3)
        info = provider(PackageRef("github.com/Acme/tool", "v1.0.0"), False)

        session.get.assert_called_once_with(
            f"{PROXY}/github.com/!acme/tool/@v/v1.0.0.info", timeout=3
        )
        assert info.time == "2023-12-01T12:00:00Z"
        assert info.origin.hash == FULL_HASH
        assert info.origin.ref == "refs/tags/v1.0.0"

    def test_skipped_for_private(self, mocker):
        session = mocker.Mock()
        assert ProxyInfoProvider(PROXY, session=session)(PackageRef("github.com/a/b", "v1"), True) is None
        session.get.assert_not_called()

    def test_skipped_without_proxy(self, mocker):
        session = mocker.Mock()
        assert ProxyInfoProvider(None, session=session)(PackageRef("github.com/a/b", "v1"), False) is None
        session.get.assert_not_called()

    def test_http_error(self, mocker, fake_response):
        session = mocker.Mock()
        session.get.return_value = fake_response(status_code=410)
        assert ProxyInfoProvider(PROXY, session=session)(PackageRef("github.com/a/b", "v1"), False) is None

    def test_request_exception(self, mocker):
        session = mocker.Mock()
        session.get.side_effect = requests.exceptions.ConnectionError("offline")
        assert ProxyInfoProvider(PROXY, session=session)(PackageRef("github.com/a/b", "v1"), False) is None

    def test_invalid_json(self, mocker, fake_response):
        session = mocker.Mock()
        session.get.return_value = fake_response(body=b"not json")
        assert ProxyInfoProvider(PROXY, session=session)(PackageRef("github.com/a/b", "v1"), False) is None

    def test_missing_origin(self, mocker, fake_response):
        session = mocker.Mock()
        session.get.return_value = fake_response(json_data={"Version": "v1"})
        info = ProxyInfoProvider(PROXY, session=session)(PackageRef("github.com/a/b", "v1"), False)
        assert info.origin is None


class TestGoListProvider:
    """Test the `go list` provider with an injected runner."""

    def test_command_and_parse(self):
        calls = []

        def runner(command, **kwargs):
            calls.append((command, kwargs))
            return subprocess.CompletedProcess(
                command,
                0,
                stdout=json.dumps({"Version": "v1.0.0", "Origin": {"VCS": "git", "URL": "https://github.com/a/b", "Hash": FULL_HASH}}),
                stderr="",
            )

        info = GoListProvider(timeout=5, runner=runner)(PackageRef("github.com/a/b", "v1.0.0"), True)
        assert info.origin.hash == FULL_HASH
        command, kwargs = calls[0]
        assert command == ["go", "list", "-m", "-json", "github.com/a/b@v1.0.0"]
        assert kwargs == {"capture_output": True, "text": True, "timeout": 5, "check": False}

    @pytest.mark.parametrize(
        "side_effect",
        [FileNotFoundError("go"), subprocess.TimeoutExpired(["go"], 5)],
    )
    def test_runner_failure(self, side_effect):
        def runner(command, **kwargs):
            raise side_effect

        assert GoListProvider(runner=runner)(PackageRef("github.com/a/b", "v1"), True) is None

    def test_non_zero_exit(self):
        def runner(command, **kwargs):
            return subprocess.CompletedProcess(command, 1, stdout="", stderr="not found")

        assert GoListProvider(runner=runner)(PackageRef("github.com/a/b", "v1"), True) is None

    def test_invalid_output(self):
        def runner(command, **kwargs):
            return subprocess.CompletedProcess(command, 0, stdout="{oops", stderr="")

        assert GoListProvider(runner=runner)(PackageRef("github.com/a/b", "v1"), True) is None

import pytest

from modlock.download.version import (
    Snapshot,
    Tagged,
    classify_version,
    is_prerelease,
)

pytestmark = [pytest.mark.unit, pytest.mark.core_downloads]


class TestClassifyVersion:
    """Test tagged vs snapshot classification."""

    def test_snapshot_pseudo_version(self):
        kind = classify_version("v0.0.0-20231201120000-abcdef123456")
        assert isinstance(kind, Snapshot)
        assert kind.commit_prefix == "abcdef123456"
        assert kind.timestamp == "20231201120000"
        assert kind.kind == "snapshot"

    def test_snapshot_with_build_suffix(self):
        kind = classify_version("v0.0.0-20231201120000-abcdef123456+incompatible")
        assert isinstance(kind, Snapshot)
        assert kind.commit_prefix == "abcdef123456"

    def test_snapshot_prefix_wins_over_other_suffixes(self):
        """Anything starting with v0.0.0- is a snapshot."""
        kind = classify_version("v0.0.0-weird")
        assert isinstance(kind, Snapshot)
        assert kind.commit_prefix == "weird"
        assert kind.timestamp is None

    def test_plain_release(self):
        kind = classify_version("v1.2.3")
        assert kind == Tagged("v1.2.3")
        assert kind.kind == "release"
        assert not kind.prerelease
        assert not kind.incompatible

    def test_prerelease(self):
        kind = classify_version("v2.0.0-rc.1")
        assert isinstance(kind, Tagged)
        assert kind.prerelease
        assert kind.kind == "prerelease"

    def test_incompatible(self):
        kind = classify_version("v3.1.0+incompatible")
        assert isinstance(kind, Tagged)
        assert kind.incompatible
        assert kind.kind == "incompatible"

    def test_non_zero_pseudo_version_is_tagged(self):
        """Only the v0.0.0- form counts as a snapshot."""
        kind = classify_version("v1.2.4-0.20231201120000-abcdef123456")
        assert isinstance(kind, Tagged)

    def test_empty_string_is_tagged(self):
        kind = classify_version("")
        assert kind == Tagged("")


class TestIsPrerelease:
    """Test pre-release detection."""

    @pytest.mark.parametrize(
        "version, expected",
        [
            ("v1.0.0", False),
            ("v1.0.0-beta", True),
            ("v1.0.0-rc.2+build.5", True),
            ("1.0.0rc1", True),
            ("v1.0.0+meta", False),
            ("not-a-version", False),
            ("", False),
        ],
    )
    def test_values(self, version, expected):
        assert is_prerelease(version) is expected

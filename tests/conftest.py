import io
import json
import os
import zipfile

import platformdirs
import pytest
import requests

from modlock.config import FetchConfig
from modlock.download.cache import ModuleCache
from modlock.download.netrc import CredentialStore

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """
    Register the markers used to group the test suite.

    Parameters:
        config: pytest.Config
            The pytest configuration object.
    """
    for marker, description in (
        ("unit", "fast tests with no filesystem or network side effects beyond tmp_path"),
        ("integration", "tests that exercise several components together"),
        ("core_downloads", "resolution, fetching, caching and hashing"),
        ("configuration", "configuration and environment handling"),
        ("user_interface", "command-line behaviour"),
    ):
        config.addinivalue_line("markers", f"{marker}: {description}")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point every per-user directory and Go environment variable at an isolated temporary layout.

    Patches platformdirs user_* functions to return temp paths and clears GOPROXY,
    GOPRIVATE, GONOPROXY, NETRC and the modlock variables so host settings never
    leak into tests.
    """
    base = tmp_path_factory.mktemp("modlock")
    cache_dir = base / "cache"
    config_dir = base / "config"
    log_dir = base / "log"
    home_dir = base / "home"

    for path in (cache_dir, config_dir, log_dir, home_dir):
        path.mkdir(parents=True, exist_ok=True)

    for var in (
        "GOPROXY",
        "GOPRIVATE",
        "GONOPROXY",
        "NETRC",
        "MODLOCK_CACHE_DIR",
        "MODLOCK_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )

    import modlock.config as config_module

    monkeypatch.setattr(config_module, "CONFIG_DIR", str(config_dir))
    monkeypatch.setattr(
        config_module, "CONFIG_FILE", str(config_dir / config_module.CONFIG_FILE_NAME)
    )


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    requests.get = _block_network
    requests.post = _block_network
    requests.put = _block_network
    requests.delete = _block_network
    requests.head = _block_network
    requests.patch = _block_network
    requests.options = _block_network
    requests.Session.request = _block_network


# =============================================================================
# Module archive fixtures
# =============================================================================


def build_zip(entries, root=None):
    """
    Build an in-memory zip archive.

    Parameters:
        entries (dict): Member name -> bytes, or (bytes, unix_mode) to record permissions. A mode with the symlink bit set stores a symlink whose target is the bytes.
        root (str | None): Optional directory every member is placed under.

    Returns:
        bytes: The zip archive.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, value in entries.items():
            data, mode = value if isinstance(value, tuple) else (value, 0o100644)
            info = zipfile.ZipInfo(f"{root}/{name}" if root else name)
            info.date_time = (2020, 1, 1, 0, 0, 0)
            info.external_attr = mode << 16
            zf.writestr(info, data)
    return buffer.getvalue()


@pytest.fixture
def zip_factory():
    """Expose build_zip to tests."""
    return build_zip


@pytest.fixture
def module_cache(tmp_path):
    """An isolated ModuleCache rooted under tmp_path."""
    return ModuleCache(str(tmp_path / "modcache"))


@pytest.fixture
def fetch_config(tmp_path):
    """A FetchConfig that never touches the user's environment."""
    return FetchConfig(
        proxy="https://proxy.example",
        private_patterns=[],
        cache_dir=str(tmp_path / "modcache"),
        netrc_path=str(tmp_path / "netrc"),
        request_timeout=5,
        max_workers=4,
        use_go_list=False,
    )


@pytest.fixture
def empty_credentials():
    return CredentialStore()


class FakeResponse:
    """Minimal stand-in for a streamed requests.Response."""

    def __init__(self, status_code=200, body=b"", json_data=None):
        self.status_code = status_code
        self._body = body
        self._json = json_data

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def json(self):
        if self._json is None:
            return json.loads(self._body.decode("utf-8"))
        return self._json

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def write_module_project(tmp_path):
    """
    Write a go.mod / go.sum pair into a fresh directory.

    Returns:
        callable: (go_mod_text, go_sum_text) -> directory path (str).
    """

    def _write(go_mod_text, go_sum_text=""):
        project = tmp_path / "project"
        project.mkdir(exist_ok=True)
        (project / "go.mod").write_text(go_mod_text, encoding="utf-8")
        (project / "go.sum").write_text(go_sum_text, encoding="utf-8")
        return str(project)

    return _write


@pytest.fixture
def chdir_tmp(tmp_path):
    """Run the test with tmp_path as the working directory."""
    previous = os.getcwd()
    os.chdir(tmp_path)
    try:
        yield tmp_path
    finally:
        os.chdir(previous)

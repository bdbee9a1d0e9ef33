from pathlib import Path
import logging
import sys

from _pytest.monkeypatch import MonkeyPatch
import pytest

pytest_plugins = [
    "tests._plugins.pytest_ruthless",
]


# Ensure repo root is importable as a package root (for `moonfrp.*`).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tests._utils.frp import FakeSystemd  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _session_env(tmp_path_factory: pytest.TempPathFactory) -> None:
    """
    Session-level hermetic env that does not depend on the function-scoped
    `monkeypatch` fixture (avoids ScopeMismatch).
    """
    home = tmp_path_factory.mktemp("home")
    mp = MonkeyPatch()
    mp.setenv("HOME", str(home))
    mp.setenv("PYTHONHASHSEED", "0")
    try:
        yield
    finally:
        mp.undo()


@pytest.fixture(autouse=True)
def hermetic_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Autouse: each test runs in its own tmp cwd with MoonFRP dirs inside tmp.
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / ".cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    monkeypatch.setenv("MOONFRP_SETTINGS", str(tmp_path / "moonfrp.toml"))
    monkeypatch.setenv("MOONFRP_CONFIG_DIR", str(tmp_path / "etc" / "frp"))
    monkeypatch.setenv("MOONFRP_DATA_DIR", str(tmp_path / "moonfrp"))
    monkeypatch.setenv("MOONFRP_FRP_DIR", str(tmp_path / "opt" / "frp"))
    for name in ("STATUS_CACHE_TTL", "MOONFRP_STATUS_TTL", "MOONFRP_SYSTEMCTL"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture(autouse=True)
def _reset_moonfrp_logger():
    """Drop handlers so each test's log dir gets its own file handler."""
    yield
    logger = logging.getLogger("moonfrp")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    path = tmp_path / "etc" / "frp"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def fake_systemd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeSystemd:
    fake = FakeSystemd(tmp_path)
    monkeypatch.setenv("MOONFRP_SYSTEMCTL", str(fake.path))
    return fake

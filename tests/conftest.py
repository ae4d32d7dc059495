from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


# Ensure src/ is on sys.path so `import respawn_console` works without installation.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


def _purge_app_modules() -> None:
    for mod in list(sys.modules):
        if mod.startswith("respawn_console.app"):
            sys.modules.pop(mod, None)


@pytest.fixture(autouse=True)
def app_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    # Keep tests hermetic: avoid writing to the real user home.
    home = tmp_path / "respawn-console-home"
    home.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("RESPAWN_CONSOLE_HOME", str(home))

    # Force a clean import so module-level constants pick up the env var above.
    _purge_app_modules()
    return home


@pytest.fixture
def client(app_home: Path):
    from fakes import FakeSessionPort, StubIdleChecker
    from respawn_console.app.main import app
    from respawn_console.app.services.event_bus import EventBus
    from respawn_console.app.services.respawn_service import RespawnService

    with TestClient(app) as test_client:
        # Swap in a service that talks to a fake terminal instead of tmux
        port = FakeSessionPort()
        app.state.respawn_service = RespawnService(port=port, checker=StubIdleChecker(), events=EventBus())
        app.state.context_limits_service._port = port
        test_client.port = port
        yield test_client

import pytest

from studio import ratelimit, sessions
from studio import main as main_mod


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path):
    sessions.set_store(sessions.FileSessionStore(tmp_path / "sessions"))
    main_mod.workspaces.clear()
    ratelimit._reset()
    yield
    sessions.set_store(None)
    main_mod.workspaces.clear()
    ratelimit._reset()

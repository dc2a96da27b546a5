import os
import pathlib as pl
import typing as tp

import pytest

from ccm_bridge import bridge
from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import execution
from ccm_bridge.utils import types as ttypes

mockdir = pl.Path(__file__).parent / "mocks"
os.environ["PATH"] = f"{mockdir}:{os.environ['PATH']}"


class FakeBackend(execution.ExecutionBackend):
    """Execution backend answering `ccm` commands from scripted responses.

    Responses are matched by the leading arguments of the command (without the `ccm` executable).
    Queued responses are consumed in order, the last one is repeated. An exception instance is
    raised instead of being returned.
    """

    def __init__(self) -> None:
        self.calls: list[ttypes.Argv] = []
        self.responses: dict[tuple[str, ...], list[str | Exception]] = {}
        self.closed = False

    def add_response(self, args: ttypes.Argv, *outputs: str | Exception) -> None:
        self.responses.setdefault(tuple(args), []).extend(outputs)

    def _get_response(self, args: tuple[str, ...]) -> str | Exception:
        for length in range(len(args), 0, -1):
            queue = self.responses.get(args[:length])
            if queue:
                return queue.pop(0) if len(queue) > 1 else queue[0]
        return ""

    def run(self, argv: ttypes.Argv) -> str:
        self.calls.append(list(argv))
        response = self._get_response(tuple(argv[1:]))
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True

    @property
    def commands(self) -> list[ttypes.Argv]:
        """Return arguments of all the commands run so far, without the `ccm` executable."""
        return [c[1:] for c in self.calls]

    def count(self, command: str) -> int:
        return sum(1 for c in self.commands if c and c[0] == command)


class RecordingBackend(execution.ExecutionBackend):
    """Pass commands to another backend and record them."""

    def __init__(self, backend: execution.ExecutionBackend) -> None:
        self.backend = backend
        self.calls: list[ttypes.Argv] = []

    def run(self, argv: ttypes.Argv) -> str:
        self.calls.append(list(argv))
        return self.backend.run(argv)

    def close(self) -> None:
        self.backend.close()

    def count(self, command: str) -> int:
        return sum(1 for c in self.calls if len(c) > 1 and c[1] == command)


@pytest.fixture
def fast_config() -> bridge_config.BridgeConfig:
    """Return configuration of local bridge that doesn't wait between status checks."""
    return bridge_config.BridgeConfig(
        cassandra_version="3.4",
        use_git=False,
        use_dse=False,
        cluster_prefix="test",
        deployment_type=bridge_config.DeploymentType.LOCAL,
        host="127.0.0.1",
        workdir="",
        status_attempts=3,
        status_delay=0,
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_bridge(
    fast_config: bridge_config.BridgeConfig, fake_backend: FakeBackend
) -> tp.Generator[bridge.Bridge, None, None]:
    with bridge.Bridge(fast_config, backend=fake_backend) as ccm_bridge:
        yield ccm_bridge


@pytest.fixture
def ccm_mock_dir(tmp_path: pl.Path, monkeypatch: pytest.MonkeyPatch) -> pl.Path:
    """Set state directory of the mock `ccm` tool."""
    state_dir = tmp_path / "ccm_mock"
    state_dir.mkdir()
    monkeypatch.setenv("CCM_MOCK_DIR", str(state_dir))
    return state_dir


@pytest.fixture
def mock_bridge(
    fast_config: bridge_config.BridgeConfig, ccm_mock_dir: pl.Path
) -> tp.Generator[bridge.Bridge, None, None]:
    """Return bridge running the mock `ccm` tool through the local backend."""
    backend = RecordingBackend(execution.LocalBackend())
    with bridge.Bridge(fast_config, backend=backend) as ccm_bridge:
        yield ccm_bridge

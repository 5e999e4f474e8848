"""Shared test fixtures for devcontainer-cli.

Provides:
- project_dir: empty temporary project directory
- github: in-memory stand-in for the GitHub API and raw content hosts
- make_session: InteractiveSession wired to scripted input
"""

import io

import httpx
import pytest
from rich.console import Console

from devcontainer_cli import InteractiveSession


class FakeGitHub:
    """Serve the contents listing and raw template files over httpx.MockTransport.

    Template bodies are "<label>:<file>" so tests can tell which image a file came from.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.catalog = [
            {"name": "go", "type": "dir"},
            {"name": "python", "type": "dir"},
            {"name": "README.md", "type": "file"},
            {"name": "universal", "type": "dir"},
        ]
        self.catalog_status = 200
        self.catalog_unreachable = False
        self.missing: set[tuple[str, str]] = set()
        self.unreachable_labels: set[str] = set()

    def fail(self, label: str = "*", file_name: str = "*"):
        self.missing.add((label, file_name))

    def _is_missing(self, label: str, file_name: str) -> bool:
        return bool({(label, file_name), (label, "*"), ("*", file_name), ("*", "*")} & self.missing)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "api.github.com":
            if self.catalog_unreachable:
                raise httpx.ConnectError("network unreachable", request=request)
            if self.catalog_status != 200:
                return httpx.Response(self.catalog_status, text="rate limited")
            return httpx.Response(200, json=self.catalog)

        parts = request.url.path.split("/")
        label, file_name = parts[-3], parts[-1]
        if label in self.unreachable_labels:
            raise httpx.ConnectError("connection refused", request=request)
        if self._is_missing(label, file_name):
            return httpx.Response(404, text="404: Not Found")
        return httpx.Response(200, content=f"{label}:{file_name}".encode())

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    @property
    def api_requests(self) -> list[str]:
        return [str(r.url) for r in self.requests if r.url.host == "api.github.com"]

    @property
    def template_requests(self) -> list[str]:
        return [str(r.url) for r in self.requests if r.url.host != "api.github.com"]


@pytest.fixture
def project_dir(tmp_path):
    """Create an empty project directory and return its Path."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def make_session():
    """Build an InteractiveSession reading the given text and printing to a buffer."""

    def _make(answers: str = ""):
        output = io.StringIO()
        session = InteractiveSession(Console(file=output, width=200), stream=io.StringIO(answers))
        session.output = output
        return session

    return _make

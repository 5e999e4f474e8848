#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "typer",
#     "rich",
#     "httpx",
#     "truststore",
# ]
# ///
"""
Devcontainer CLI - Scaffold .devcontainer files for an existing project

Usage:
    uvx --from devcontainer-cli devcontainer-init
    uvx --from devcontainer-cli devcontainer-init --gitignore

Or install globally:
    uv tool install devcontainer-cli
    devcontainer-init
"""

import json
import re
import os
import subprocess
import sys
from pathlib import Path
from typing import Callable, TextIO

import typer
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

import ssl
import truststore

ssl_context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

def _github_token() -> str | None:
    """Return sanitized GitHub token from the environment or None."""
    return ((os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN") or "").strip()) or None

def _github_auth_headers() -> dict:
    """Return Authorization header dict only when a non-empty token exists."""
    token = _github_token()
    return {"Authorization": f"Bearer {token}"} if token else {}

# Constants
GITHUB_BASE_URL = "https://raw.githubusercontent.com/devcontainers/images/main/src"
GITHUB_API_URL = "https://api.github.com/repos/devcontainers/images/contents/src"

# Requests block until the server answers
REQUEST_TIMEOUT = None

DEVCONTAINER_DIRNAME = ".devcontainer"
DEVCONTAINER_FILES = ("Dockerfile", "devcontainer.json")
GITIGNORE_FILENAME = ".gitignore"

UNIVERSAL = "universal"
FALLBACK_PROJECT_TYPES = (
    "anaconda",
    "base-alpine",
    "base-debian",
    "base-ubuntu",
    "cpp",
    "dotnet",
    "go",
    "java",
    "javascript-node",
    "jekyll",
    "miniconda",
    "php",
    "python",
    "ruby",
    "rust",
    "typescript-node",
    "universal",
)

# Marker files checked in order; the first hit decides the project type.
# package.json and the Java build files need a closer look and are handled
# separately in detect_project_type.
PYTHON_MARKERS = ("requirements.txt", "setup.py")
NODE_MANIFEST = "package.json"
JAVA_MARKERS = ("pom.xml", "build.gradle")
JAVA_VERSION_FILE_PREFIX = "system.properties"
JAVA_8_MARKER = "java.runtime.version=1.8"
LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")
SIMPLE_MARKERS = [
    (("Gemfile",), "ruby"),
    (("Cargo.toml",), "rust"),
]
LATE_MARKERS = [
    (("go.mod",), "go"),
    (("composer.json",), "php"),
    (("environment.yml",), "anaconda"),
    (("conda-env.yml",), "miniconda"),
    (("CMakeLists.txt", "Makefile"), "cpp"),
    ((".csproj", ".fsproj", ".vbproj"), "dotnet"),
    (("_config.yml",), "jekyll"),
]

TAGLINE = "Dev Containers - scaffold a containerized development environment"


class TemplateFetchError(RuntimeError):
    """Raised when a template file cannot be fetched, even from the universal image."""


# Symbol and label style per step status
STEP_STYLES = {
    "pending": ("[green dim]○[/green dim]", "bright_black"),
    "running": ("[cyan]○[/cyan]", "white"),
    "done": ("[green]●[/green]", "white"),
    "error": ("[red]●[/red]", "white"),
    "skipped": ("[yellow]○[/yellow]", "white"),
}


class StepTracker:
    """Record the steps of a devcontainer run and render them as a rich tree.

    Steps are keyed by name; updating an unknown key appends it, so per-file
    fetch steps can be reported without being declared up front.
    """
    def __init__(self, title: str):
        self.title = title
        self.steps = []  # list of dicts: {key, label, status, detail}

    def add(self, key: str, label: str):
        if key not in [s["key"] for s in self.steps]:
            self.steps.append({"key": key, "label": label, "status": "pending", "detail": ""})

    def start(self, key: str, detail: str = ""):
        self._update(key, status="running", detail=detail)

    def complete(self, key: str, detail: str = ""):
        self._update(key, status="done", detail=detail)

    def error(self, key: str, detail: str = ""):
        self._update(key, status="error", detail=detail)

    def skip(self, key: str, detail: str = ""):
        self._update(key, status="skipped", detail=detail)

    def _update(self, key: str, status: str, detail: str):
        for s in self.steps:
            if s["key"] == key:
                s["status"] = status
                if detail:
                    s["detail"] = detail
                return
        self.steps.append({"key": key, "label": key, "status": status, "detail": detail})

    def summary(self) -> str:
        """Count steps per status, e.g. "5 done, 2 skipped"."""
        counts = {}
        for s in self.steps:
            counts[s["status"]] = counts.get(s["status"], 0) + 1
        return ", ".join(f"{counts[status]} {status}" for status in STEP_STYLES if status in counts)

    def render(self):
        tree = Tree(f"[cyan]{self.title}[/cyan] [bright_black]({self.summary()})[/bright_black]", guide_style="grey50")
        for step in self.steps:
            symbol, style = STEP_STYLES.get(step["status"], (" ", "white"))
            detail_text = step["detail"].strip() if step["detail"] else ""
            line = f"{symbol} [{style}]{step['label']}[/{style}]"
            if detail_text:
                line += f" [bright_black]({detail_text})[/bright_black]"
            tree.add(line)
        return tree


console = Console()


class InteractiveSession:
    """Console output plus the line-oriented input stream used for prompts.

    With no stream, answers are read from stdin through the console.
    """
    def __init__(self, console: Console | None = None, stream: TextIO | None = None):
        self.console = console or Console()
        self.stream = stream
        self.closed = False

    def ask(self, prompt: str) -> str:
        """Print prompt and read one line. EOF yields an empty string."""
        if self.closed:
            raise RuntimeError("Interactive session is already closed")
        try:
            answer = self.console.input(prompt, stream=self.stream)
        except EOFError:
            answer = ""
        return answer.strip()

    def confirm(self, question: str) -> bool:
        answer = self.ask(f"{question} (y/n): ")
        return answer.lower().startswith("y")

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self.stream is not None and self.stream is not sys.stdin:
            self.stream.close()


app = typer.Typer(
    name="devcontainer-init",
    help="Scaffold .devcontainer files for the project in the current directory",
    add_completion=False,
)


def detect_project_type(project_path: Path | None = None) -> str:
    """Guess the devcontainer image for a project from its top-level marker files.

    Returns "universal" when nothing matches or package.json cannot be parsed.
    """
    if project_path is None:
        project_path = Path.cwd()

    def has_any(names) -> bool:
        return any((project_path / name).exists() for name in names)

    if has_any(PYTHON_MARKERS):
        return "python"

    if has_any([NODE_MANIFEST]):
        try:
            package_json = json.loads((project_path / NODE_MANIFEST).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            console.print(f"[yellow]Warning:[/yellow] could not parse {NODE_MANIFEST} ({e}); treating project as {UNIVERSAL}")
            return UNIVERSAL
        dev_dependencies = package_json.get("devDependencies") if isinstance(package_json, dict) else None
        if isinstance(dev_dependencies, dict) and dev_dependencies.get("typescript"):
            return "typescript-node"
        return "javascript-node"

    for names, project_type in SIMPLE_MARKERS:
        if has_any(names):
            return project_type

    if has_any(JAVA_MARKERS):
        version_file = next(
            (p for p in sorted(project_path.iterdir()) if p.name.startswith(JAVA_VERSION_FILE_PREFIX) and p.is_file()),
            None,
        )
        if version_file is not None:
            content = version_file.read_text(encoding="utf-8", errors="replace")
            if JAVA_8_MARKER in content:
                return "java-8"
        return "java"

    for names, project_type in LATE_MARKERS:
        if has_any(names):
            return project_type

    return UNIVERSAL


def fetch_project_types(*, client: httpx.Client = None, debug: bool = False) -> list[str]:
    """List the image directories published in devcontainers/images.

    Never raises: on any failure the built-in list is returned.
    """
    if client is None:
        with build_client() as owned_client:
            return fetch_project_types(client=owned_client, debug=debug)

    try:
        response = client.get(
            GITHUB_API_URL,
            timeout=REQUEST_TIMEOUT,
            follow_redirects=True,
            headers=_github_auth_headers(),
        )
        status = response.status_code
        if status != 200:
            msg = f"GitHub API returned {status} for {GITHUB_API_URL}"
            if debug:
                msg += f"\nResponse headers: {response.headers}\nBody (truncated 500): {response.text[:500]}"
            raise RuntimeError(msg)
        try:
            entries = response.json()
        except ValueError as je:
            raise RuntimeError(f"Failed to parse contents JSON: {je}\nRaw (truncated 400): {response.text[:400]}") from je
        if not isinstance(entries, list):
            raise RuntimeError(f"Unexpected contents payload: expected a list, got {type(entries).__name__}")
        return [
            entry["name"] for entry in entries
            if isinstance(entry, dict) and entry.get("type") == "dir" and "name" in entry
        ]
    except Exception as e:
        console.print("[red]Error fetching project types from GitHub[/red]")
        console.print(Panel(str(e), title="Fetch Error", border_style="red"))
        return list(FALLBACK_PROJECT_TYPES)


def prompt_for_project_type(project_types: list[str], session: InteractiveSession) -> str:
    """Show the catalog as a numbered list and let the user pick one entry."""
    out = session.console
    out.print("[yellow]Project type could not be automatically determined.[/yellow]")

    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="right")
    table.add_column(style="white", justify="left")
    for index, project_type in enumerate(project_types, start=1):
        table.add_row(f"{index}.", project_type)
    out.print(Panel(table, title="[bold]Please select a project type from the following options[/bold]", border_style="cyan", padding=(1, 2)))

    answer = session.ask("Enter the number of your choice: ")
    # Leading digits count, the rest of the line is ignored ("3abc" is 3)
    match = LEADING_INT_RE.match(answer)
    choice = int(match.group(1)) if match else 0

    if 1 <= choice <= len(project_types):
        return project_types[choice - 1]
    out.print(f"[yellow]Invalid choice. Defaulting to {UNIVERSAL}.[/yellow]")
    return UNIVERSAL


def template_url(project_type: str, file_name: str) -> str:
    return f"{GITHUB_BASE_URL}/{project_type}/{DEVCONTAINER_DIRNAME}/{file_name}"


def fetch_template_file(project_type: str, file_name: str, *, client: httpx.Client = None, debug: bool = False) -> bytes:
    """Download one devcontainer template file.

    The requested image is tried first, then "universal" once. The fallback
    itself is never retried; its failure raises TemplateFetchError.
    """
    if client is None:
        with build_client() as owned_client:
            return fetch_template_file(project_type, file_name, client=owned_client, debug=debug)

    attempts = [project_type] if project_type == UNIVERSAL else [project_type, UNIVERSAL]
    last_error = None
    for label in attempts:
        url = template_url(label, file_name)
        try:
            response = client.get(url, timeout=REQUEST_TIMEOUT, follow_redirects=True)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            last_error = e
            if label != attempts[-1]:
                console.print(f"[yellow]Error fetching {file_name} for {label}. Falling back to {UNIVERSAL}.[/yellow]")
                if debug:
                    console.print(Panel(str(e), title="Fetch Error", border_style="yellow"))

    raise TemplateFetchError(f"Failed to fetch {file_name} for {attempts[-1]}: {last_error}") from last_error


def create_devcontainer(project_path: Path, project_type: str, *, client: httpx.Client = None, tracker: StepTracker | None = None, debug: bool = False) -> Path:
    """Write the devcontainer template files for project_type into project_path/.devcontainer.

    Existing files are overwritten. Files written before a failure are left in place.
    """
    devcontainer_dir = project_path / DEVCONTAINER_DIRNAME
    devcontainer_dir.mkdir(parents=True, exist_ok=True)

    for file_name in DEVCONTAINER_FILES:
        console.print(f"[cyan]Fetching {file_name}...[/cyan]")
        if tracker:
            tracker.start(file_name)
        try:
            content = fetch_template_file(project_type, file_name, client=client, debug=debug)
        except TemplateFetchError as e:
            if tracker:
                tracker.error(file_name, str(e))
            raise
        (devcontainer_dir / file_name).write_bytes(content)
        console.print(f"[green]{file_name} created successfully.[/green]")
        if tracker:
            tracker.complete(file_name, f"{len(content):,} bytes")

    return devcontainer_dir


def _gitignore_has_devcontainer(content: str) -> bool:
    for line in content.splitlines():
        if line.strip().strip("/") == DEVCONTAINER_DIRNAME:
            return True
    return False


def add_to_gitignore(project_path: Path) -> bool:
    """Append .devcontainer to the project's .gitignore unless a line already ignores it.

    Returns True when the file was changed.
    """
    gitignore_path = project_path / GITIGNORE_FILENAME
    content = gitignore_path.read_text(encoding="utf-8", errors="replace") if gitignore_path.exists() else ""

    if _gitignore_has_devcontainer(content):
        console.print(f"[yellow]{DEVCONTAINER_DIRNAME} already in {GITIGNORE_FILENAME}[/yellow]")
        return False

    with gitignore_path.open("a", encoding="utf-8") as fh:
        fh.write(f"\n{DEVCONTAINER_DIRNAME}\n")
    console.print(f"[green]{DEVCONTAINER_DIRNAME} added to {GITIGNORE_FILENAME}[/green]")
    return True


def is_git_repo(path: Path = None) -> bool:
    """Check if the specified path is inside a git work tree."""
    if path is None:
        path = Path.cwd()

    if not path.is_dir():
        return False

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            check=True,
            capture_output=True,
            text=True,
            cwd=path,
        )
    except (subprocess.CalledProcessError, OSError):
        return False
    return result.stdout.strip() == "true"


def run_setup(
    project_path: Path,
    session: InteractiveSession,
    *,
    auto_gitignore: bool = False,
    client: httpx.Client = None,
    repo_probe: Callable[[Path], bool] = is_git_repo,
    debug: bool = False,
) -> bool:
    """Detect, scaffold and optionally update .gitignore for project_path.

    Returns False when a step failed; the error has already been printed.
    The session is always closed on return.
    """
    tracker = StepTracker("Create Dev Container")
    for key, label in [
        ("detect", "Detect project type"),
        ("select", "Select project type"),
        ("Dockerfile", "Fetch Dockerfile"),
        ("devcontainer.json", "Fetch devcontainer.json"),
        ("git", "Check for git repository"),
        ("gitignore", "Update .gitignore"),
        ("final", "Finalize"),
    ]:
        tracker.add(key, label)

    try:
        console.print("[cyan]Detecting project type...[/cyan]")
        tracker.start("detect")
        project_type = detect_project_type(project_path)
        tracker.complete("detect", project_type)

        if project_type == UNIVERSAL:
            tracker.start("select")
            project_types = fetch_project_types(client=client, debug=debug)
            project_type = prompt_for_project_type(project_types, session)
            tracker.complete("select", project_type)
        else:
            tracker.skip("select", "detected automatically")

        console.print(f"Using project type: [green]{project_type}[/green]")

        console.print("[cyan]Creating devcontainer files...[/cyan]")
        create_devcontainer(project_path, project_type, client=client, tracker=tracker, debug=debug)
        console.print("[green]Devcontainer files created successfully![/green]")

        console.print("[cyan]Checking for Git repository...[/cyan]")
        tracker.start("git")
        try:
            in_repo = repo_probe(project_path)
        except Exception as e:
            if debug:
                console.print(Panel(str(e), title="Git Probe Error", border_style="yellow"))
            in_repo = False

        if in_repo:
            tracker.complete("git", "repository detected")
            if auto_gitignore:
                console.print(f"Git repository detected. Adding {DEVCONTAINER_DIRNAME} to {GITIGNORE_FILENAME}...")
                should_update = True
            else:
                should_update = session.confirm(
                    f"Git repository detected. Do you want to add {DEVCONTAINER_DIRNAME} to {GITIGNORE_FILENAME}?"
                )
            if should_update:
                changed = add_to_gitignore(project_path)
                tracker.complete("gitignore", "added" if changed else "already present")
            else:
                tracker.skip("gitignore", "declined")
        else:
            tracker.skip("git", "not a repository")
            tracker.skip("gitignore", "no repository")
            console.print(f"[yellow]No Git repository detected. Skipping {GITIGNORE_FILENAME} update.[/yellow]")

        tracker.complete("final", "devcontainer ready")
    except Exception as e:
        tracker.error("final", str(e))
        console.print(tracker.render())
        console.print(Panel(f"Setup failed: {e}", title="Failure", border_style="red"))
        if debug:
            _env_pairs = [
                ("Python", sys.version.split()[0]),
                ("Platform", sys.platform),
                ("CWD", str(Path.cwd())),
            ]
            _label_width = max(len(k) for k, _ in _env_pairs)
            env_lines = [f"{k.ljust(_label_width)} → [bright_black]{v}[/bright_black]" for k, v in _env_pairs]
            console.print(Panel("\n".join(env_lines), title="Debug Environment", border_style="magenta"))
        return False
    finally:
        session.close()

    console.print(tracker.render())
    console.print("\n[bold green]Setup complete![/bold green] You can now use this project with VS Code Dev Containers.")
    steps_lines = [
        "1. Install the [cyan]Dev Containers[/cyan] extension in VS Code",
        "2. Run [cyan]Dev Containers: Reopen in Container[/cyan] from the command palette",
    ]
    console.print(Panel("\n".join(steps_lines), title="Next Steps", border_style="cyan", padding=(1, 2)))
    return True


def build_client(skip_tls: bool = False) -> httpx.Client:
    """Create the httpx client for a run, verifying TLS with the system trust store."""
    return httpx.Client(verify=False if skip_tls else ssl_context)


@app.command()
def init(
    gitignore: bool = typer.Option(False, "--gitignore", help="Add .devcontainer to .gitignore without asking"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Optional: skip SSL/TLS verification for template downloads (not recommended)"),
    debug: bool = typer.Option(False, "--debug", help="Optional: show verbose diagnostic output for network failures"),
):
    """
    Create .devcontainer/Dockerfile and .devcontainer/devcontainer.json for the current directory.

    This command will:
    1. Detect the project type from marker files (or ask when unsure)
    2. Download the matching templates from devcontainers/images
    3. Offer to add .devcontainer to .gitignore inside a git repository

    Examples:
        devcontainer-init
        devcontainer-init --gitignore

    Only --gitignore changes what is written. --skip-tls and --debug are
    optional extras, and GH_TOKEN or GITHUB_TOKEN (when set) is sent only when
    listing the available project types; template downloads are unauthenticated.
    """
    project_path = Path.cwd()

    setup_lines = [
        f"[cyan]{TAGLINE}[/cyan]",
        "",
        f"{'Project':<15} [green]{project_path.name}[/green]",
        f"{'Working Path':<15} [dim]{project_path}[/dim]",
    ]
    console.print(Panel("\n".join(setup_lines), border_style="cyan", padding=(1, 2)))

    session = InteractiveSession(console)
    with build_client(skip_tls) as client:
        ok = run_setup(
            project_path,
            session,
            auto_gitignore=gitignore,
            client=client,
            repo_probe=is_git_repo,
            debug=debug,
        )
    if not ok:
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()

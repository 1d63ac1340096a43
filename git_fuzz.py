#!/usr/bin/env -S uv run --quiet
# /// script
# requires-python = ">=3.10"
# dependencies = ["textual>=0.50.0"]
# ///
import json
import logging
import os
import subprocess
import sys
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Sequence, Union

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult, SuspendNotSupported
from textual.binding import Binding
from textual.containers import Container, Vertical
from textual.logging import TextualHandler
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Label, Static
from textual.worker import Worker, WorkerState

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration System
# =============================================================================

CONFIG_DIR = Path.home() / ".config" / "git-fuzz"
CONFIG_FILE = CONFIG_DIR / "config.json"


@dataclass
class FuzzConfig:
    """Picker configuration, passed explicitly into :func:`setup`.

    Keymaps use Textual key names (``ctrl+r``, ``f5``...). ``open_keymap``
    reopens the picker from the host screen; the pull, push and fetch keys
    are live while the picker is open and act on the current branch.
    """
    open_keymap: str = "ctrl+o"
    pull_keymap: str = "ctrl+r"
    push_keymap: str = "ctrl+y"
    fetch_keymap: str = "ctrl+t"
    remote: str = "origin"
    include_remote: bool = False
    use_terminal: bool = False
    max_results: int = 10
    log_level: str = "WARNING"

    @classmethod
    def load(cls, path: Path | None = None) -> "FuzzConfig":
        """Load config from disk or return defaults."""
        path = path or CONFIG_FILE
        if not path.exists():
            return cls()
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
            return cls()
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: expected a JSON object", path)
            return cls()
        defaults = cls()
        values = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            # bool is an int subclass, so compare exact types
            if type(value) is not type(getattr(defaults, f.name)):
                logger.warning("Ignoring config %s: %s=%r has the wrong type", path, f.name, value)
                continue
            values[f.name] = value
        return cls(**values)

    def save(self, path: Path | None = None) -> None:
        """Save config to disk."""
        path = path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)


# =============================================================================
# Fuzzy Matching
# =============================================================================

# Added to every local branch so it outranks any remote one.
LOCAL_PRIORITY = 100


@dataclass(frozen=True)
class Candidate:
    name: str
    remote: bool = False

    @property
    def label(self) -> str:
        return f"{self.name} (remote)" if self.remote else self.name


Branch = Union[str, Candidate]


@dataclass
class MatchResult:
    candidate: Branch
    score: int


def candidate_name(candidate: Branch) -> str:
    return candidate.name if isinstance(candidate, Candidate) else candidate


def fuzzy_match(text: str, query: str) -> tuple[bool, int]:
    """Match ``query`` as a case-insensitive subsequence of ``text``.

    Each matched character scores 1, plus 1 when it sits at the same index
    as the number of query characters consumed so far (prefix alignment).
    """
    if query == "":
        return True, 0

    text_lower = text.lower()
    query_lower = query.lower()
    score = 0
    cursor = 0

    for i, ch in enumerate(text_lower):
        if cursor < len(query_lower) and ch == query_lower[cursor]:
            score += 1
            if i == cursor:
                score += 1
            cursor += 1

    matched = cursor == len(query_lower)
    return matched, score if matched else 0


def score_candidates(candidates: Sequence[Branch], query: str) -> list[MatchResult]:
    """Score every candidate against the query, best first.

    The sort is stable, so equal scores keep their input order.
    """
    results = []
    for candidate in candidates:
        matched, score = fuzzy_match(candidate_name(candidate), query)
        if not matched:
            continue
        if isinstance(candidate, Candidate) and not candidate.remote:
            score += LOCAL_PRIORITY
        results.append(MatchResult(candidate, score))
    return sorted(results, key=lambda r: -r.score)


def filter_branches(candidates: Sequence[Branch], query: str) -> list[Branch]:
    return [r.candidate for r in score_candidates(candidates, query)]


# =============================================================================
# Git Commands
# =============================================================================

class GitOp(Enum):
    SWITCH = "switch"
    CREATE = "create"
    TRACK = "track"
    PULL = "pull"
    PUSH = "push"
    FETCH = "fetch"


NETWORK_OPS = (GitOp.PULL, GitOp.PUSH, GitOp.FETCH)


@dataclass(frozen=True)
class GitCommand:
    op: GitOp
    branch: str | None = None
    remote: str = "origin"

    def argv(self) -> list[str]:
        """Arguments for ``git``; never passed through a shell."""
        if self.op == GitOp.SWITCH:
            return ["switch", self.branch]
        if self.op == GitOp.CREATE:
            return ["switch", "-c", self.branch]
        if self.op == GitOp.TRACK:
            return ["switch", "--track", f"{self.remote}/{self.branch}"]
        if self.op == GitOp.FETCH:
            return ["fetch", self.remote]
        return [self.op.value, self.remote, self.branch]

    @property
    def verb(self) -> str:
        if self.op in (GitOp.CREATE, GitOp.TRACK):
            return GitOp.SWITCH.value
        return self.op.value

    def describe(self) -> str:
        if self.op == GitOp.PULL:
            return f"Pulled from {self.remote}/{self.branch}"
        if self.op == GitOp.PUSH:
            return f"Pushed to {self.remote}/{self.branch}"
        if self.op == GitOp.FETCH:
            return f"Fetched {self.remote}"
        return f"Switched to branch: {self.branch}"


@dataclass
class GitResult:
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> list[str]:
        return [line for line in self.output.splitlines() if line.strip()]

    def message(self) -> str:
        """Most useful line of the output, for error notifications."""
        lines = self.lines()
        for line in lines:
            if line.startswith(("fatal:", "error:", "warning:")):
                return line
        return lines[-1] if lines else "Unknown error"


def run_git(args: list[str], cwd: Path, timeout: int = 30) -> GitResult:
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    # No TTY is available to git while the TUI owns the screen.
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        result = subprocess.run(
            ["git"] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        logger.warning("git %s timed out after %ss", args[0], timeout)
        return GitResult(124, f"Command timed out after {timeout}s")
    except FileNotFoundError:
        logger.warning("git executable not found")
        return GitResult(127, "git executable not found")

    if result.returncode == 0:
        return GitResult(0, result.stdout.strip())
    # git writes errors to stderr; some commands only say why on stdout
    output = result.stderr.strip() or result.stdout.strip()
    logger.warning("git %s exited %d: %s", args[0], result.returncode, output)
    return GitResult(result.returncode, output)


def run_command(command: GitCommand, cwd: Path) -> GitResult:
    return run_git(command.argv(), cwd)


def run_command_in_terminal(command: GitCommand, cwd: Path) -> GitResult:
    """Run with inherited stdio so git's credential agent can prompt."""
    logger.debug("git %s in terminal (cwd=%s)", " ".join(command.argv()), cwd)
    try:
        proc = subprocess.run(["git"] + command.argv(), cwd=cwd)
    except FileNotFoundError:
        return GitResult(127, "git executable not found")
    return GitResult(proc.returncode, "" if proc.returncode == 0 else f"git exited with code {proc.returncode}")


def get_current_branch(cwd: Path) -> str | None:
    result = run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    if result.ok:
        return result.output
    # Unborn branch in a repository without commits
    result = run_git(["symbolic-ref", "--short", "HEAD"], cwd)
    return result.output if result.ok else None


def list_local_branches(cwd: Path) -> tuple[GitResult, list[str]]:
    result = run_git(["branch", "--format=%(refname:short)"], cwd)
    return result, result.lines() if result.ok else []


def list_remote_branches(cwd: Path) -> tuple[GitResult, list[str]]:
    result = run_git(["branch", "-r", "--format=%(refname:short)"], cwd)
    if not result.ok:
        return result, []
    # Symbolic refs show up as "origin/HEAD" or a bare "origin"
    branches = [b for b in result.lines() if "/" in b and not b.endswith("/HEAD")]
    return result, branches


def list_candidates(cwd: Path, include_remote: bool = False) -> tuple[GitResult, list[Candidate]]:
    """Local branches first, then remote branches with no local counterpart."""
    result, local = list_local_branches(cwd)
    candidates = [Candidate(name) for name in local]
    if not include_remote or not result.ok:
        return result, candidates

    remote_result, remote = list_remote_branches(cwd)
    if not remote_result.ok:
        return result, candidates
    local_names = set(local)
    for name in remote:
        if name.split("/", 1)[1] not in local_names:
            candidates.append(Candidate(name, remote=True))
    return result, candidates


def resolve_switch(text: str, candidates: Sequence[Branch], remote: str = "origin") -> GitCommand:
    """Pick switch, track or create for the branch name the user confirmed."""
    local = {candidate_name(c) for c in candidates if not (isinstance(c, Candidate) and c.remote)}
    remote_names = {c.name for c in candidates if isinstance(c, Candidate) and c.remote}

    if text in local:
        return GitCommand(GitOp.SWITCH, text, remote)
    if text in remote_names:
        remote_name, short = text.split("/", 1)
        if short in local:
            return GitCommand(GitOp.SWITCH, short, remote_name)
        return GitCommand(GitOp.TRACK, short, remote_name)
    return GitCommand(GitOp.CREATE, text, remote)


# =============================================================================
# Picker State Machine
# =============================================================================

class PickerState(Enum):
    IDLE = "idle"
    EDITING = "editing"
    CLOSED = "closed"


@dataclass
class TextChanged:
    text: str


@dataclass
class Navigate:
    delta: int


@dataclass
class Complete:
    pass


@dataclass
class Confirm:
    pass


@dataclass
class Cancel:
    pass


@dataclass
class RemoteAction:
    op: GitOp


PickerEvent = Union[TextChanged, Navigate, Complete, Confirm, Cancel, RemoteAction]


@dataclass
class Outcome:
    command: GitCommand | None = None
    warning: str | None = None


def render_lines(candidates: Sequence[Branch], query: str, selected: int) -> list[str]:
    """Display rows for the results list, with the selected row marked."""
    lines = []
    for i, candidate in enumerate(filter_branches(candidates, query)):
        prefix = "> " if i == selected else "  "
        label = candidate.label if isinstance(candidate, Candidate) else candidate
        lines.append(prefix + label)
    if not lines:
        return ["  (new branch)"]
    return lines


@dataclass
class Picker:
    """Input handling for one branch picker, independent of any widget."""
    candidates: list[Branch]
    current_branch: str
    remote: str = "origin"
    state: PickerState = PickerState.IDLE
    query: str = ""
    selected: int = 0
    filtered: list[Branch] = field(default_factory=list)

    def open(self) -> None:
        self.state = PickerState.EDITING
        self.query = self.current_branch
        self.selected = 0
        self.filtered = filter_branches(self.candidates, self.query)

    @property
    def is_open(self) -> bool:
        return self.state == PickerState.EDITING

    @property
    def highlighted(self) -> Branch | None:
        if not self.filtered:
            return None
        return self.filtered[self.selected]

    def lines(self) -> list[str]:
        return render_lines(self.candidates, self.query, self.selected)

    def handle(self, event: PickerEvent) -> Outcome:
        if self.state != PickerState.EDITING:
            return Outcome()

        outcome = Outcome()
        if isinstance(event, TextChanged):
            self.query = event.text
            self.selected = 0
            self.filtered = filter_branches(self.candidates, self.query)
        elif isinstance(event, Navigate):
            if self.filtered:
                self.selected = (self.selected + event.delta) % len(self.filtered)
        elif isinstance(event, Complete):
            if self.highlighted is not None:
                self.query = candidate_name(self.highlighted)
                self.filtered = filter_branches(self.candidates, self.query)
        elif isinstance(event, Confirm):
            text = self.query.strip()
            if text == "":
                return Outcome(warning="Branch name cannot be empty")
            self.state = PickerState.CLOSED
            outcome = Outcome(resolve_switch(text, self.candidates, self.remote))
        elif isinstance(event, Cancel):
            self.state = PickerState.CLOSED
        elif isinstance(event, RemoteAction):
            self.state = PickerState.CLOSED
            branch = None if event.op == GitOp.FETCH else self.current_branch
            outcome = Outcome(GitCommand(event.op, branch, self.remote))

        if self.selected >= len(self.filtered):
            self.selected = max(0, len(self.filtered) - 1)
        return outcome


# =============================================================================
# Textual Front End
# =============================================================================

class BranchPickerScreen(ModalScreen[GitCommand | None]):
    BINDINGS = [
        Binding("escape", "cancel", "Cancel", priority=True),
        Binding("ctrl+c", "cancel", "Cancel", show=False, priority=True),
        Binding("down", "navigate(1)", "Next", show=False),
        Binding("ctrl+n", "navigate(1)", "Next", show=False),
        Binding("up", "navigate(-1)", "Previous", show=False),
        Binding("ctrl+p", "navigate(-1)", "Previous", show=False),
        Binding("tab", "complete", "Complete", priority=True),
        # Emacs-style cursor motion; ctrl+a/e/k come with Input
        Binding("ctrl+f", "cursor_right", show=False, priority=True),
        Binding("ctrl+b", "cursor_left", show=False, priority=True),
    ]

    def __init__(self, picker: Picker, config: FuzzConfig) -> None:
        super().__init__()
        self.picker = picker
        self.config = config
        self.remote_keys = {
            config.pull_keymap: GitOp.PULL,
            config.push_keymap: GitOp.PUSH,
            config.fetch_keymap: GitOp.FETCH,
        }

    def compose(self) -> ComposeResult:
        with Vertical(id="picker"):
            yield Static(f"  {self.picker.current_branch}", id="current-branch")
            yield Input(value=self.picker.query, id="branch-input")
            yield Static("", id="results")

    def on_mount(self) -> None:
        self.query_one("#current-branch", Static).border_title = "Current Branch"
        self.query_one("#results", Static).border_title = "Branches"
        branch_input = self.query_one("#branch-input", Input)
        branch_input.border_title = "Switch Branch"
        branch_input.focus()
        branch_input.action_end()
        self.update_results()

    def update_results(self) -> None:
        results = self.query_one("#results", Static)
        lines = self.picker.lines()
        text = Text()
        for i, line in enumerate(lines):
            if i:
                text.append("\n")
            style = "bold reverse" if self.picker.filtered and i == self.picker.selected else ""
            text.append(line, style=style)
        results.update(text)
        results.styles.height = max(1, min(self.config.max_results, len(lines))) + 2

    def send(self, event: PickerEvent) -> None:
        # Late input events can still arrive after dismissal
        if self.picker.is_open:
            self.finish(self.picker.handle(event))

    def finish(self, outcome: Outcome) -> None:
        if outcome.warning:
            self.notify(outcome.warning, severity="warning")
        if not self.picker.is_open:
            self.dismiss(outcome.command)
        else:
            self.update_results()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "branch-input":
            self.send(TextChanged(event.value))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "branch-input":
            self.picker.query = event.value
            self.send(Confirm())

    def on_key(self, event: events.Key) -> None:
        op = self.remote_keys.get(event.key)
        if op is None:
            return
        event.stop()
        event.prevent_default()
        self.send(RemoteAction(op))

    def action_cancel(self) -> None:
        self.send(Cancel())

    def action_navigate(self, delta: int) -> None:
        self.send(Navigate(delta))

    def action_complete(self) -> None:
        if not self.picker.is_open:
            return
        self.picker.handle(Complete())
        branch_input = self.query_one("#branch-input", Input)
        branch_input.value = self.picker.query
        branch_input.action_end()
        self.update_results()

    def action_cursor_right(self) -> None:
        self.query_one("#branch-input", Input).action_cursor_right()

    def action_cursor_left(self) -> None:
        self.query_one("#branch-input", Input).action_cursor_left()


class BranchPickerApp(App):
    ENABLE_COMMAND_PALETTE = False  # ctrl+p navigates the picker

    CSS = """
    Screen {
        background: $surface;
    }

    #host-info {
        padding: 1 2;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        padding: 0 1;
        background: $primary-background;
    }

    BranchPickerScreen {
        align: center middle;
    }

    #picker {
        width: 54;
        height: auto;
    }

    #current-branch, #results {
        width: 100%;
        border: round $accent;
        padding: 0 1;
    }

    #current-branch {
        height: 3;
        margin-bottom: 1;
    }

    #branch-input {
        border: round $accent;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, config: FuzzConfig, cwd: Path) -> None:
        super().__init__()
        self.config = config
        self.cwd = cwd
        self.current_branch: str | None = None
        self.picker_open: bool = False
        self.last_report: tuple[GitCommand, GitResult] | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Container(id="host"):
            yield Static("", id="host-info")
        yield Label("", id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.title = "Git Branch Switcher"
        self.sub_title = str(self.cwd)
        self.action_open_picker()

    def refresh_host(self) -> None:
        self.current_branch = get_current_branch(self.cwd)
        info = self.query_one("#host-info", Static)
        branch = self.current_branch or "[red]not a git repository[/red]"
        info.update(
            f"[bold]Repository:[/bold] {self.cwd}\n"
            f"[bold]Branch:[/bold]     {branch}"
        )
        self.query_one("#status-bar", Label).update(
            f"{self.config.open_keymap}: switch branch | q: quit"
        )

    def action_open_picker(self) -> None:
        """Read branches fresh and show the picker."""
        if self.picker_open:
            return
        self.refresh_host()
        if self.current_branch is None:
            self.notify("Not in a git repository", severity="error")
            return

        result, candidates = list_candidates(self.cwd, self.config.include_remote)
        if not result.ok:
            self.notify(f"Could not list branches: {result.message()}", severity="error")
        picker = Picker(candidates, self.current_branch, self.config.remote)
        picker.open()
        self.picker_open = True
        self.push_screen(BranchPickerScreen(picker, self.config), self._on_picker_closed)

    def _on_picker_closed(self, command: GitCommand | None) -> None:
        self.picker_open = False
        if command is not None:
            self.execute(command)

    def execute(self, command: GitCommand) -> None:
        if command.op not in NETWORK_OPS:
            self.report(command, run_command(command, self.cwd))
            return

        if self.config.use_terminal:
            try:
                with self.suspend():
                    result = run_command_in_terminal(command, self.cwd)
            except SuspendNotSupported:
                logger.warning("Terminal suspend not supported, running git %s captured", command.verb)
            else:
                self.report(command, result)
                return

        self.notify(f"Running git {command.verb}...", timeout=2)
        self.run_worker(
            partial(self._network_worker, command), thread=True, name="_network_worker"
        )

    def _network_worker(self, command: GitCommand) -> tuple[GitCommand, GitResult]:
        return command, run_command(command, self.cwd)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        if event.worker.name != "_network_worker":
            return
        if event.state == WorkerState.SUCCESS:
            command, result = event.worker.result
            self.report(command, result)
        elif event.state == WorkerState.ERROR:
            self.notify(f"Git command failed: {event.worker.error}", severity="error")

    def report(self, command: GitCommand, result: GitResult) -> None:
        self.last_report = (command, result)
        if result.ok:
            self.notify(command.describe(), severity="information")
        else:
            self.notify(f"Git {command.verb} failed: {result.message()}", severity="error")
        self.refresh_host()

    def on_key(self, event: events.Key) -> None:
        if event.key == self.config.open_keymap and not self.picker_open:
            event.stop()
            self.action_open_picker()

    def action_help_quit(self) -> None:
        """Override Textual's default ctrl+c handler so it cancels the picker first."""
        if isinstance(self.screen, BranchPickerScreen):
            self.screen.action_cancel()
        else:
            self.exit()


def setup(config: FuzzConfig | None = None, cwd: Path | None = None) -> BranchPickerApp:
    """Build the picker app from an explicit configuration."""
    return BranchPickerApp(config or FuzzConfig(), (cwd or Path(".")).resolve())


def main():
    repo_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(".")
    config = FuzzConfig.load()
    logging.basicConfig(level=config.log_level.upper(), handlers=[TextualHandler()])
    app = setup(config, repo_dir)
    app.run()


if __name__ == "__main__":
    main()

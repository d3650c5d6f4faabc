"""User decision points requested by the session phases."""

from typing import List, Optional

import click
from rich.console import Console

from workstation.errors import ValidationError
from workstation.models import ChangesSummary, CommitDecision


class SessionPrompts:
    """Answers the credential, selection and commit questions a phase may raise."""

    def ask_password(self, prompt: str) -> str:
        raise NotImplementedError

    def choose_repository(self, repositories: List[str]) -> str:
        raise NotImplementedError

    def decide_commit(self, summary: ChangesSummary) -> Optional[CommitDecision]:
        raise NotImplementedError


class ClickPrompts(SessionPrompts):
    """Terminal prompts built on click."""

    def __init__(self, console: Console):
        self.console = console

    def ask_password(self, prompt: str) -> str:
        return click.prompt(prompt, hide_input=True)

    def choose_repository(self, repositories: List[str]) -> str:
        if not repositories:
            raise ValidationError("No repositories found. Pass --repo explicitly.")
        for index, name in enumerate(repositories, start=1):
            self.console.print(f"  [bold]{index}[/bold]. {name}")
        choice = click.prompt(
            "Repository",
            type=click.IntRange(1, len(repositories)),
            default=1,
        )
        return repositories[choice - 1]

    def decide_commit(self, summary: ChangesSummary) -> Optional[CommitDecision]:
        self.console.print(
            f"[yellow]{len(summary.changes)} uncommitted change(s) on branch "
            f"{summary.branch} in {summary.repo_path}:[/yellow]"
        )
        for line in summary.changes[:20]:
            self.console.print(f"  {line}", markup=False, highlight=False)
        if len(summary.changes) > 20:
            self.console.print(f"  ... and {len(summary.changes) - 20} more")
        if summary.head_moved:
            self.console.print(
                f"[dim]HEAD moved from {summary.baseline_commit[:8]} to "
                f"{summary.head_commit[:8]} during the session.[/dim]"
            )

        if not click.confirm("Commit these changes?", default=False):
            return None
        message = click.prompt("Commit message")
        push = click.confirm(f"Push to {summary.origin_url or 'origin'}?", default=True)
        return CommitDecision(message=message, push=push)


class StaticPrompts(SessionPrompts):
    """Pre-answered prompts for non-interactive runs."""

    def __init__(
        self,
        password: Optional[str] = None,
        repository: Optional[str] = None,
        decision: Optional[CommitDecision] = None,
    ):
        self.password = password
        self.repository = repository
        self.decision = decision

    def ask_password(self, prompt: str) -> str:
        if self.password is None:
            raise ValidationError(f"{prompt} is required but no password was provided.")
        return self.password

    def choose_repository(self, repositories: List[str]) -> str:
        if self.repository is None:
            raise ValidationError("A repository must be selected with --repo.")
        return self.repository

    def decide_commit(self, summary: ChangesSummary) -> Optional[CommitDecision]:
        return self.decision

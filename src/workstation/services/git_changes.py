"""Git change detection, commit and push for the session repository."""

import re
import shlex
from datetime import datetime, timezone
from typing import List, Optional

from workstation.errors import GitError, WorkstationError, reclassify
from workstation.errors_catalog import actionable_error
from workstation.models import ChangesSummary, CommitDecision, GitBaseline, Local, Remote
from workstation.services.fallback import FallbackChain, Strategy
from workstation.services.ssh_keys import SshAgent

HTTPS_GITHUB_PATTERN = re.compile(
    r"^https://(?:[^@/]+@)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"
)


def normalize_origin_url(url: str) -> str:
    """Rewrites an HTTPS GitHub remote to its SSH form; other URLs are returned unchanged."""
    match = HTTPS_GITHUB_PATTERN.match(url.strip())
    if not match:
        return url.strip()
    return f"git@github.com:{match.group('owner')}/{match.group('repo')}.git"


def ssh_command(known_hosts: str, private_key: Optional[str] = None) -> str:
    parts = ["ssh"]
    if private_key:
        parts += ["-i", private_key, "-o", "IdentitiesOnly=yes"]
    parts += ["-o", "StrictHostKeyChecking=yes", "-o", f"UserKnownHostsFile={known_hosts}"]
    return shlex.join(parts)


class GitChangeDetector:
    """Inspects a local or remote repository and commits/pushes on request."""

    def __init__(self, logger, console, runner):
        self.logger = logger
        self.console = console
        self.runner = runner

    def git(self, host, repo_path: str, args: List[str], env=None, check: bool = True):
        try:
            return host.run(["git", *args], cwd=repo_path, env=env, check=check)
        except WorkstationError as exc:
            if isinstance(exc, GitError):
                raise
            raise reclassify(exc, GitError, f"git {args[0]} failed in {repo_path}.") from exc

    def capture_baseline(self, host, repo_path: str) -> GitBaseline:
        baseline = GitBaseline(captured_at=datetime.now(timezone.utc).isoformat())
        try:
            baseline.commit = self.git(host, repo_path, ["rev-parse", "HEAD"]).stdout.strip() or None
            status = self.git(host, repo_path, ["status", "--porcelain"]).stdout
            baseline.dirty = bool(status.strip())
        except WorkstationError as exc:
            self.logger.warning("Could not capture git baseline for %s: %s", repo_path, exc)
        return baseline

    def inspect(self, host, repo_path: str, baseline: Optional[GitBaseline] = None) -> ChangesSummary:
        status = self.git(host, repo_path, ["status", "--porcelain"]).stdout
        branch = self.git(host, repo_path, ["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()
        origin = self.git(host, repo_path, ["remote", "get-url", "origin"], check=False)
        head = self.git(host, repo_path, ["rev-parse", "HEAD"], check=False)
        return ChangesSummary(
            repo_path=repo_path,
            branch=branch,
            origin_url=_stdout_or_none(origin),
            changes=[line for line in status.splitlines() if line.strip()],
            baseline_commit=baseline.commit if baseline else None,
            head_commit=_stdout_or_none(head),
        )

    def commit(self, host, repo_path: str, message: str):
        self.git(host, repo_path, ["add", "-A"])
        self.git(host, repo_path, ["commit", "-m", message])
        self.console.print("[green]Changes committed.[/green]")

    def normalize_origin(self, host, summary: ChangesSummary) -> str:
        if not summary.origin_url:
            raise GitError(f"Repository {summary.repo_path} has no origin remote.")
        normalized = normalize_origin_url(summary.origin_url)
        if normalized != summary.origin_url:
            self.logger.info("Switching origin from %s to %s", summary.origin_url, normalized)
            self.git(host, summary.repo_path, ["remote", "set-url", "origin", normalized])
        return normalized

    def push(self, host, summary: ChangesSummary, private_key: str, known_hosts: str):
        remote_url = self.normalize_origin(host, summary)
        chain = FallbackChain(
            "git push",
            [
                Strategy("ssh-agent", self._push_with_agent),
                Strategy("direct-key", self._push_with_key),
            ],
            self.logger,
            error_cls=GitError,
        )
        try:
            chain.run(host, summary, private_key, known_hosts)
        except GitError as exc:
            raise GitError(
                actionable_error("push_failed", branch=summary.branch, remote=remote_url, path=summary.repo_path),
                command=exc.command,
                output=exc.output,
            ) from exc
        self.console.print(f"[green]Pushed {summary.branch} to {remote_url}.[/green]")

    def _push_with_agent(self, host, summary: ChangesSummary, private_key: str, known_hosts: str):
        location = host.location
        if isinstance(location, Local):
            agent = SshAgent(self.logger, self.runner)
            if not agent.start(private_key):
                raise GitError("ssh-agent is not available.")
            try:
                env = dict(agent.env)
                env["GIT_SSH_COMMAND"] = ssh_command(known_hosts)
                self.git(host, summary.repo_path, ["push", "origin", summary.branch], env=env)
            finally:
                agent.stop()
            return
        if isinstance(location, Remote):
            script = (
                f"cd {shlex.quote(summary.repo_path)} && "
                'eval "$(ssh-agent -s)" >/dev/null && '
                f"ssh-add {shlex.quote(private_key)} 2>/dev/null && "
                f"GIT_SSH_COMMAND={shlex.quote(ssh_command(known_hosts))} "
                f"git push origin {shlex.quote(summary.branch)}; "
                "rc=$?; ssh-agent -k >/dev/null 2>&1; exit $rc"
            )
            try:
                host.run_script(script)
            except WorkstationError as exc:
                raise reclassify(exc, GitError, "git push through ssh-agent failed.") from exc
            return
        raise TypeError(f"Unsupported location: {location!r}")

    def _push_with_key(self, host, summary: ChangesSummary, private_key: str, known_hosts: str):
        env = {"GIT_SSH_COMMAND": ssh_command(known_hosts, private_key=private_key)}
        self.git(host, summary.repo_path, ["push", "origin", summary.branch], env=env)

    def handle_changes(
        self,
        host,
        repo_path: str,
        prompts,
        private_key: str,
        known_hosts: str,
        baseline: Optional[GitBaseline] = None,
    ) -> Optional[CommitDecision]:
        summary = self.inspect(host, repo_path, baseline)
        if not summary.has_changes:
            self.console.print("[green]No uncommitted changes in the repository.[/green]")
            return None

        decision = prompts.decide_commit(summary)
        if decision is None:
            self.console.print("[dim]Leaving changes uncommitted.[/dim]")
            return None

        self.commit(host, repo_path, decision.message)
        if decision.push:
            self.push(host, summary, private_key, known_hosts)
        return decision


def _stdout_or_none(result) -> Optional[str]:
    if result.returncode != 0:
        return None
    return (result.stdout or "").strip() or None

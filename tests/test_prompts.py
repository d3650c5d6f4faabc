import click
import pytest
from click.testing import CliRunner

from workstation.errors import ValidationError
from workstation.models import ChangesSummary, CommitDecision
from workstation.prompts import ClickPrompts, StaticPrompts


def summary():
    return ChangesSummary(
        repo_path="/srv/repos/Foo",
        branch="main",
        origin_url="git@github.com:org/repo.git",
        changes=[" M run.R"],
    )


def run_prompt(console, callback, input_text):
    @click.command()
    def command():
        click.echo(repr(callback(ClickPrompts(console))))

    return CliRunner().invoke(command, [], input=input_text)


def test_click_prompts_choose_repository_by_number(console):
    result = run_prompt(console, lambda prompts: prompts.choose_repository(["Bar", "Foo"]), "2\n")

    assert result.exit_code == 0
    assert "'Foo'" in result.output
    assert any("Bar" in line for line in console.lines)


def test_click_prompts_commit_decision(console):
    result = run_prompt(console, lambda prompts: prompts.decide_commit(summary()), "y\nUpdate analysis\nn\n")

    assert result.exit_code == 0
    assert repr(CommitDecision(message="Update analysis", push=False)) in result.output


def test_click_prompts_declined_commit(console):
    result = run_prompt(console, lambda prompts: prompts.decide_commit(summary()), "n\n")

    assert result.exit_code == 0
    assert "None" in result.output


def test_click_prompts_reject_empty_repository_list(console):
    with pytest.raises(ValidationError, match="No repositories found"):
        ClickPrompts(console).choose_repository([])


def test_static_prompts_require_preset_answers():
    prompts = StaticPrompts()

    with pytest.raises(ValidationError, match="no password was provided"):
        prompts.ask_password("Password for bob@build01")
    with pytest.raises(ValidationError, match="--repo"):
        prompts.choose_repository(["Foo"])
    assert prompts.decide_commit(summary()) is None

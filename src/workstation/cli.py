import logging
import os

import click
from rich.logging import RichHandler

from .core import Workstation, WorkstationError, console
from .models import WorkstationSettings
from .prompts import ClickPrompts, StaticPrompts
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


SESSION_OPTIONS = [
    click.option("--user", required=False, help="Your username; names the container and SSH key."),
    click.option("--repo", required=False, help="Repository directory name under the repository base."),
    click.option("--remote-host", required=False, help="Host or IP of a remote Docker engine reached over SSH."),
    click.option("--remote-user", required=False, help="SSH account on the remote host (default: --user)."),
    click.option("--local-repo-base", required=False, type=click.Path(), help="Directory holding local repositories."),
    click.option("--remote-repo-base", required=False, help="Directory holding repositories on the remote host."),
    click.option(
        "--no-input",
        is_flag=True,
        default=False,
        help="Never prompt; fail when a password or repository choice is needed.",
    ),
]


def session_options(command):
    for option in reversed(SESSION_OPTIONS):
        command = option(command)
    return command


def _build_settings(ctx, **cli_values) -> WorkstationSettings:
    config = ctx.obj["config"]
    user = _resolve_option(cli_values.get("user"), config, "user")
    if not user:
        raise click.ClickException("Missing required option '--user' (or provide it in config).")

    port = _resolve_option(cli_values.get("port"), config, "port")
    return WorkstationSettings(
        user=str(user),
        remote_host=_resolve_option(cli_values.get("remote_host"), config, "remote_host"),
        remote_user=_resolve_option(cli_values.get("remote_user"), config, "remote_user"),
        repo=_resolve_option(cli_values.get("repo"), config, "repo"),
        local_repo_base=_resolve_option(cli_values.get("local_repo_base"), config, "local_repo_base"),
        remote_repo_base=_resolve_option(cli_values.get("remote_repo_base"), config, "remote_repo_base"),
        port=str(port) if port is not None else None,
        password=cli_values.get("password"),
        use_volumes=bool(_resolve_option(cli_values.get("use_volumes"), config, "use_volumes", default=False)),
        rebuild=bool(_resolve_option(cli_values.get("rebuild"), config, "rebuild", default=False)),
        high_compute=bool(_resolve_option(cli_values.get("high_compute"), config, "high_compute", default=False)),
        debug=ctx.obj["verbose"],
        sim_design_file=config.get("sim_design_file"),
        docker_setup_dir=config.get("docker_setup_dir"),
        operation_timeout=float(config["operation_timeout"]) if "operation_timeout" in config else None,
        bootstrap_attempts=int(config["bootstrap_attempts"]) if "bootstrap_attempts" in config else None,
        command_timeout=float(config["command_timeout"]) if "command_timeout" in config else None,
    )


def _workstation(ctx, no_input: bool, **cli_values) -> Workstation:
    settings = _build_settings(ctx, **cli_values)
    prompts = StaticPrompts(repository=settings.repo) if no_input else ClickPrompts(console)
    try:
        return Workstation(settings=settings, prompts=prompts)
    except WorkstationError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to a YAML configuration file. Defaults to .workstation.yml if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Run a containerized development environment locally or on a remote Docker host."""
    logger = logging.getLogger("workstation")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), ".workstation.yml")
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except WorkstationError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "debug", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.obj = {"config": config_values, "verbose": verbose}


@main.command()
@session_options
@click.option("--port", required=False, type=int, default=None, help="Published port on a remote host (default: 8788).")
@click.option(
    "--password",
    required=False,
    default=None,
    help="Password for the in-container service (generated when omitted).",
)
@click.option("--use-volumes/--no-volumes", default=None, help="Keep output and synthpop data in Docker volumes.")
@click.option("--rebuild", is_flag=True, default=None, help="Rebuild the image even if it exists.")
@click.option("--high-compute", is_flag=True, default=None, help="Apply the high-compute CPU and memory limits.")
@click.pass_context
def start(ctx, no_input, **cli_values):
    """Build if needed and start the container, or reattach to a running one."""
    raise SystemExit(_workstation(ctx, no_input, **cli_values).start())


@main.command()
@session_options
@click.pass_context
def stop(ctx, no_input, **cli_values):
    """Stop the container, sync volumes back and offer to commit repository changes."""
    raise SystemExit(_workstation(ctx, no_input, **cli_values).stop())


@main.command()
@session_options
@click.pass_context
def status(ctx, no_input, **cli_values):
    """Show this user's containers, occupied ports and the recovered session."""
    raise SystemExit(_workstation(ctx, no_input, **cli_values).status())


@main.command()
@session_options
@click.pass_context
def repos(ctx, no_input, **cli_values):
    """List repositories available on the selected host."""
    raise SystemExit(_workstation(ctx, no_input, **cli_values).list_repositories())


if __name__ == "__main__":
    main()

"""Image build with the prerequisite fallback."""

from typing import List, Tuple

from workstation.constants import DOCKER_SETUP_DIR
from workstation.errors import CommandError, DockerError, reclassify
from workstation.errors_catalog import actionable_error
from workstation.models import Local, Remote
from workstation.services.fallback import FallbackChain, Strategy


class ImageBuilder:
    """Builds the session image from the repository's docker setup directory.

    The main definition is ``Dockerfile.<repo>``. When it fails, the
    ``Dockerfile.prerequisite.<repo>`` image is built first and the main
    definition is retried exactly once.
    """

    def __init__(self, logger, console, docker_setup_dir: str = DOCKER_SETUP_DIR, timeout: float = 3600.0):
        self.logger = logger
        self.console = console
        self.docker_setup_dir = docker_setup_dir
        self.timeout = timeout

    @staticmethod
    def image_name(repo: str) -> str:
        return repo.lower()

    def image_exists(self, docker, image: str) -> bool:
        result = docker.run(["image", "inspect", image], check=False)
        return result.returncode == 0

    def definitions(self, host, repo_path: str, repo: str) -> Tuple[str, str, str]:
        setup_dir = host.join(repo_path, self.docker_setup_dir)
        main = host.join(setup_dir, f"Dockerfile.{repo}")
        prerequisite = host.join(setup_dir, f"Dockerfile.prerequisite.{repo}")
        return setup_dir, main, prerequisite

    def ensure_image(self, host, docker, repo: str, repo_path: str, rebuild: bool = False) -> str:
        image = self.image_name(repo)
        if not rebuild and self.image_exists(docker, image):
            self.logger.info("Image %s is present; skipping build.", image)
            return f"{image} (existing)"

        setup_dir, main, prerequisite = self.definitions(host, repo_path, repo)
        self.console.print(f"[blue]Building image {image}...[/blue]")

        def build_main():
            self._build(host, docker, main, image, setup_dir)

        def build_prerequisite_then_main():
            self.console.print("[yellow]Main build failed; building the prerequisite image first...[/yellow]")
            self._build(host, docker, prerequisite, f"{image}-prerequisite", setup_dir)
            self._build(host, docker, main, image, setup_dir)

        chain = FallbackChain(
            "image build",
            [
                Strategy("main", build_main),
                Strategy("prerequisite", build_prerequisite_then_main),
            ],
            self.logger,
            error_cls=DockerError,
        )
        try:
            chain.run()
        except DockerError as exc:
            raise DockerError(
                actionable_error("build_failed", image=image, setup_dir=setup_dir),
                command=exc.command,
                output=exc.output,
            ) from exc

        strategy = chain.outcomes[-1].name
        self.console.print(f"[green]Image {image} built.[/green]")
        return f"{image} (built: {strategy})"

    def build_args(self, dockerfile: str, tag: str, context_dir: str) -> List[str]:
        return ["build", "-f", dockerfile, "-t", tag, context_dir]

    def _build(self, host, docker, dockerfile: str, tag: str, context_dir: str):
        args = self.build_args(dockerfile, tag, context_dir)
        location = host.location
        try:
            if isinstance(location, Local):
                docker.run(args, timeout=self.timeout)
            elif isinstance(location, Remote):
                # The build context lives on the remote host.
                host.run(["docker", *args], timeout=self.timeout)
            else:
                raise TypeError(f"Unsupported location: {location!r}")
        except CommandError as exc:
            raise reclassify(exc, DockerError, f"docker build of {tag} failed.") from exc

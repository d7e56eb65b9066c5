"""Docker build, push and registry helpers for teedeploy."""

import json
import re
from dataclasses import dataclass
from typing import Tuple

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from teedeploy.constants import BUILD_PLATFORM, DOCKER_HUB_REGISTRY
from teedeploy.errors import BuildError, DeployerError
from teedeploy.errors_catalog import actionable_error

DIGEST_PATTERN = re.compile(r"^sha256:([0-9a-f]{64})$")


@dataclass(frozen=True)
class PushOutcome:
    succeeded: bool
    permission_denied: bool
    output: str


def registry_name(image_ref: str) -> str:
    """Returns the repository name without tag or digest, with docker.io for Hub short names."""
    name = image_ref.split("@", 1)[0]
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        name = name[:last_colon]
    if name.count("/") == 1 and not _has_registry_host(name):
        name = f"{DOCKER_HUB_REGISTRY}/{name}"
    return name


def registry_host(image_ref: str) -> str:
    if "/" in image_ref and _has_registry_host(image_ref):
        return image_ref.split("/", 1)[0]
    return DOCKER_HUB_REGISTRY


def _has_registry_host(name: str) -> bool:
    first = name.split("/", 1)[0]
    return "." in first or ":" in first or first == "localhost"


def parse_digest(value: str) -> bytes:
    match = DIGEST_PATTERN.match(value or "")
    if not match:
        raise BuildError(f"Invalid image digest: {value!r}")
    return bytes.fromhex(match.group(1))


class DockerRuntimeService:
    """Builds, tags, pushes and inspects images through the docker CLI."""

    PERMISSION_DENIED_PATTERNS = (
        "requested access to the resource is denied",
        "permission denied",
        "access forbidden",
        "authentication required",
        "insufficient_scope",
        "unauthorized",
        "forbidden",
        "denied",
    )

    def __init__(self, logger, console, command_runner, verbose: bool = False):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.verbose = verbose

    def is_permission_denied(self, output: str) -> bool:
        text = output.lower()
        return any(pattern in text for pattern in self.PERMISSION_DENIED_PATTERNS)

    def ensure_running(self):
        try:
            result = self.command_runner.run(["docker", "info"], check=False, capture_output=True)
        except DeployerError as exc:
            raise BuildError(actionable_error("docker_not_running")) from exc
        if result.returncode != 0:
            raise BuildError(actionable_error("docker_not_running"))

    def _echo(self, line: str):
        self.logger.debug(line)
        if self.verbose:
            self.console.print(line, markup=False, highlight=False)

    def _stream_with_spinner(self, cmd, description: str):
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=self.console,
        ) as progress:
            progress.add_task(description, total=None)
            return self.command_runner.stream(cmd, on_line=self._echo)

    def build(self, dockerfile_path: str, tag: str, log_redirect: str, context_dir: str = "."):
        cmd = [
            "docker",
            "buildx",
            "build",
            "--platform",
            BUILD_PLATFORM,
            "-t",
            tag,
            "-f",
            dockerfile_path,
            "--progress=plain",
            "--build-arg",
            f"LOG_REDIRECT={log_redirect}",
            context_dir,
        ]
        result = self._stream_with_spinner(cmd, f"[bold magenta]Building {tag}...")
        if result.returncode != 0:
            raise BuildError(f"Docker build failed ({result.returncode}) for {dockerfile_path}:\n{result.output}")
        self.console.print(f"[green]Built image {tag}.[/green]")

    def tag(self, source: str, target: str):
        if source == target:
            return
        self.command_runner.run(["docker", "tag", source, target], capture_output=True)

    def push(self, image_ref: str) -> PushOutcome:
        result = self._stream_with_spinner(["docker", "push", image_ref], f"[bold magenta]Pushing {image_ref}...")
        if result.returncode == 0:
            return PushOutcome(succeeded=True, permission_denied=False, output=result.output)
        return PushOutcome(
            succeeded=False,
            permission_denied=self.is_permission_denied(result.output),
            output=result.output,
        )

    def login(self, image_ref: str):
        """Interactive ``docker login`` for the registry that holds ``image_ref``."""
        registry = registry_host(image_ref)
        self.console.print(f"[yellow]Logging in to {registry} to grant push access...[/yellow]")
        result = self.command_runner.run(["docker", "login", registry], check=False)
        if result.returncode != 0:
            raise BuildError(f"docker login {registry} failed ({result.returncode}).")

    def resolve_digest(self, image_ref: str) -> Tuple[bytes, str]:
        """Returns the linux/amd64 manifest digest and registry name for a pushed image."""
        result = self.command_runner.run(
            ["docker", "buildx", "imagetools", "inspect", image_ref, "--format", "{{json .Manifest}}"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise BuildError(f"Failed to inspect manifest for {image_ref}: {stderr}")

        try:
            manifest = json.loads(result.stdout)
        except ValueError as exc:
            raise BuildError(f"Unreadable manifest for {image_ref}: {exc}") from exc

        digest = self._select_platform_digest(manifest, image_ref)
        return parse_digest(digest), registry_name(image_ref)

    def _select_platform_digest(self, manifest: dict, image_ref: str) -> str:
        entries = manifest.get("manifests")
        if not entries:
            return manifest.get("digest", "")

        os_name, architecture = BUILD_PLATFORM.split("/")
        for entry in entries:
            platform = entry.get("platform") or {}
            if platform.get("os") == os_name and platform.get("architecture") == architecture:
                return entry.get("digest", "")

        found = ", ".join(
            f"{(entry.get('platform') or {}).get('os')}/{(entry.get('platform') or {}).get('architecture')}"
            for entry in entries
        )
        raise BuildError(
            f"Image {image_ref} has no {BUILD_PLATFORM} manifest (found: {found}). "
            f"Rebuild it with `--platform {BUILD_PLATFORM}`."
        )

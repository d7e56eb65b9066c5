"""Release preparation: image build and push, digest lookup, env encryption."""

import json
import os
import time
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from teedeploy.constants import BUILD_TAG_PREFIX, REGISTRY_PROPAGATION_SECONDS, UPGRADE_WINDOW_SECONDS
from teedeploy.errors import BuildError, ConfigError, DeployerError, PushPermissionError
from teedeploy.errors_catalog import actionable_error
from teedeploy.models import Artifact, EnvironmentConfig, LogVisibility, ReleaseDescriptor
from teedeploy.services.docker_runtime import PushOutcome, registry_host
from teedeploy.services.env_file import load_env_file, split_env


class PushState(Enum):
    ATTEMPT_1 = "attempt_1"
    REMEDIATE = "remediate"
    ATTEMPT_2 = "attempt_2"
    DONE = "done"
    FAILED = "failed"


def next_push_state(state: PushState, outcome: PushOutcome) -> PushState:
    """Only a first push rejected for missing permissions earns a remediation and retry."""
    if outcome.succeeded:
        return PushState.DONE
    if state is PushState.ATTEMPT_1 and outcome.permission_denied:
        return PushState.REMEDIATE
    return PushState.FAILED


def parse_log_visibility(value) -> LogVisibility:
    if isinstance(value, LogVisibility):
        return value
    try:
        return LogVisibility(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in LogVisibility)
        raise ConfigError(f"Invalid log visibility '{value}'. Expected one of: {allowed}.") from exc


def build_tag(app_id: str) -> str:
    return f"{BUILD_TAG_PREFIX}-{app_id.lower().removeprefix('0x')}"


def encode_env(env: Dict[str, str]) -> bytes:
    return json.dumps(env, sort_keys=True, separators=(",", ":")).encode("utf-8")


class ReleasePreparer:
    """Turns a Dockerfile or pushed image plus an env file into a ReleaseDescriptor."""

    def __init__(
        self,
        logger,
        console,
        docker_service,
        encryptor_factory: Callable[[EnvironmentConfig], object],
        remediate: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger
        self.console = console
        self.docker = docker_service
        self.encryptor_factory = encryptor_factory
        self.remediate = remediate or docker_service.login
        self.clock = clock
        self.sleep = sleep

    def push(self, image_ref: str) -> int:
        """Pushes ``image_ref`` and returns how many push attempts were made."""
        state = PushState.ATTEMPT_1
        attempts = 0
        outcome = None

        while state not in (PushState.DONE, PushState.FAILED):
            if state is PushState.REMEDIATE:
                self.logger.warning("Push to %s was denied; attempting to restore push access.", image_ref)
                self.remediate(image_ref)
                state = PushState.ATTEMPT_2
                continue

            attempts += 1
            outcome = self.docker.push(image_ref)
            state = next_push_state(state, outcome)

        if state is PushState.FAILED:
            if outcome.permission_denied:
                message = actionable_error(
                    "push_permission_denied",
                    image_ref=image_ref,
                    registry=registry_host(image_ref),
                )
                raise PushPermissionError(f"{message}\n{outcome.output}")
            raise BuildError(f"Docker push failed for {image_ref}:\n{outcome.output}")

        self.console.print(f"[green]Pushed {image_ref}.[/green]")
        return attempts

    def _encrypt_private_env(self, environment: EnvironmentConfig, private_env: Dict[str, str], app_id: str) -> bytes:
        encryptor = self.encryptor_factory(environment)
        try:
            return encryptor.encrypt(encode_env(private_env), app_id)
        except DeployerError:
            raise
        except Exception as exc:
            raise DeployerError(f"Failed to encrypt environment for {app_id}: {exc}") from exc

    def prepare(
        self,
        app_id: str,
        environment: EnvironmentConfig,
        instance_type: Optional[str],
        log_visibility,
        dockerfile_path: Optional[str] = None,
        image_ref: Optional[str] = None,
        env_file_path: Optional[str] = None,
    ) -> Tuple[ReleaseDescriptor, str]:
        visibility = parse_log_visibility(log_visibility)
        if not image_ref:
            raise ConfigError("An image reference is required (for example registry/user/app:tag).")
        if "/" not in image_ref:
            raise ConfigError(f"Image reference '{image_ref}' must include a repository, e.g. user/app:tag.")

        public_env, private_env = split_env(load_env_file(env_file_path), instance_type)
        self.logger.debug(
            "Env split: %s public, %s private variables", len(public_env), len(private_env)
        )

        if dockerfile_path:
            if not os.path.isfile(dockerfile_path):
                raise ConfigError(f"Dockerfile not found: {dockerfile_path}")
            self.docker.ensure_running()
            local_tag = build_tag(app_id)
            context_dir = os.path.dirname(os.path.abspath(dockerfile_path))
            self.docker.build(dockerfile_path, local_tag, visibility.log_redirect, context_dir=context_dir)
            self.docker.tag(local_tag, image_ref)
            self.push(image_ref)
            self.sleep(REGISTRY_PROPAGATION_SECONDS)

        digest, registry = self.docker.resolve_digest(image_ref)
        self.logger.info("Image digest: sha256:%s (%s)", digest.hex(), registry)

        encrypted_env = self._encrypt_private_env(environment, private_env, app_id)
        release = ReleaseDescriptor(
            artifacts=(Artifact(digest=digest, registry=registry),),
            upgrade_by_time=int(self.clock()) + UPGRADE_WINDOW_SECONDS,
            public_env=encode_env(public_env),
            encrypted_env=encrypted_env,
        )
        return release, f"{registry}@sha256:{digest.hex()}"

import io
import json
import subprocess

import pytest
from rich.console import Console

from teedeploy.errors import BuildError
from teedeploy.services.command_runner import StreamResult
from teedeploy.services.docker_runtime import DockerRuntimeService, parse_digest, registry_host, registry_name

DIGEST = "sha256:" + "ab" * 32


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


class FakeCommandRunner:
    def __init__(self, stream_results=None, run_results=None):
        self.stream_results = list(stream_results or [])
        self.run_results = list(run_results or [])
        self.commands = []

    def stream(self, cmd, on_line=None):
        self.commands.append(cmd)
        result = self.stream_results.pop(0)
        for line in result.tail:
            if on_line:
                on_line(line)
        return result

    def run(self, cmd, check=True, capture_output=False, timeout=None):
        self.commands.append(cmd)
        return self.run_results.pop(0)


def build_service(runner):
    return DockerRuntimeService(
        logger=DummyLogger(),
        console=Console(file=io.StringIO()),
        command_runner=runner,
    )


@pytest.mark.parametrize(
    "image_ref,expected",
    [
        ("acme/app:latest", "docker.io/acme/app"),
        ("acme/app@" + DIGEST, "docker.io/acme/app"),
        ("ghcr.io/acme/app:v1", "ghcr.io/acme/app"),
        ("localhost:5000/acme/app:v1", "localhost:5000/acme/app"),
        ("registry.example.com/team/acme/app", "registry.example.com/team/acme/app"),
    ],
)
def test_registry_name_strips_tag_and_adds_hub_prefix(image_ref, expected):
    assert registry_name(image_ref) == expected


def test_registry_host_defaults_to_docker_hub():
    assert registry_host("acme/app:latest") == "docker.io"
    assert registry_host("ghcr.io/acme/app:v1") == "ghcr.io"


def test_parse_digest_rejects_malformed_values():
    assert parse_digest(DIGEST) == bytes.fromhex("ab" * 32)
    with pytest.raises(BuildError):
        parse_digest("sha256:1234")


def test_push_classifies_permission_denied():
    runner = FakeCommandRunner(
        stream_results=[StreamResult(1, ("denied: requested access to the resource is denied",))]
    )

    outcome = build_service(runner).push("acme/app:latest")

    assert not outcome.succeeded
    assert outcome.permission_denied
    assert runner.commands == [["docker", "push", "acme/app:latest"]]


def test_push_other_failure_is_not_permission_denied():
    runner = FakeCommandRunner(stream_results=[StreamResult(1, ("net/http: TLS handshake timeout",))])

    outcome = build_service(runner).push("acme/app:latest")

    assert not outcome.succeeded
    assert not outcome.permission_denied


def test_build_failure_raises_with_output_tail():
    runner = FakeCommandRunner(stream_results=[StreamResult(1, ("ERROR: failed to solve",))])

    with pytest.raises(BuildError, match="failed to solve"):
        build_service(runner).build("Dockerfile", "teedeploy-abc", "always")

    cmd = runner.commands[0]
    assert cmd[:5] == ["docker", "buildx", "build", "--platform", "linux/amd64"]
    assert "LOG_REDIRECT=always" in cmd


def test_resolve_digest_picks_amd64_from_manifest_list():
    manifest = {
        "manifests": [
            {"digest": "sha256:" + "11" * 32, "platform": {"os": "linux", "architecture": "arm64"}},
            {"digest": DIGEST, "platform": {"os": "linux", "architecture": "amd64"}},
        ]
    }
    runner = FakeCommandRunner(
        run_results=[subprocess.CompletedProcess(["docker"], 0, stdout=json.dumps(manifest), stderr="")]
    )

    digest, registry = build_service(runner).resolve_digest("acme/app:latest")

    assert digest == bytes.fromhex("ab" * 32)
    assert registry == "docker.io/acme/app"


def test_resolve_digest_rejects_image_without_amd64():
    manifest = {"manifests": [{"digest": DIGEST, "platform": {"os": "linux", "architecture": "arm64"}}]}
    runner = FakeCommandRunner(
        run_results=[subprocess.CompletedProcess(["docker"], 0, stdout=json.dumps(manifest), stderr="")]
    )

    with pytest.raises(BuildError, match="linux/arm64"):
        build_service(runner).resolve_digest("acme/app:latest")


def test_ensure_running_reports_stopped_daemon():
    runner = FakeCommandRunner(run_results=[subprocess.CompletedProcess(["docker"], 1, stdout="", stderr="")])

    with pytest.raises(BuildError, match="Docker is not running"):
        build_service(runner).ensure_running()

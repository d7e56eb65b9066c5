import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_API_TIMEOUT_SECONDS, DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_RECEIPT_TIMEOUT_SECONDS
from .core import TeeDeployer
from .errors import DeployerError
from .services.config_loader import ConfigLoader
from .services.environment import DEFAULT_ENVIRONMENT, ENVIRONMENTS

DEFAULT_CONFIG_FILE = ".teedeploy.yml"


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


def _confirm_cost(description, estimate) -> bool:
    return click.confirm(f"{description}: spend up to {estimate.max_cost_eth} ETH?", default=False)


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("teedeploy")
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


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option(
    "--environment",
    required=False,
    type=click.Choice(sorted(ENVIRONMENTS)),
    help=f"Target environment (default: {DEFAULT_ENVIRONMENT}).",
)
@click.option("--rpc-url", required=False, help="RPC endpoint. Overrides RPC_URL and the environment default.")
@click.option("--private-key", required=False, help="Signing key. Prefer the TEEDEPLOY_PRIVATE_KEY variable.")
@click.option(
    "--kms-public-key-file",
    required=False,
    type=click.Path(),
    help="PEM file with the environment's KMS encryption public key.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option("--yes", is_flag=True, default=None, help="Skip the mainnet cost confirmation prompt.")
@click.pass_context
def main(ctx, config, environment, rpc_url, private_key, kms_public_key_file, verbose, log_file, yes):
    """Deploy and manage TEE apps whose lifecycle is anchored on-chain."""
    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = ConfigLoader().load(resolved_config)
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    _configure_logging(verbose, _resolve_option(log_file, config_values, "log_file"))

    ctx.obj = {
        "config": config_values,
        "deployer_kwargs": {
            "environment": _resolve_option(environment, config_values, "environment", default=DEFAULT_ENVIRONMENT),
            "private_key": private_key,
            "rpc_url": _resolve_option(rpc_url, config_values, "rpc_url"),
            "kms_public_key_file": _resolve_option(kms_public_key_file, config_values, "kms_public_key_file"),
            "verbose": verbose,
            "poll_interval_seconds": float(
                _resolve_option(None, config_values, "poll_interval_seconds", default=DEFAULT_POLL_INTERVAL_SECONDS)
            ),
            "api_timeout": float(
                _resolve_option(None, config_values, "api_timeout", default=DEFAULT_API_TIMEOUT_SECONDS)
            ),
            "receipt_timeout": float(
                _resolve_option(None, config_values, "receipt_timeout", default=DEFAULT_RECEIPT_TIMEOUT_SECONDS)
            ),
            "assume_yes": bool(_resolve_option(yes, config_values, "assume_yes", default=False)),
            "confirm": _confirm_cost,
        },
    }


def _build_deployer(ctx) -> TeeDeployer:
    try:
        return TeeDeployer(**ctx.obj["deployer_kwargs"])
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc


def _release_options(func):
    options = [
        click.option("--image-ref", required=True, help="Registry image reference, e.g. user/app:tag."),
        click.option(
            "--dockerfile",
            required=False,
            type=click.Path(),
            help="Build and push this Dockerfile to --image-ref before releasing.",
        ),
        click.option("--env-file", required=False, type=click.Path(), help="Env file for the app."),
        click.option("--instance-type", required=False, help="Instance type (SKU)."),
        click.option(
            "--log-visibility",
            required=False,
            type=click.Choice(TeeDeployer.LOG_VISIBILITIES),
            help="Who can read app logs (default: private).",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _release_kwargs(ctx, image_ref, dockerfile, env_file, instance_type, log_visibility):
    config = ctx.obj["config"]
    return {
        "image_ref": image_ref,
        "dockerfile_path": dockerfile,
        "env_file": _resolve_option(env_file, config, "env_file"),
        "instance_type": _resolve_option(instance_type, config, "instance_type"),
        "log_visibility": _resolve_option(log_visibility, config, "log_visibility", default="private"),
    }


@main.command()
@_release_options
@click.pass_context
def deploy(ctx, image_ref, dockerfile, env_file, instance_type, log_visibility):
    """Deploy a new app and wait until it is running."""
    deployer = _build_deployer(ctx)
    kwargs = _release_kwargs(ctx, image_ref, dockerfile, env_file, instance_type, log_visibility)
    raise SystemExit(deployer.run(deployer.deploy, **kwargs))


@main.command()
@click.argument("app_id")
@_release_options
@click.pass_context
def upgrade(ctx, app_id, image_ref, dockerfile, env_file, instance_type, log_visibility):
    """Release a new image and environment for an existing app."""
    deployer = _build_deployer(ctx)
    kwargs = _release_kwargs(ctx, image_ref, dockerfile, env_file, instance_type, log_visibility)
    raise SystemExit(deployer.run(deployer.upgrade, app_id, **kwargs))


@main.command()
@click.argument("app_id")
@click.option("--watch", is_flag=True, default=False, help="Keep polling and report changes until interrupted.")
@click.pass_context
def info(ctx, app_id, watch):
    """Show the reconciled status of an app."""
    deployer = _build_deployer(ctx)
    raise SystemExit(deployer.run(deployer.info, app_id, watch=watch))


@main.command()
@click.pass_context
def skus(ctx):
    """List the instance types offered by the platform."""
    deployer = _build_deployer(ctx)
    raise SystemExit(deployer.run(deployer.list_skus))


@main.command()
@click.argument("app_id")
@click.option("--watch", is_flag=True, default=False, help="Keep printing new log lines until interrupted.")
@click.pass_context
def logs(ctx, app_id, watch):
    """Print an app's logs."""
    deployer = _build_deployer(ctx)
    raise SystemExit(deployer.run(deployer.logs, app_id, watch=watch))


@main.command()
@click.pass_context
def undelegate(ctx):
    """Clear the signing account's EIP-7702 delegation."""
    deployer = _build_deployer(ctx)
    raise SystemExit(deployer.run(deployer.undelegate))


def _lifecycle_command(action: str, help_text: str):
    @click.argument("app_id")
    @click.pass_context
    def command(ctx, app_id):
        deployer = _build_deployer(ctx)
        raise SystemExit(deployer.run(getattr(deployer, action), app_id))

    command.__doc__ = help_text
    return main.command(name=action)(command)


start = _lifecycle_command("start", "Start a stopped app.")
stop = _lifecycle_command("stop", "Stop a running app.")
terminate = _lifecycle_command("terminate", "Terminate an app permanently.")


if __name__ == "__main__":
    main()

# Main Entry Point
import argparse
import json
import logging
import os
import signal
import subprocess
import sys
import traceback

from dotenv import load_dotenv

from bluegreen import constants
from bluegreen.api_gateway import ApiGateway
from bluegreen.config_loader import AppConfig
from bluegreen.exceptions import ConcurrentDeployment, StateCorrupt
from bluegreen.logger import setup_logging
from bluegreen.models.deployment_attempt import DeploymentOutcome
from bluegreen.util.common_util import get_root_path

logger = logging.getLogger(__name__)


def input_parser(argv=None):
    parser = argparse.ArgumentParser(
        description="Blue-green release coordinator: promote an artifact into the inactive slot and cut traffic over"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    release = subparsers.add_parser("release", help="Deploy an artifact to the inactive slot and switch traffic to it.")
    release.add_argument(
        "--env", required=True,
        help="Choose target environment (e.g., staging, production)."
    )
    release.add_argument(
        "--artifact", required=True,
        help="Container image reference, repository:tag[@digest]."
    )
    gate = release.add_mutually_exclusive_group()
    gate.add_argument(
        "--gate-status", type=int, default=0,
        help="Exit status of the verification stages run before this release (0 = go)."
    )
    gate.add_argument(
        "--gate-command",
        help="Verification command to run first (e.g. UI/load tests); its exit status is the go/no-go signal."
    )
    release.add_argument(
        "--gate-timeout", type=float, default=None,
        help="Seconds to allow the --gate-command before treating it as a no-go."
    )

    status = subparsers.add_parser("status", help="Show routing state and slot records.")
    status.add_argument("--env", required=True, help="Environment name.")

    history = subparsers.add_parser("history", help="Show recorded release attempts.")
    history.add_argument("--env", required=True, help="Environment name.")
    history.add_argument("--limit", type=int, default=10, help="Number of most recent attempts to show.")

    return parser.parse_args(argv)


def run_gate_command(command, timeout=None):
    logger.info(f"Running verification gate: {command}")
    try:
        result = subprocess.run(command, shell=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error(f"Verification gate timed out after {timeout}s")
        return 1
    logger.info(f"Verification gate exit status = {result.returncode}")
    return result.returncode


def install_signal_handlers(api_gateway):
    def handler(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling release")
        api_gateway.cancel()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_release(api_gateway, args):
    gate_status = args.gate_status
    if args.gate_command:
        gate_status = run_gate_command(args.gate_command, args.gate_timeout)

    logger.info("======================= Release started ========================== ")
    logger.info(f"Releasing '{args.artifact}' to '{args.env}' environment")
    install_signal_handlers(api_gateway)
    attempt = api_gateway.release({
        "env_name": args.env,
        "artifact": args.artifact,
        "gate_status": gate_status,
    })

    if attempt.outcome == DeploymentOutcome.SUCCEEDED:
        logger.info(f"Slot {attempt.target_slot} is now serving {attempt.artifact}.")
        logger.info("======================= Release completed successfully ========================== ")
        return constants.EXIT_SUCCESS

    logger.error(f"Release {attempt.outcome.value}: {attempt.error}")
    logger.info("======================= Release completed with errors ========================== ")
    return constants.EXIT_FAILED


def run_status(api_gateway, args):
    status = api_gateway.get_status(args.env)
    print(json.dumps(status, indent=4))
    return constants.EXIT_SUCCESS


def run_history(api_gateway, args):
    df = api_gateway.get_history(args.env, args.limit)
    if df.empty:
        logger.info(f"No release attempts recorded for '{args.env}'")
    else:
        columns = ["attempt_id", "artifact", "previous_slot", "target_slot", "started_at", "outcome", "error"]
        print(df[columns].to_string(index=False))
    return constants.EXIT_SUCCESS


COMMANDS = {
    "release": run_release,
    "status": run_status,
    "history": run_history,
}


def main(argv=None):
    args = input_parser(argv)
    try:
        root_path = get_root_path()
        load_dotenv(os.path.join(root_path, ".env"))
        config = AppConfig()
        setup_logging(config.get(constants.LOGGING_CONFIG, constants.DEFAULT_LOGGING_CONFIG), run_name=args.command)
        logger.info(f"root_path: {root_path}")

        logger.info("======================= Loading required configuration started ========================== ")
        api_gateway = ApiGateway()
        api_gateway.load_required_configuration()
        logger.info("======================= Loading required configuration completed ========================== ")

        return_code = COMMANDS[args.command](api_gateway, args)
    except ConcurrentDeployment as ex:
        logger.error(f"Release rejected: {ex}")
        return_code = constants.EXIT_CONCURRENT
    except StateCorrupt as ex:
        logger.error(f"Routing state is corrupt, manual intervention required: {ex}")
        return_code = constants.EXIT_STATE_CORRUPT
    except (FileNotFoundError, ValueError) as ex:
        logger.error(f"Configuration error: {ex}")
        return_code = constants.EXIT_FAILED
    except Exception as ex:
        logger.error(f"Unexpected failure during release: {ex}")
        traceback.print_exc()
        return_code = constants.EXIT_FAILED

    logger.info(f"Exit code = {return_code}")
    return return_code


def cli():
    if len(sys.argv) == 1:
        print("\nMissing required arguments: release|status|history --env\n")
        print('Usage example: python run_release_cli.py release --env "staging" --artifact "registry.local/app:1.4.2"\n')
        print("Use --help to see all available options.\n")
        sys.exit(1)
    sys.exit(main())


if __name__ == "__main__":
    cli()

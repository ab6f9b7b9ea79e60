"""Command-line interface for auto-onboard."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Optional

from .config import AppConfig, load_config
from .interaction import (
    AutoResponseHandler,
    CLIInteractionHandler,
    InputType,
    InteractionRequest,
    QuestionCategory,
    UserInteractionHandler,
)
from .utils.logging import get_logger, set_verbose
from .workflow import ProvisionRequest, ProvisioningWorkflow

logger = get_logger(__name__)


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    interaction_handler: UserInteractionHandler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auto-onboard",
        description=(
            "Finalize a bootstrapped server for Ansible: install the controller key for the "
            "automation user, verify access and sudo, and add the server to the inventory. "
            "Run on the controller as your normal user, not with sudo."
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    provision_parser = subparsers.add_parser(
        "provision", help="Onboard one target server"
    )
    provision_parser.add_argument("address", nargs="?", help="Target server IP")
    provision_parser.add_argument(
        "bootstrap_user", nargs="?",
        help="Your username on the target (e.g. vagrant, ubuntu); NOT the automation user",
    )
    provision_parser.add_argument("--hostname", default=None, help="Inventory display name (default: auto-detect)")
    provision_parser.add_argument("--key-path", default=None, help="Controller private key (default: ~/.ssh/ansible-automation-key)")
    provision_parser.add_argument("--inventory", default=None, help="Inventory file (default: auto-detect)")
    provision_parser.add_argument("--dry-run", action="store_true", default=None, help="Report actions without changing anything")
    provision_parser.add_argument("--verbose", "-v", action="store_true", default=None, help="Debug logging and ansible -vvv")
    provision_parser.add_argument("--yes", "-y", action="store_true", help="Skip the configuration confirmation")
    provision_parser.add_argument(
        "--auto", action="store_true",
        help="Non-interactive: take defaults; fails if a sudo password would be needed",
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    if getattr(args, "key_path", None):
        config.keys.key_path = args.key_path
    if getattr(args, "inventory", None):
        config.inventory.path = args.inventory
    if getattr(args, "dry_run", None):
        config.run.dry_run = True
    if getattr(args, "verbose", None):
        config.run.verbose = True

    auto = getattr(args, "auto", False) or config.interaction.mode == "auto"
    handler: UserInteractionHandler = AutoResponseHandler() if auto else CLIInteractionHandler()
    return CLIContext(config=config, interaction_handler=handler)


def _ask_required(handler: UserInteractionHandler, question: str, example: str) -> str:
    response = handler.ask(
        InteractionRequest(
            question=question,
            input_type=InputType.TEXT,
            category=QuestionCategory.INFORMATION,
            context=example,
        )
    )
    if response.cancelled or not response.value.strip():
        raise ValueError(f"{question} is required")
    return response.value.strip()


def handle_provision_command(args: argparse.Namespace, context: CLIContext) -> int:
    handler = context.interaction_handler
    address = args.address or _ask_required(
        handler, "Target server IP", "The REMOTE server to manage, not this controller"
    )
    bootstrap_user = args.bootstrap_user or _ask_required(
        handler, "Your username on target", "e.g. vagrant, ubuntu; not the automation user"
    )

    request = ProvisionRequest(
        address=address,
        bootstrap_user=bootstrap_user,
        hostname=args.hostname,
        dry_run=context.config.run.dry_run,
        verbose=context.config.run.verbose,
        assume_yes=args.yes or args.auto,
    )
    workflow = ProvisioningWorkflow(config=context.config, interaction_handler=handler)
    result = workflow.run(request)
    return result.exit_code


def dispatch_command(args: argparse.Namespace) -> int:
    try:
        context = _build_context(args)
    except FileNotFoundError as exc:
        logger.error("❌ %s", exc)
        return 2
    set_verbose(context.config.run.verbose)

    if args.command == "provision":
        try:
            return handle_provision_command(args, context)
        except ValueError as exc:
            logger.error("❌ %s", exc)
            return 2

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)

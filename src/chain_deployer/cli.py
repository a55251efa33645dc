"""Command-line interface for chain-deployer."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .config import AppConfig, load_config
from .errors import ConfigError, CorruptStateError
from .orchestrator import StateStore
from .utils.logging import get_logger
from .workflow import DeploymentWorkflow

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chain-deployer",
        description="Run a resumable, confirmation-aware deployment against a JSON-RPC node.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    deploy_parser = subparsers.add_parser(
        "deploy", help="Run (or resume) the deployment steps"
    )
    deploy_parser.add_argument(
        "--state", "-s", type=str, default=None,
        help="Path to the JSON file containing the deployment state (default: ./state.json)",
    )
    deploy_parser.add_argument("--plan", "-p", type=str, default=None, help="JSON deployment plan")
    deploy_parser.add_argument(
        "--steps", type=str, default=None,
        help="Custom step sequence factory, e.g. mypkg.steps:build",
    )
    deploy_parser.add_argument(
        "--json-rpc", "-j", type=str, default=None,
        help="JSON RPC URL where the steps should be submitted",
    )
    deploy_parser.add_argument(
        "--from", dest="from_address", type=str, default=None,
        help="Account used to submit all transactions (node-managed unless --private-key is given)",
    )
    deploy_parser.add_argument(
        "--private-key", dest="private_key", type=str, default=None,
        help="Sign transactions locally with this key (prefer CHAIN_DEPLOYER_PRIVATE_KEY)",
    )
    deploy_parser.add_argument(
        "--gas-price", "-g", type=int, default=None,
        help="The gas price to pay in GWEI for each transaction",
    )
    deploy_parser.add_argument(
        "--confirmations", "-c", type=int, default=None,
        help="How many confirmations to wait for after each transaction (default: 2)",
    )
    deploy_parser.add_argument(
        "--timeout", type=float, default=None,
        help="Seconds to wait for each transaction to confirm (default: 900)",
    )
    deploy_parser.add_argument(
        "--poll-interval", type=float, default=None,
        help="Seconds between confirmation polls",
    )
    deploy_parser.add_argument(
        "--no-log", action="store_true",
        help="Do not write a JSON run log",
    )

    # state 子命令 - 查看或重置状态文件
    state_parser = subparsers.add_parser(
        "state", help="Inspect or reset the deployment state"
    )
    state_parser.add_argument("--state", "-s", type=str, default=None, help="State file path")
    state_parser.add_argument(
        "--reset", action="store_true",
        help="Delete the state file so the next run starts from scratch",
    )
    state_parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Do not ask for confirmation when resetting",
    )

    # logs 子命令 - 查看运行日志
    logs_parser = subparsers.add_parser("logs", help="View deployment run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs",
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file",
    )

    return parser


def _apply_deploy_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """命令行参数优先级最高"""
    network = config.network
    deployment = config.deployment
    if args.json_rpc:
        network.json_rpc_url = args.json_rpc
    if args.from_address:
        network.from_address = args.from_address
    if args.private_key:
        network.private_key = args.private_key
    if args.gas_price is not None:
        network.gas_price_gwei = args.gas_price
    if args.state:
        deployment.state_path = args.state
    if args.plan:
        deployment.plan_path = args.plan
    if args.steps:
        deployment.steps_factory = args.steps
    if args.confirmations is not None:
        deployment.confirmations = args.confirmations
    if args.timeout is not None:
        deployment.confirmation_timeout = args.timeout
    if args.poll_interval is not None:
        deployment.poll_interval = args.poll_interval
    if args.no_log:
        deployment.logs_dir = ""
    return config


def _print_final_state(state: Any) -> None:
    print("Final state")
    print(json.dumps(state))


def handle_deploy_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Handle the deploy subcommand.

    The final state is printed in every outcome so a retry can resume from it.
    """
    logger = get_logger(__name__)
    config = _apply_deploy_overrides(config, args)

    # 自定义工厂可以自行签名，不一定需要节点托管账户
    try:
        config.validate(require_sender=not config.deployment.steps_factory)
        workflow = DeploymentWorkflow(config)
    except ConfigError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        _print_final_state(None)
        return EXIT_USAGE

    try:
        outcome = workflow.run_deploy()
    except ConfigError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        _print_final_state(workflow.aggregator.final_state())
        return EXIT_USAGE
    except KeyboardInterrupt:
        logger.warning("Interrupted; steps in flight may have submitted unrecorded operations")
        _print_final_state(workflow.aggregator.final_state())
        return EXIT_INTERRUPTED
    except Exception as exc:
        logger.exception("Unexpected error during deployment")
        print(f"Deployment failed: {exc}", file=sys.stderr)
        _print_final_state(workflow.aggregator.final_state())
        return EXIT_FAILED

    if outcome.succeeded:
        print("Deployment succeeded")
        print(json.dumps(workflow.aggregator.results()))
        _print_final_state(outcome.final_state)
        return EXIT_OK

    print(f"Deployment failed: {outcome.error}", file=sys.stderr)
    _print_final_state(outcome.final_state)
    return EXIT_FAILED


def handle_state_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Handle the state subcommand."""
    store = StateStore(args.state or config.deployment.state_path)

    if args.reset:
        if not store.exists():
            print(f"ℹ️  No state file at {store.path}")
            return EXIT_OK
        if not args.yes:
            confirm = input(f"⚠️  Delete {store.path}? (type 'yes' to confirm): ")
            if confirm.lower() != "yes":
                print("❌ Cancelled")
                return EXIT_OK
        store.clear()
        print(f"✅ Removed {store.path}")
        return EXIT_OK

    try:
        state = store.load()
    except CorruptStateError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return EXIT_FAILED

    print(f"📁 State file: {store.path} ({'present' if store.exists() else 'absent'})")
    print(f"📊 Recorded keys: {len(state)}")
    print(json.dumps(state.to_dict(), indent=2))
    return EXIT_OK


def handle_logs_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Handle the logs subcommand."""
    log_dir = Path(config.deployment.logs_dir)

    if not log_dir.exists():
        print("📁 No run logs found. Run a deployment first.")
        return EXIT_OK

    log_files = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    if not log_files:
        print("📁 No deployment logs found.")
        return EXIT_OK

    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Steps':<6} {'Time':<20} {'File'}")
        print("-" * 80)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                data = None
            if not isinstance(data, dict):
                print(f"{i:<4} ❓ {'error':<10} {'?':<6} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            steps = len(data.get("steps", []))
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            status_emoji = {"completed": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")
            print(f"{i:<4} {status_emoji} {status:<10} {steps:<6} {start_time:<20} {log_file.name}")
        return EXIT_OK

    target_file = log_files[0]
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            # 尝试在 log_dir 中查找
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return EXIT_FAILED

    return EXIT_OK if show_log_file(target_file) else EXIT_FAILED


def show_log_file(log_file: Path) -> bool:
    """Display a deployment run log. Returns False if it cannot be read."""
    try:
        with open(log_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"❌ Cannot read log file {log_file}: {exc}")
        return False
    if not isinstance(data, dict):
        print(f"❌ Unexpected log format in {log_file}")
        return False

    status = data.get("status", "unknown")
    status_emoji = {"completed": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")

    print(f"\n{'='*60}")
    print(f"📄 Deployment Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"💾 State file: {data.get('state_path', 'N/A')}")
    print(f"⏰ Started:    {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:      {data.get('end_time', 'N/A')}")
    print(f"{status_emoji} Status:     {status}")
    print(f"📊 Steps:      {len(data.get('steps', []))}")
    print(f"{'='*60}\n")

    for step in data.get("steps", []):
        print(f"[{step.get('index', '?')}] {step.get('step_name', '?')}")
        for result in step.get("results", []):
            line = f"    • {result.get('message', '')}"
            if result.get("hash"):
                line += f" ({result['hash']})"
            print(line)
        if step.get("committed"):
            print(f"    💾 {json.dumps(step['committed'])}")
        print()

    if data.get("error"):
        print(f"⚠️ {data['error']}\n")

    return True


def dispatch_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"❌ {exc}", file=sys.stderr)
        if args.command == "deploy":
            _print_final_state(None)
        return EXIT_USAGE

    if args.command == "deploy":
        return handle_deploy_command(args, config)
    if args.command == "state":
        return handle_state_command(args, config)
    if args.command == "logs":
        return handle_logs_command(args, config)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    get_logger(verbose=args.verbose)
    return dispatch_command(args)

"""tierflow CLI — command-line interface for the subscription engine.

Usage:
    python -m tierflow.cli status
    python -m tierflow.cli create-subscription --creator carol --name "Fan Club"
    python -m tierflow.cli create-tier --sub 0x... --caller carol --name Gold --price 100
    python -m tierflow.cli fund --holder alice --amount 1000
    python -m tierflow.cli authorize --holder alice --sub 0x... --amount 100
    python -m tierflow.cli subscribe --sub 0x... --caller alice --tier 0
    python -m tierflow.cli settle --sub 0x... alice bob
    python -m tierflow.cli check-invariants
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from tierflow.config import BillingConfig
from tierflow.persistence.event_log import EventLog
from tierflow.persistence.state_store import StateStore
from tierflow.service import ServiceResult, SubscriptionService


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(args: argparse.Namespace) -> SubscriptionService:
    """Create a SubscriptionService with durable persistence."""
    data_dir: Path = args.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    config = BillingConfig.from_env(params_path=args.config / "billing_params.json")
    return SubscriptionService(
        config=config,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message.format(**result.data))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_create_subscription(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.create_subscription(args.creator, args.name, recipient=args.recipient)
    return _report(result, "Created subscription: {address}")


def cmd_create_tier(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.create_tier(args.sub, args.caller, args.name, args.price)
    return _report(result, "Created tier {tier_id}: {name} @ {price}")


def cmd_fund(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.fund_account(args.holder, args.amount)
    return _report(result, "Balance of {holder}: {balance}")


def cmd_authorize(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.authorize(args.holder, args.sub, args.amount)
    return _report(result, "{holder} authorized {amount} to {operator}")


def cmd_revoke(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.revoke(args.holder, args.sub)
    return _report(result, "{holder} revoked authorization for {operator}")


def cmd_subscribe(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.subscribe(args.sub, args.caller, args.tier)
    return _report(
        result,
        "Subscribed {subscriber} to tier {tier_id} until {expiry} "
        "(creator {creator_net}, protocol {protocol_fee})",
    )


def cmd_unsubscribe(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.unsubscribe(args.sub, args.caller)
    return _report(result, "Unsubscribed {subscriber}")


def cmd_check(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.is_subscribed(args.sub, args.address)
    if not result.success:
        return _report(result, "")
    print(json.dumps(result.data, indent=2))
    return 0


def cmd_settle(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.charge_subscribers(args.sub, args.addresses)
    if not result.success:
        return _report(result, "")
    print(json.dumps(result.data, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run billing parameter invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config / "billing_params.json")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tierflow",
        description="tierflow — subscription lifecycle and recurring billing",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA,
        help="Directory for state.json and events.jsonl (default: data/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show system status")

    p_cs = sub.add_parser("create-subscription", help="Deploy a subscription instance")
    p_cs.add_argument("--creator", required=True, help="Creator (owner) address")
    p_cs.add_argument("--name", required=True, help="Subscription name")
    p_cs.add_argument("--recipient", help="Payout address (default: creator)")

    p_tier = sub.add_parser("create-tier", help="Create a tier (owner only)")
    p_tier.add_argument("--sub", required=True, help="Subscription address")
    p_tier.add_argument("--caller", required=True, help="Caller address")
    p_tier.add_argument("--name", required=True, help="Tier name")
    p_tier.add_argument("--price", required=True, type=int, help="Price in token units")

    p_fund = sub.add_parser("fund", help="Mint payment tokens to a holder")
    p_fund.add_argument("--holder", required=True)
    p_fund.add_argument("--amount", required=True, type=int)

    p_auth = sub.add_parser("authorize", help="Authorize a subscription to pull funds")
    p_auth.add_argument("--holder", required=True)
    p_auth.add_argument("--sub", required=True, help="Subscription address")
    p_auth.add_argument("--amount", required=True, type=int)

    p_rev = sub.add_parser("revoke", help="Revoke a subscription's pull-authorization")
    p_rev.add_argument("--holder", required=True)
    p_rev.add_argument("--sub", required=True, help="Subscription address")

    p_subs = sub.add_parser("subscribe", help="Subscribe to a tier")
    p_subs.add_argument("--sub", required=True, help="Subscription address")
    p_subs.add_argument("--caller", required=True)
    p_subs.add_argument("--tier", required=True, type=int, help="Tier ID")

    p_unsub = sub.add_parser("unsubscribe", help="Cancel a subscription")
    p_unsub.add_argument("--sub", required=True, help="Subscription address")
    p_unsub.add_argument("--caller", required=True)

    p_check = sub.add_parser("check", help="Show a subscriber's state")
    p_check.add_argument("--sub", required=True, help="Subscription address")
    p_check.add_argument("--address", required=True)

    p_settle = sub.add_parser("settle", help="Charge or lapse a batch of subscribers")
    p_settle.add_argument("--sub", required=True, help="Subscription address")
    p_settle.add_argument("addresses", nargs="*", help="Subscriber addresses, in order")

    sub.add_parser("check-invariants", help="Run billing parameter invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level))

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "create-subscription": cmd_create_subscription,
        "create-tier": cmd_create_tier,
        "fund": cmd_fund,
        "authorize": cmd_authorize,
        "revoke": cmd_revoke,
        "subscribe": cmd_subscribe,
        "unsubscribe": cmd_unsubscribe,
        "check": cmd_check,
        "settle": cmd_settle,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())

import argparse
import asyncio
import json
from typing import Any, Dict

from promo_engine.core.errors import PricingError
from promo_engine.db.session import SessionLocal, init_models
from promo_engine.services import expiry, rule_application


async def apply_rule(rule_id: int) -> Dict[str, Any]:
    async with SessionLocal() as session:
        summary = await rule_application.apply_rule(session, rule_id)
        return {"rule_id": rule_id, **summary.as_dict()}


async def revert_rule(rule_id: int) -> Dict[str, Any]:
    async with SessionLocal() as session:
        reverted = await rule_application.revert_rule(session, rule_id)
        return {"rule_id": rule_id, "reverted": reverted}


async def reconcile_expired() -> Dict[str, Any]:
    async with SessionLocal() as session:
        report = await expiry.run_once(session)
        return report.as_dict()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Promotion pricing maintenance")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create database tables")

    apply_cmd = subparsers.add_parser("apply-rule", help="Apply a promotion rule to the catalog")
    apply_cmd.add_argument("rule_id", type=int)

    revert_cmd = subparsers.add_parser("revert-rule", help="Revert a promotion rule's price changes")
    revert_cmd.add_argument("rule_id", type=int)

    subparsers.add_parser("reconcile-expired", help="Revert expired promotion rules and promo codes")
    return parser


def _print(result: Dict[str, Any]) -> None:
    print(json.dumps(result, indent=2, sort_keys=True))


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "init-db":
        asyncio.run(init_models())
        print("Database tables created")
        return True

    if args.command == "apply-rule":
        _print(asyncio.run(apply_rule(args.rule_id)))
        return True

    if args.command == "revert-rule":
        _print(asyncio.run(revert_rule(args.rule_id)))
        return True

    if args.command == "reconcile-expired":
        _print(asyncio.run(reconcile_expired()))
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    try:
        handled = _run_cli_command(args)
    except PricingError as exc:
        raise SystemExit(f"{exc.code}: {exc.message}") from exc
    if not handled:
        parser.print_help()


if __name__ == "__main__":
    main()

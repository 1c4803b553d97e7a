"""
backend/settle.py

Purpose:
    Operator CLI for draw settlement: settle a draw, re-drive pending
    payouts, or print a stored settlement summary.

    python settle.py settle <draw_id>
    python settle.py reconcile [--draw-id <draw_id>]
    python settle.py show <draw_id>

Dependencies:
    - app.database
    - app.services.settlement_service
"""

import argparse
import asyncio
import os
import sys
from pprint import pprint

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from app.database import close_db, connect_db
from app.middleware.logging import setup_logging
from app.services import settlement_service
from app.services.errors import SettlementError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Matka draw settlement tools")
    sub = parser.add_subparsers(dest="command", required=True)

    settle = sub.add_parser("settle", help="Settle a declared draw")
    settle.add_argument("draw_id")

    reconcile = sub.add_parser("reconcile", help="Retry pending winning credits")
    reconcile.add_argument("--draw-id", default=None)

    show = sub.add_parser("show", help="Print a draw's settlement summary")
    show.add_argument("draw_id")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging()

    try:
        await connect_db()
        if args.command == "settle":
            summary = await settlement_service.settle_draw(args.draw_id)
            if summary.already_settled:
                print(f"\nDraw {args.draw_id} was already settled.")
            pprint(summary.model_dump(mode="json"), indent=2)
            return 0 if summary.payouts_pending == 0 else 2

        if args.command == "reconcile":
            credited = await settlement_service.retry_pending_payouts(args.draw_id)
            print(f"\nCredited {credited} pending payouts.")
            return 0

        summary = await settlement_service.get_settlement(args.draw_id)
        if summary is None:
            print(f"\nDraw {args.draw_id} has not been settled.")
            return 1
        pprint(summary.model_dump(mode="json"), indent=2)
        return 0
    except SettlementError as e:
        print(f"SETTLEMENT ERROR: {e}")
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))

#!/usr/bin/env python3
"""
Operator checks against the external record store.

Default run:
- confirms the store answers `getProducts`
- prints product count, categories and every product at or below its
  minimum quantity

With --audit <operation.json> it also re-derives the settlement of a recorded
return/exchange (the JSON body that was sent as `processReturnExchange`)
against the original invoice and the current catalog prices, and lists every
mismatch. Read-only; nothing is written to the store.

Config comes from the same env vars as the POS (POS_STORE_URL,
POS_STORE_TOKEN, POS_STORE_TIMEOUT_S, POS_BRANCH_ID) or CLI flags.
"""

from __future__ import annotations

import argparse
import json
import os
import sys


# Allow running from repo root without installing as a package.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from pydantic import ValidationError as PydanticValidationError  # noqa: E402

from retail_pos.app.catalog import categories, stock_status  # noqa: E402
from retail_pos.app.config import settings  # noqa: E402
from retail_pos.app.errors import PosError  # noqa: E402
from retail_pos.app.invoices import reconcile_operation  # noqa: E402
from retail_pos.app.models import RecordedOperation  # noqa: E402
from retail_pos.app.store import StoreClient  # noqa: E402


def _die(msg: str) -> None:
    print(f"error: {msg}", file=sys.stderr)
    raise SystemExit(2)


def _load_operation(path: str) -> RecordedOperation:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as ex:
        _die(f"cannot read {path}: {ex}")
    # Accept either the bare payload or the full {"action", "payload"} body.
    if isinstance(raw, dict) and isinstance(raw.get("payload"), dict):
        raw = raw["payload"]
    try:
        return RecordedOperation.model_validate(raw)
    except PydanticValidationError as ex:
        _die(f"{path} is not a valid return/exchange record: {ex.errors()[0].get('msg')}")


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--store-url", default=settings.store_url)
    ap.add_argument("--token", default=settings.store_token)
    ap.add_argument("--timeout", type=float, default=settings.store_timeout_s)
    ap.add_argument("--branch", default=settings.branch_id)
    ap.add_argument("--audit", default="", help="Recorded return/exchange JSON to reconcile against its invoice")
    args = ap.parse_args()

    if not str(args.store_url or "").strip():
        _die("missing store url: set POS_STORE_URL (or pass --store-url)")

    cli = StoreClient(base_url=str(args.store_url), token=str(args.token or ""), timeout_s=args.timeout, branch_id=args.branch)
    try:
        products = cli.fetch_products()
    except PosError as err:
        _die(f"store check failed: {err.message}")

    low = [p for p in products if stock_status(p) != "available"]
    report = {
        "ok": True,
        "products": len(products),
        "categories": categories(products)[1:],
        "low_stock": [
            {"id": p.id, "name": p.name, "quantity": p.quantity, "min_quantity": p.min_quantity, "status": stock_status(p)}
            for p in low
        ],
    }

    if args.audit:
        operation = _load_operation(args.audit)
        try:
            details = cli.fetch_invoice_details(operation.invoice_id)
        except PosError as err:
            _die(f"cannot load invoice {operation.invoice_id}: {err.message}")
        problems = reconcile_operation(operation, details, {p.id: p.selling_price for p in products})
        report["audit"] = {
            "invoice_id": operation.invoice_id,
            "client_operation_id": operation.client_operation_id,
            "consistent": not problems,
            "problems": problems,
        }
        if problems:
            report["ok"] = False

    print(json.dumps(report, indent=2, default=str))
    return 0 if report["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())

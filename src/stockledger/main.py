"""
Command line entrypoint for stockledger.

What it does:
- Loads runtime settings from `config/config.yaml` and `STOCKLEDGER_*`
  environment variables.
- Opens the SQLite key-value store named by `store_path` and wraps it in a
  `LedgerEngine`.
- Runs one subcommand (record/delete trades, list, holdings, balance,
  profit report, price overrides, funds, export/import, statistics) and
  prints JSON to stdout.

Where it is used:
- Installed as the `stockledger` console script; also `python -m stockledger.main`.

Key related modules:
- `stockledger.config.loader.load_settings`
- `stockledger.ledger.engine.LedgerEngine`
"""
from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from typing import Any, List, Optional

from prometheus_client import start_http_server

from stockledger.config.loader import load_settings
from stockledger.ledger.engine import LedgerEngine
from stockledger.ledger.errors import LedgerError


def _default(o: Any) -> Any:
    if isinstance(o, (dt.date, dt.datetime)):
        return o.isoformat()
    if hasattr(o, "model_dump"):
        return o.model_dump(mode="json")
    if is_dataclass(o):
        return asdict(o)
    raise TypeError(f"not serializable: {type(o).__name__}")


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=_default))


def _date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stockledger", description="Stock transaction ledger")
    p.add_argument("--config", default=os.getenv("STOCKLEDGER_CONFIG", "config/config.yaml"))
    p.add_argument("--store", help="override store_path from settings")
    p.add_argument("--metrics-port", type=int, default=None, help="serve Prometheus metrics on this port")
    sub = p.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="record a buy or sell")
    add.add_argument("kind", choices=["buy", "sell"])
    add.add_argument("symbol")
    add.add_argument("quantity", type=int)
    add.add_argument("price", type=float)
    add.add_argument("--date", type=_date, default=None)
    add.add_argument("--name", default="")
    add.add_argument("--note", default="")
    add.add_argument("--fee", type=float, default=0.0)

    delete = sub.add_parser("delete", help="delete a transaction by id")
    delete.add_argument("transaction_id")

    ls = sub.add_parser("list", help="list transactions, newest first")
    ls.add_argument("--symbol")
    ls.add_argument("--kind", choices=["buy", "sell"])
    ls.add_argument("--from", dest="date_from", type=_date)
    ls.add_argument("--to", dest="date_to", type=_date)

    holdings = sub.add_parser("holdings", help="open positions")
    holdings.add_argument("--method", choices=["weighted_average", "fifo"])

    sub.add_parser("balance", help="cash balance")
    sub.add_parser("summary", help="dashboard totals")

    report = sub.add_parser("report", help="unrealized profit report")
    report.add_argument("--sort", choices=["abs_profit", "profit_percent"], default="abs_profit")

    price = sub.add_parser("price", help="set or clear a current price override")
    price.add_argument("symbol")
    price.add_argument("price", type=float, nargs="?")
    price.add_argument("--clear", action="store_true")

    funds = sub.add_parser("funds", help="set initial funds")
    funds.add_argument("amount", type=float)

    export = sub.add_parser("export", help="write the export document")
    export.add_argument("--out", help="file path; stdout when omitted")

    imp = sub.add_parser("import", help="replace stored data from an export document")
    imp.add_argument("path")

    sub.add_parser("stats", help="trade statistics, monthly cash flow, allocation")
    return p


def run(args: argparse.Namespace, engine: LedgerEngine) -> None:
    cmd = args.command
    if cmd == "add":
        tx = engine.add_transaction({
            "kind": args.kind,
            "symbol": args.symbol,
            "quantity": args.quantity,
            "price": args.price,
            "date": args.date or dt.date.today(),
            "name": args.name,
            "note": args.note,
            "fee": args.fee,
        })
        _print(tx.to_record())
    elif cmd == "delete":
        _print(engine.delete_transaction(args.transaction_id).to_record())
    elif cmd == "list":
        txs = engine.search_transactions(args.symbol, args.kind, args.date_from, args.date_to)
        _print([t.to_record() for t in txs])
    elif cmd == "holdings":
        holdings = engine.holdings(args.method)
        _print([dict(asdict(h), avg_cost=h.avg_cost) for h in holdings.values()])
    elif cmd == "balance":
        _print({"balance": engine.account_balance(), "currency": engine.settings.currency})
    elif cmd == "summary":
        _print(engine.summary())
    elif cmd == "report":
        _print(engine.profit_report(args.sort).to_dict())
    elif cmd == "price":
        if args.clear:
            engine.clear_price_override(args.symbol)
        elif args.price is None:
            raise LedgerError("price required unless --clear is given")
        else:
            engine.set_price_override(args.symbol, args.price)
        _print(engine.storage.get_user_prices())
    elif cmd == "funds":
        engine.set_initial_funds(args.amount)
        _print({"initial_funds": engine.storage.get_initial_funds()})
    elif cmd == "export":
        text = engine.export_data()
        if args.out:
            with open(args.out, "w", encoding="utf-8") as f:
                f.write(text)
            logging.info(f"exported ledger to {args.out}")
        else:
            print(text)
    elif cmd == "import":
        with open(args.path, "r", encoding="utf-8") as f:
            _print(engine.import_data(f.read()))
    elif cmd == "stats":
        _print(engine.statistics())


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    if args.store:
        settings = settings.model_copy(update={"store_path": args.store})
    logging.info(f"Cost basis: {settings.cost_basis_method}, oversell policy: {settings.oversell_policy}")

    if args.metrics_port:
        try:
            start_http_server(args.metrics_port)
            logging.info(f"Prometheus metrics server started on :{args.metrics_port}")
        except OSError as e:
            logging.warning(f"Failed to start Prometheus server on :{args.metrics_port}: {e}")

    engine = LedgerEngine.from_settings(settings)
    try:
        run(args, engine)
    except (LedgerError, OSError) as e:
        logging.error(f"{args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

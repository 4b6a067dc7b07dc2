from __future__ import annotations

import argparse
from typing import List, Optional

from .commands import cmd_config_dump, cmd_evaluate, cmd_preflight, cmd_run


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="kalshibot")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Scan 15-minute crypto markets once and execute qualifying pairs")
    p_run.add_argument("--config", action="append", default=None, help="TOML file; repeat to layer (later wins)")
    mode = p_run.add_mutually_exclusive_group()
    mode.add_argument("--live", dest="live", action="store_true", default=None)
    mode.add_argument("--dry-run", dest="live", action="store_false")
    p_run.add_argument("--markets-file", help="JSON market records to scan instead of the exchange")
    p_run.add_argument("--json", action="store_true")
    p_run.add_argument("--metrics-file", help="Write Prometheus text metrics here after the run")

    p_eval = sub.add_parser("evaluate", help="Evaluate one quote against the policy")
    p_eval.add_argument("--yes-ask", required=True)
    p_eval.add_argument("--no-ask", required=True)
    p_eval.add_argument("--seconds-to-close", type=int, required=True)
    p_eval.add_argument("--ticker", default="MANUAL")
    p_eval.add_argument("--config", action="append", default=None)

    p_pf = sub.add_parser("preflight", help="Validate config and credentials before running live")
    p_pf.add_argument("--config", action="append", default=None)
    p_pf.add_argument("--json", action="store_true")

    p_dump = sub.add_parser("config-dump", help="Print the resolved config with secrets redacted")
    p_dump.add_argument("--config", action="append", default=None)

    args = parser.parse_args(argv)

    if args.cmd == "run":
        _, code = cmd_run(
            args.config,
            live=args.live,
            markets_file=args.markets_file,
            as_json=args.json,
            metrics_file=args.metrics_file,
        )
        return code
    elif args.cmd == "evaluate":
        out = cmd_evaluate(args.yes_ask, args.no_ask, args.seconds_to_close, config_paths=args.config, ticker=args.ticker)
        return 1 if out.startswith("INVALID") else 0
    elif args.cmd == "preflight":
        out = cmd_preflight(args.config, as_json=args.json)
        return 1 if out.startswith("INVALID") or '"ok": false' in out else 0
    elif args.cmd == "config-dump":
        out = cmd_config_dump(args.config)
        return 1 if out.startswith("INVALID") else 0
    return 2


if __name__ == "__main__":
    raise SystemExit(main())

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dailypair.config import DEFAULT_SETTINGS, NOTIFICATION_DISPATCHER
from dailypair.database import SessionLocal, create_schema
from dailypair.services.engine import PairingEngine


def main(argv: list[str] | None = None, engine: PairingEngine | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the daily pairing jobs (match at MATCH_HOUR, reap REAP_DELAY_MINUTES after the deadline)")
    parser.add_argument("job", choices=["match", "reap"])
    parser.add_argument("--force", action="store_true", help="re-run matching even if today already has pairings")
    parser.add_argument("--dispatcher", choices=["log", "outbox"], default=NOTIFICATION_DISPATCHER)
    parser.add_argument("--create-schema", action="store_true")
    parser.add_argument("--ignore-schedule", action="store_true", help="run the match job even before today's match hour")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if engine is None:
        if args.create_schema:
            create_schema(SessionLocal)
        engine = PairingEngine.from_session_factory(SessionLocal, DEFAULT_SETTINGS, dispatcher_kind=args.dispatcher)

    schedule = engine.schedule(args.job)
    if args.job == "match":
        if not schedule["due"] and not args.ignore_schedule:
            print(json.dumps({**schedule, "skipped": True}, indent=2, default=str))
            return 0
        out = engine.run_daily_match(force=args.force)
    else:
        out = engine.reap_expired_pairings()
    out["next_run_at"] = schedule["next_run_at"]

    print(json.dumps(out, indent=2, default=str))
    return 1 if out.get("status") == "partial" else 0


if __name__ == "__main__":
    sys.exit(main())

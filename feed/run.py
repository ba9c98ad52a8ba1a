import argparse, json, logging, sys
from datetime import date

from dateutil import parser

from config.config import load_config
from timing.audit import filter_by_id
from timing.trends import business_day_window
from .refresh import RefreshCoordinator
from .source import CsvOrderSource, FetchError, InfluxOrderSource

log = logging.getLogger(__name__)


def _day(s: str) -> date:
    return date.fromisoformat(s)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Order lifecycle timing report")
    ap.add_argument("-c", "--config", default="config/timing.yaml")
    ap.add_argument("--from", dest="first_day", type=_day, required=True, help="first business day, YYYY-MM-DD")
    ap.add_argument("--to", dest="last_day", type=_day, help="last business day (default: --from)")
    ap.add_argument("--site", help="restrict to one site id")
    ap.add_argument("--csv", help="read orders from a CSV export instead of InfluxDB")
    ap.add_argument("--search", help="only list orders whose id contains this text")
    ap.add_argument("--now", help="reference time for open orders (ISO-8601, default: current time)")
    return ap


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)

    source = CsvOrderSource(args.csv) if args.csv else InfluxOrderSource(cfg.source)
    start, end = business_day_window(
        args.first_day, args.last_day or args.first_day, cfg.timing.business_timezone_offset_minutes
    )
    now = parser.isoparse(args.now) if args.now else None

    coordinator = RefreshCoordinator(source, cfg)
    try:
        result = coordinator.refresh(start, end, args.site, now=now)
    except FetchError as e:
        log.error(f"[run] {e}")
        return 1

    out = result.report.to_dict()
    if args.search is not None:
        out["audit"] = [t.to_dict() for t in filter_by_id(result.timelines, args.search)]
    json.dump(out, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

import argparse
import logging

from icbcbot.config import load_settings
from icbcbot.domain import AuthError, ConfigError
from icbcbot.worker import run_check_once


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="IcbcBot: ICBC road test slot checker (single pass)")
    parser.add_argument("--last-name", dest="last_name", help="Last name")
    parser.add_argument("--license-number", dest="license_number", help="Licence number (yellow paper)")
    parser.add_argument("--keyword", help="The keyword used to authenticate")
    parser.add_argument(
        "--location-id",
        dest="location_id",
        action="append",
        default=[],
        help="Exam centre id; repeat for several locations",
    )
    parser.add_argument("--exam-type", dest="exam_type", help="The type of the exam (default 5-R-1)")
    parser.add_argument("--start-date", dest="start_date", help="Earliest date, YYYY-MM-DD (default today)")
    parser.add_argument("--end-date", dest="end_date", help="Latest acceptable date, YYYY-MM-DD")
    parser.add_argument("--pushover-token", dest="pushover_token", help="Pushover application token")
    parser.add_argument("--pushover-user", dest="pushover_user", help="Pushover user key")
    parser.add_argument("--env-file", dest="env_file", help="Path to a .env file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def main() -> int:
    args = _build_parser().parse_args()

    _setup_logging(args.verbose)
    log = logging.getLogger(__name__)

    try:
        settings = load_settings(dotenv_path=args.env_file, overrides=vars(args))
        run_check_once(settings)
    except ConfigError as e:
        log.error("Invalid configuration: %s", e)
        return 2
    except AuthError as e:
        log.error("Authentication failed, no location queried: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())

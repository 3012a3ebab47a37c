"""Command line interface for learning latent tree models"""

import argparse
import logging
import sys
from typing import List, Optional

from .errors import GeastError
from .manager import LearningManager, default_output

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="py-geast",
        description="Learn a latent tree model from mixed discrete and continuous data")
    parser.add_argument("data", nargs="?", help="Delimited data file with a header row")
    parser.add_argument("-i", "--initial", help="Initial model in BIF format")
    parser.add_argument("-s", "--settings", help="YAML settings file")
    parser.add_argument("-c", "--class-variable", default="none",
                        help="Class variable: first, last, none or a column index")
    parser.add_argument("-o", "--output",
                        help="Output model file (default: <data>-result.bif)")
    parser.add_argument("-t", "--threads", type=int, help="Number of threads")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.data or not args.initial:
        parser.print_usage()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    try:
        manager = LearningManager.from_files(
            args.data, args.initial, args.settings, args.class_variable, args.threads)
        result = manager.run(args.output or default_output(args.data))
    except (GeastError, OSError, ValueError) as e:
        logger.error("%s", e)
        return 1

    print(f"Loglikelihood: {result.loglikelihood:f}")
    print(f"BIC Score: {result.bic:f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

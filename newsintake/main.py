"""CLI entry point for the news intake pipeline.

Usage:
    python -m newsintake.main [--config path/to/config.yaml] [--output results.json] [-v]
"""

import argparse
import json
import logging
import sys

from newsintake.config import load_config
from newsintake.orchestrator import run_pipeline


def main() -> None:
    """Parse arguments and run the pipeline."""
    parser = argparse.ArgumentParser(
        description="News intake: fetch, extract and score regional news sources",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration YAML (default: $CONFIG_PATH or config/config.yaml)",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write results JSON to this file instead of stdout",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    args = parser.parse_args()

    # Logs go to stderr when results are written to stdout
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout if args.output else sys.stderr,
    )
    # Suppress noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("News intake starting")

    try:
        config = load_config(args.config)
        results = run_pipeline(config)
    except FileNotFoundError as e:
        logger.error("Configuration file not found: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Pipeline interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error("Pipeline failed: %s", e, exc_info=True)
        sys.exit(1)

    payload = json.dumps(results, indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(payload + "\n")
        logger.info("Wrote %d source results to %s", len(results), args.output)
    else:
        sys.stdout.write(payload + "\n")


if __name__ == "__main__":
    main()

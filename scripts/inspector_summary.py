#!/usr/bin/env python3
"""
Print a markdown summary of the most recent inspector artifacts.
Output can be redirected to a CI job summary.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add parent directory to path to import tablecraft modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tablecraft.parity.inspector import Inspector, InspectorConfig, summary_markdown

logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main(argv=None):
    load_dotenv()

    parser = argparse.ArgumentParser(description='Summarize recent datatable inspector artifacts as markdown')
    parser.add_argument('--dir', help='Inspector storage directory (default: configured storage path)')
    parser.add_argument('--limit', type=int, default=20, help='Number of recent artifacts (default: 20)')
    parser.add_argument('--route', help='Only include artifacts captured for this route')
    args = parser.parse_args(argv)

    config = InspectorConfig.from_settings()
    if args.dir:
        config = config.model_copy(update={"storage_path": Path(args.dir)})

    if not config.storage_path.is_dir():
        # Non-fatal: nothing captured yet
        print(f"Inspector dir not found: {config.storage_path}", file=sys.stderr)
        return 0

    rows = Inspector(config).summary(limit=args.limit, route=args.route)
    if not rows:
        print(f"No inspector JSON found in {config.storage_path}")
        return 0

    print(summary_markdown(rows))
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
CI gate: fail when the parity diff severity exceeds the tolerance.

Either compare two saved payloads (--legacy / --pipeline) or check the diff
reports of the most recent inspector artifacts. Tolerance comes from
--tolerance, then DT_DIFF_TOLERANCE, default 0.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

import orjson
from dotenv import load_dotenv

# Add parent directory to path to import tablecraft modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tablecraft.parity import diff
from tablecraft.parity.inspector import Inspector, InspectorConfig

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def load_payload(path):
    try:
        return orjson.loads(Path(path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        logger.error(f"Cannot read payload {path}: {str(e)}")
        return None


def gate_payloads(legacy_path, pipeline_path, allowed):
    legacy = load_payload(legacy_path)
    if legacy is None:
        return 2
    pipeline = load_payload(pipeline_path) if pipeline_path else None

    report = diff.compare(legacy, pipeline)
    score = diff.severity(report)
    if score > allowed:
        logger.error(f"Diff severity {score} exceeds tolerance {allowed}: {orjson.dumps(report).decode()}")
        return 1
    logger.info(f"Diff severity {score} within tolerance {allowed}")
    return 0


def gate_artifacts(directory, limit, allowed):
    config = InspectorConfig.from_settings()
    if directory:
        config = config.model_copy(update={"storage_path": Path(directory)})
    inspector = Inspector(config)

    failures = 0
    checked = 0
    for path in inspector.files()[:limit]:
        artifact = inspector.read(path)
        if artifact is None:
            continue
        checked += 1
        score = diff.severity(artifact.get("diff") or {})
        if score > allowed:
            failures += 1
            logger.error(f"{path.name}: severity {score} exceeds tolerance {allowed}")

    logger.info(f"Checked {checked} artifacts, {failures} over tolerance {allowed}")
    return 1 if failures else 0


def main(argv=None):
    load_dotenv()

    parser = argparse.ArgumentParser(description='Fail when datatables parity diff severity exceeds tolerance')
    parser.add_argument('--legacy', help='Legacy compiler payload (JSON file)')
    parser.add_argument('--pipeline', help='Pipeline payload (JSON file); missing counts as unavailable')
    parser.add_argument('--dir', help='Inspector storage directory to check instead of payload files')
    parser.add_argument('--limit', type=int, default=20, help='Number of recent artifacts to check (default: 20)')
    parser.add_argument('--tolerance', type=int, help='Allowed severity (default: DT_DIFF_TOLERANCE or 0)')
    args = parser.parse_args(argv)

    allowed = args.tolerance if args.tolerance is not None else diff.tolerance()

    if args.legacy:
        return gate_payloads(args.legacy, args.pipeline, allowed)
    return gate_artifacts(args.dir, args.limit, allowed)


if __name__ == "__main__":
    sys.exit(main())

"""Command line entry point: ``python -m otu_ecology CONFIG.yaml``."""

import argparse
import logging
import sys
from typing import List, Optional

import matplotlib

from otu_ecology.errors import PipelineError

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="otu_ecology",
        description="Run the OTU diversity analysis described by a YAML config.",
    )
    parser.add_argument("config", type=str, help="Path to the YAML configuration file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    matplotlib.use("Agg")

    # imported after the backend is chosen
    from otu_ecology.core.config import Config
    from otu_ecology.pipeline import run_analysis

    try:
        run_analysis(Config(args.config))
    except PipelineError as e:
        logger.error(f"Analysis failed at stage '{e.stage}'")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Script to run the repository dashboard with the resilience layer.
"""

import logging
import sys
from pathlib import Path

# Add repo root to path for imports
sys.path.append(str(Path(__file__).parent))

from resilience.utils.logging import configure_root_logging

logger = logging.getLogger(__name__)

DASHBOARD = Path(__file__).parent / "resilience" / "ui" / "dashboard.py"


def run_app() -> int:
    """Launch the Streamlit dashboard."""
    configure_root_logging()
    logger.info("Starting dashboard from %s", DASHBOARD)

    from streamlit.web import cli as stcli

    sys.argv = ["streamlit", "run", str(DASHBOARD), *sys.argv[1:]]
    return stcli.main()


if __name__ == "__main__":
    sys.exit(run_app())

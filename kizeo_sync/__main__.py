"""
Kizeo Sync - Entrypoint

    python -m kizeo_sync <command> [options]

EXCEPTION HANDLING:
    - SystemExit: Re-raised to preserve exit code
    - Exception: Logged as CRITICAL, sys.exit(1)
"""

import sys

from loguru import logger


def main() -> None:
    try:
        from .cli import cli

        cli(prog_name="kizeo-sync")

    except SystemExit:
        raise

    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        logger.exception(e)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""``python -m voxstudio`` and the ``voxstudio`` console script."""

import sys

from loguru import logger

from voxstudio.cli import app
from voxstudio.cli.utils import console
from voxstudio.core.errors import StudioError


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[warning]Cancelled by user[/warning]")
        sys.exit(130)
    except StudioError as e:
        console.print(f"[error]✗ {e.message}[/error]")
        sys.exit(1)
    except Exception as e:
        logger.opt(exception=e).debug("Unhandled error")
        console.print(f"[error]Error: {e}[/error]")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""``python -m kubecraft.bootstrap up|destroy``"""
from __future__ import annotations

import logging
import sys

from ..config import get_settings
from .main import SystemBootstrapper

USAGE = "usage: python -m kubecraft.bootstrap up|destroy"


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1 or args[0] not in ("up", "destroy"):
        print(USAGE, file=sys.stderr)
        return 2
    settings = get_settings()
    logging.basicConfig(level=settings.logging.level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    bootstrapper = SystemBootstrapper(settings)
    if args[0] == "up":
        bootstrapper.up()
    else:
        bootstrapper.destroy()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

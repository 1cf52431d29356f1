from __future__ import annotations

import logging
import sys

_NOISY = ("urllib3", "sqlalchemy.engine", "werkzeug")


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))

    root.handlers.clear()
    root.addHandler(handler)

    # Request lines come from app.request; library chatter stays at WARNING.
    for name in _NOISY:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))

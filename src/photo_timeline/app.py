from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from PySide6.QtWidgets import QApplication

from .core.logger import configure_logging
from .core.settings import load_settings
from .ui.main_window import MainWindow

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Photo Timeline")
    parser.add_argument(
        "image",
        nargs="?",
        help="Optionaler Pfad zu einer Bilddatei, die beim Start geöffnet wird.",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Pfad zu einer settings.json, die die Standardwerte überschreibt.",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        default=None,
        help="Log-Level der Konsolenausgabe (überschreibt logging.console_level).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    settings = load_settings(args.settings)
    console_level = getattr(logging, args.log_level) if args.log_level else None
    configure_logging(settings.logging, console_level)
    initial_path = Path(args.image).expanduser() if args.image else None

    app = QApplication(sys.argv)
    app.setApplicationName("Photo Timeline")
    app.setDesktopFileName("photo-timeline")

    if initial_path and not initial_path.exists():
        logging.getLogger(__name__).warning("Startbild nicht gefunden: %s", initial_path)
        initial_path = None

    window = MainWindow(settings, initial_path=initial_path)
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())

"""Mensura application entry point."""

import argparse
import sys


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mensura", description="Measure distances and angles on images.")
    parser.add_argument("images", nargs="*", help="image files to open")
    parser.add_argument("--project", help="open a saved .mensura project")
    return parser.parse_args(argv)


def main(argv=None):
    """Launch the Mensura application."""
    args = parse_args(argv)

    from PySide6.QtWidgets import QApplication

    from mensura.config.manager import ConfigManager
    from mensura.core.logging import setup_logging
    from mensura.ui.main_window import MensuraMainWindow

    app = QApplication(sys.argv[:1])
    app.setApplicationName("Mensura")
    app.setOrganizationName("Mensura")

    config = ConfigManager()
    config.load()
    setup_logging(config)

    window = MensuraMainWindow(config)
    if args.project:
        window.open_project(args.project)
    elif args.images:
        window.session.add_images(args.images)
    window.show()

    sys.exit(app.exec())


if __name__ == "__main__":
    main()

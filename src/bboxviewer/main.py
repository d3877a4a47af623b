#!/usr/bin/env python3
from __future__ import annotations
import argparse, logging, signal, sys
from pathlib import Path
from PyQt5 import QtCore, QtWidgets

from .common.config import load_config
from .common.logging_config import setup_logging

log = logging.getLogger("main")

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live camera frames with detection boxes.")
    parser.add_argument("--config", type=Path, default=None, help="YAML file with viewer settings")
    parser.add_argument("--base-url", default=None, help="Camera base URL, e.g. http://192.168.4.1")
    parser.add_argument("--zoom", type=float, default=None, help="Initial zoom factor")
    parser.add_argument("--label", default=None, help="Filename label for saved frames and clips")
    parser.add_argument("--save-dir", default=None, help="Directory for saved frames and clips")
    parser.add_argument("--log-level", default=None, help="Overrides APP_LOG_LEVEL")
    return parser

def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    try:
        cfg = load_config(args.config, base_url=args.base_url, zoom=args.zoom,
                          label=args.label, save_dir=args.save_dir)
    except ValueError as e:
        log.error("%s", e)
        return 2

    from .gui.main_window import MainWindow

    app = QtWidgets.QApplication(sys.argv[:1])
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # keeps the interpreter ticking so SIGINT is delivered while Qt runs
    timer = QtCore.QTimer()
    timer.start(100)
    timer.timeout.connect(lambda: None)
    w = MainWindow(cfg)
    w.show()
    return app.exec_()

if __name__ == "__main__":
    sys.exit(main())

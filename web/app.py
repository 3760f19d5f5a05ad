#!/usr/bin/env python3
"""Run the POS licence server."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import PORT
from web import create_app

app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=PORT)

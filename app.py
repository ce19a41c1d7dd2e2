#!/usr/bin/env python3
import os
import sys
from retroshelf import create_app, configure_logging, default_data_root, ensure_root, BIND, PORT

def _resolve_data_root() -> str:
    if len(sys.argv) >= 2:
        return os.path.abspath(sys.argv[1])
    return default_data_root()

if __name__ == "__main__":
    configure_logging()
    data_root = _resolve_data_root()
    ensure_root(data_root)
    app = create_app(data_root)
    app.run(host=BIND, port=PORT, debug=False, threaded=True)

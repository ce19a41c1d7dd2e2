import logging
import os
from pathlib import Path
from flask import Flask

from .launch import Launcher
from .library import Library
from .models import LibraryPaths
from .routes import bp as routes_bp

# Bind only localhost unless overridden
BIND = os.environ.get("BIND", "127.0.0.1")
PORT = int(os.environ.get("PORT", "5000"))
LOG_LEVEL = os.environ.get("RETROSHELF_LOG_LEVEL", "INFO")

def default_data_root() -> str:
    """Portable root: RETROSHELF_DATA_ROOT, else next to the AppImage, else the cwd."""
    env = os.environ.get("RETROSHELF_DATA_ROOT")
    if env:
        return os.path.abspath(env)
    appimage = os.environ.get("APPIMAGE")
    if appimage:
        return os.path.dirname(os.path.abspath(appimage))
    return os.getcwd()

def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def ensure_root(data_root: str) -> None:
    if not os.path.isdir(data_root):
        raise SystemExit(f"Data root does not exist: {data_root}")

def create_app(data_root: str) -> Flask:
    app = Flask(__name__)
    app.config["DATA_ROOT"] = data_root
    app.config["APP_TITLE"] = "Retroshelf"
    app.config["SETTINGS_FILE"] = os.path.join(data_root, "app_settings.json")
    app.config["LIBRARY_FILE"] = os.path.join(data_root, "library.json")

    library = Library.load(Path(app.config["LIBRARY_FILE"]))
    launcher = Launcher(
        LibraryPaths(data_root=Path(data_root)),
        on_library_changed=lambda item: library.save(),
    )
    app.extensions["retroshelf.library"] = library
    app.extensions["retroshelf.launcher"] = launcher

    app.register_blueprint(routes_bp)
    return app

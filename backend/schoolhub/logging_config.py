from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .settings import settings

_configured = False


def configure_logging() -> None:
	global _configured
	if _configured:
		return
	level = settings.log_level.upper()
	root = logging.getLogger()
	root.setLevel(level)

	console = logging.StreamHandler()
	console.setLevel(level)
	console.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s"))
	root.addHandler(console)

	if settings.log_dir:
		log_dir = Path(settings.log_dir)
		log_dir.mkdir(parents=True, exist_ok=True)
		file_handler = RotatingFileHandler(log_dir / "schoolhub.log", maxBytes=2_000_000, backupCount=5)
		file_handler.setLevel(level)
		file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(funcName)s: %(message)s"))
		root.addHandler(file_handler)

	# bcrypt version probing in passlib is noisy at WARNING
	logging.getLogger("passlib").setLevel(logging.ERROR)
	_configured = True

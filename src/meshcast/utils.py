"""
utils.py

Small shared helpers: logging set-up for the command line entry points and a
robust exception logger used by the service and the viewer.

The public helpers:
- `configure_logging(level, log_file=None)` : console (and optional file) logging
- `safe_log_exception(msg, exc, **ctx)` : logs exceptions with context
"""

from typing import Any, Optional
import sys
import logging

logger = logging.getLogger(__name__)

_FORMAT = '[%(levelname)s] %(message)s'
_FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
	"""Attach console (and optionally file) handlers to the ``meshcast`` logger.

	Calling this twice does not duplicate handlers.
	"""
	log = logging.getLogger('meshcast')
	if not log.handlers:
		h = logging.StreamHandler(sys.stdout)
		h.setFormatter(logging.Formatter(_FORMAT))
		log.addHandler(h)
		if log_file:
			# delay=True: the file is not created until the first record
			fh = logging.FileHandler(log_file, delay=True)
			fh.setFormatter(logging.Formatter(_FILE_FORMAT))
			log.addHandler(fh)
	log.setLevel(level)
	for h in log.handlers:
		h.setLevel(level)
	logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
	return log


def safe_log_exception(msg: str, exc: BaseException, **ctx: Any) -> None:
	"""Log an exception with optional ``key=value`` context.

	Falls back to a compact line on ``sys.stderr`` if logging itself fails.
	"""
	try:
		if ctx:
			ctx_s = ' | '.join(f"{k}={v!r}" for k, v in ctx.items())
			logger.error('%s | %s | %s', msg, exc, ctx_s, exc_info=exc)
		else:
			logger.error('%s | %s', msg, exc, exc_info=exc)
	except Exception:
		sys.stderr.write(f'LOGGING FAILURE: {msg} {exc}\n')

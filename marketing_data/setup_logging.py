import logging, sys

# Libraries whose INFO chatter drowns the ETL run messages.
QUIET_LOGGERS = ("uvicorn.access", "urllib3", "openpyxl")

def setup_logging(level: str = "INFO"):
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if root.handlers:  # reload or test runner already attached one
        return
    h = logging.StreamHandler(sys.stdout)
    # ETL jobs run off the event loop, in worker threads
    h.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(threadName)s] %(name)s :: %(message)s"
    ))
    root.addHandler(h)

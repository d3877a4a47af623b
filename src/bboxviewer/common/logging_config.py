import logging, os
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

def setup_logging(default_level: str = "INFO", level: Optional[str] = None):
    name = (level or os.environ.get("APP_LOG_LEVEL", default_level)).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format=LOG_FORMAT,
    )
    # one urllib3 "Starting new connection" line per poll otherwise
    logging.getLogger("urllib3").setLevel(logging.WARNING)

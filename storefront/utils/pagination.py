"""Query-string pagination helpers."""
from typing import Tuple

from flask import current_app, request


def get_page_args() -> Tuple[int, int]:
    """
    Read ?page= (0-based) and ?size= from the request.
    
    Invalid values fall back to the defaults; size is capped at MAX_PAGE_SIZE.
    """
    default_size = current_app.config.get('DEFAULT_PAGE_SIZE', 10)
    max_size = current_app.config.get('MAX_PAGE_SIZE', 100)
    
    page = request.args.get('page', 0, type=int)
    size = request.args.get('size', default_size, type=int)
    
    if page is None or page < 0:
        page = 0
    if size is None or size < 1:
        size = default_size
    return page, min(size, max_size)

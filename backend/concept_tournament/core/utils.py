"""
Helper functions
"""

from typing import Optional
from datetime import datetime


def format_timestamp_with_timezone(timestamp: Optional[datetime]) -> Optional[str]:
    """Format a timestamp with an explicit UTC marker"""
    if not timestamp:
        return None
    # SQLite drops tzinfo; the stored values are UTC
    return timestamp.replace(tzinfo=None).isoformat() + 'Z'


def lane_label(lane_id: int) -> str:
    """Spreadsheet-style lane letter: 0 -> A, 25 -> Z, 26 -> AA"""
    label = ""
    n = lane_id
    while True:
        label = chr(65 + n % 26) + label
        n = n // 26 - 1
        if n < 0:
            return label


def idea_key(lane_id: int, round_number: int, variant: int = 0) -> str:
    """Display key for an idea, e.g. A_v1 for the lane A seed"""
    key = f"{lane_label(lane_id)}_v{round_number + 1}"
    if variant:
        key = f"{key}.{variant}"
    return key

import re
from datetime import time
from typing import Optional

CLOCK_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", re.I)

def parse_clock(text: str) -> Optional[time]:
    """'18:30', '6 pm', '6:30PM' -> time; None if no clock time is present."""
    for m in CLOCK_RE.finditer(text or ""):
        hh, mm, ampm = int(m.group(1)), int(m.group(2) or 0), (m.group(3) or "").lower()
        if not m.group(2) and not ampm:
            continue  # bare number, not a clock time
        if ampm:
            if not 1 <= hh <= 12:
                continue
            hh = hh % 12 + (12 if ampm == "pm" else 0)
        if 0 <= hh <= 23 and 0 <= mm <= 59:
            return time(hh, mm)
    return None

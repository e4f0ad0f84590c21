from __future__ import annotations

from typing import List, Optional


def log_step(trace: Optional[List[str]], message: str) -> None:
    """Append one line to the calculation log when tracing is enabled."""
    if trace is not None:
        trace.append(message)

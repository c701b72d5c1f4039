from __future__ import annotations

from typing import Optional


class ChartInvariantError(AssertionError):
    """Raised when viewport or measurement math produced an impossible state."""


def check_invariant(condition: bool, message: str, strict: bool, error_sink=None) -> bool:
    """
    Return True when `condition` holds.

    Strict mode (development) raises ChartInvariantError. Otherwise the message is
    reported to the sink and the caller degrades (full extent, unresolved point).
    """
    if condition:
        return True
    if strict:
        raise ChartInvariantError(message)
    report_error(error_sink, f"invariant violated: {message}")
    return False


def report_error(error_sink, message: str) -> None:
    if error_sink is None:
        return
    try:
        error_sink.append_error(message)
    except Exception:
        pass


def report_debug(debug_sink, message: Optional[str]) -> None:
    if debug_sink is None or not message:
        return
    try:
        debug_sink.append(message)
    except Exception:
        pass

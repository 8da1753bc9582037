from .event_logger import make_event_logger, resolve_log_level
from .runtime import Runtime, TerminalPrinter, build_runtime, onboard, run_interactive, run_once, setup_logging
from .settings import Settings, load_settings

__all__ = [
    "Runtime",
    "TerminalPrinter",
    "Settings",
    "build_runtime",
    "load_settings",
    "make_event_logger",
    "onboard",
    "resolve_log_level",
    "run_interactive",
    "run_once",
    "setup_logging",
]

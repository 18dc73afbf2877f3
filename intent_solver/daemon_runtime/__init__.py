from .logging import setup_logger
from .loop import (
    RegistrationError,
    ShutdownRequested,
    bootstrap_dependencies,
    run_orchestrator,
    verify_registration,
)
from .scheduler import AsyncioScheduler, Scheduler
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "AsyncioScheduler",
    "RegistrationError",
    "Scheduler",
    "ShutdownRequested",
    "bootstrap_dependencies",
    "run_orchestrator",
    "setup_logger",
    "verify_registration",
]

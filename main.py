from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time

from dotenv import load_dotenv

from intent_solver.common import guarded_call, log_event
from intent_solver.daemon_runtime import (
    AppSettings,
    RegistrationError,
    ShutdownRequested,
    bootstrap_dependencies,
    run_orchestrator,
    setup_logger,
    verify_registration,
)
from intent_solver.gateways import HttpMatchingGateway, NearLedgerGateway
from intent_solver.intents import IntentOrchestrator
from intent_solver.storage import StorageGateway, StorageSettings


async def main() -> int:
    load_dotenv()
    logger = setup_logger(os.getenv("LOG_LEVEL"))

    app_settings = AppSettings.from_env()
    storage_settings = StorageSettings.from_env()

    storage = StorageGateway(storage_settings, logger)
    ledger = NearLedgerGateway(
        logger=logger,
        rpc_url=app_settings.near_rpc_url,
        solver_contract=app_settings.solver_contract,
        verifier_contract=app_settings.verifier_contract,
        account_id=app_settings.near_account_id,
        private_key=app_settings.near_private_key,
        request_timeout_seconds=app_settings.request_timeout_seconds,
        function_call_gas=app_settings.function_call_gas,
    )
    matching = HttpMatchingGateway(
        logger=logger,
        base_url=app_settings.matching_service_url,
        order_path=app_settings.matching_order_path,
        request_timeout_seconds=app_settings.request_timeout_seconds,
    )
    orchestrator = IntentOrchestrator(
        logger=logger,
        clock=time.time,
        ledger=ledger,
        matching=matching,
        backoff=app_settings.backoff_policy(),
        config=app_settings.orchestrator_config(),
        events=storage,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    exit_code = 0
    started = False
    try:
        await bootstrap_dependencies(
            logger=logger,
            stop_event=stop_event,
            app_settings=app_settings,
            storage=storage,
            ledger=ledger,
            matching=matching,
        )
        await verify_registration(logger=logger, app_settings=app_settings, ledger=ledger)

        await storage.publish_event(
            level="INFO",
            event="solver_started",
            message="Solver process started",
            details={
                "network": app_settings.near_network,
                "solver_contract": app_settings.solver_contract,
                "account_id": app_settings.near_account_id,
                "poll_interval_seconds": app_settings.poll_interval_seconds,
                "max_retry_attempts": app_settings.max_retry_attempts,
            },
        )
        started = True

        await run_orchestrator(
            logger=logger,
            stop_event=stop_event,
            app_settings=app_settings,
            storage=storage,
            orchestrator=orchestrator,
        )
    except ShutdownRequested:
        log_event(
            logger,
            level="info",
            event="shutdown_before_start",
            message="Shutdown requested before the solver started",
        )
    except RegistrationError as error:
        exit_code = 1
        await guarded_call(
            lambda: storage.publish_event(
                level="CRITICAL",
                event="solver_not_registered",
                message="Solver registration check failed",
                details={"error": str(error)},
            ),
            logger=logger,
            event="registration_publish_failed",
            message="Failed to publish registration failure",
        )
    except Exception as error:
        exit_code = 1
        log_event(
            logger,
            level="exception",
            event="orchestrator_failed",
            message="Orchestrator stopped on an unrecoverable error",
            error=str(error),
        )
    finally:
        if started:
            await guarded_call(
                lambda: storage.publish_event(
                    level="INFO" if exit_code == 0 else "ERROR",
                    event="solver_stopped",
                    message="Solver process stopped",
                    details={"exit_code": exit_code},
                ),
                logger=logger,
                event="shutdown_publish_failed",
                message="Failed to publish solver_stopped event",
            )

        await guarded_call(
            matching.close,
            logger=logger,
            event="shutdown_matching_close_failed",
            message="Failed to close matching client",
        )
        await guarded_call(
            ledger.close,
            logger=logger,
            event="shutdown_ledger_close_failed",
            message="Failed to close ledger client",
        )
        await guarded_call(
            storage.close,
            logger=logger,
            event="shutdown_storage_close_failed",
            message="Failed to close storage",
        )

        log_event(
            logger,
            level="info",
            event="shutdown_completed",
            message="Shutdown completed",
            exit_code=exit_code,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))

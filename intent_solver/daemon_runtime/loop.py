from __future__ import annotations

import asyncio
import logging

from intent_solver.common import guarded_call, log_event
from intent_solver.gateways import HttpMatchingGateway, NearLedgerGateway
from intent_solver.intents import IntentOrchestrator
from intent_solver.storage import StorageGateway

from .scheduler import AsyncioScheduler, Scheduler, wait_with_stop
from .settings import AppSettings


class ShutdownRequested(RuntimeError):
    pass


class RegistrationError(RuntimeError):
    pass


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    ledger: NearLedgerGateway,
    matching: HttpMatchingGateway,
) -> None:
    while not stop_event.is_set():
        try:
            await storage.connect()
            await ledger.connect()
            await matching.connect()
            return
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                error=str(error),
            )
            await guarded_call(
                lambda: storage.publish_event(
                    level="ERROR",
                    event="bootstrap_error",
                    message="Failed to initialize dependencies",
                    details={"error": str(error)},
                ),
                logger=logger,
                event="bootstrap_publish_error_failed",
                message="Failed to publish bootstrap error",
            )
            await guarded_call(
                matching.close,
                logger=logger,
                event="bootstrap_matching_close_failed",
                message="Failed to close matching client during bootstrap retry",
            )
            await guarded_call(
                ledger.close,
                logger=logger,
                event="bootstrap_ledger_close_failed",
                message="Failed to close ledger client during bootstrap retry",
            )
            await guarded_call(
                storage.close,
                logger=logger,
                event="bootstrap_storage_close_failed",
                message="Failed to close storage during bootstrap retry",
            )
            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise ShutdownRequested("Shutdown requested before dependencies were initialized.")


async def verify_registration(
    *,
    logger: logging.Logger,
    app_settings: AppSettings,
    ledger: NearLedgerGateway,
) -> None:
    if app_settings.skip_registration_check:
        log_event(
            logger,
            level="warning",
            event="registration_check_skipped",
            message="Solver registration check is disabled",
        )
        return

    registered = await ledger.is_solver_registered()
    if not registered:
        log_event(
            logger,
            level="critical",
            event="solver_not_registered",
            message="Solver contract is not registered with the verifier",
            solver_contract=app_settings.solver_contract,
            verifier_contract=app_settings.verifier_contract,
        )
        raise RegistrationError(
            f"Solver {app_settings.solver_contract} is not registered with {app_settings.verifier_contract}"
        )

    log_event(
        logger,
        level="info",
        event="solver_registered",
        message="Solver registration confirmed",
        solver_contract=app_settings.solver_contract,
    )


async def report_status(
    *,
    logger: logging.Logger,
    storage: StorageGateway,
    orchestrator: IntentOrchestrator,
) -> None:
    clear_requests = await guarded_call(
        storage.pop_clear_requests,
        logger=logger,
        event="clear_requests_read_failed",
        message="Failed to read operator clear requests",
        default=[],
    )
    for intent_id in clear_requests or []:
        orchestrator.clear_intent(intent_id)

    await guarded_call(
        storage.update_heartbeat,
        logger=logger,
        event="heartbeat_update_failed",
        message="Failed to update heartbeat",
    )
    await guarded_call(
        lambda: storage.write_status(orchestrator.status_snapshot()),
        logger=logger,
        event="status_write_failed",
        message="Failed to write status snapshot",
    )


def register_loops(
    *,
    scheduler: Scheduler,
    logger: logging.Logger,
    app_settings: AppSettings,
    storage: StorageGateway,
    orchestrator: IntentOrchestrator,
) -> None:
    scheduler.every("health", app_settings.health_interval_seconds, orchestrator.probe_health_once)
    scheduler.every("poll", app_settings.poll_interval_seconds, orchestrator.poll_once)
    scheduler.every("sweep", app_settings.sweep_interval_seconds, orchestrator.sweep_once)
    scheduler.every(
        "settlement",
        app_settings.settlement_interval_seconds,
        lambda: orchestrator.settle_once(storage.record_settled_trade),
    )
    scheduler.every(
        "status",
        app_settings.status_interval_seconds,
        lambda: report_status(logger=logger, storage=storage, orchestrator=orchestrator),
    )


async def run_orchestrator(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    orchestrator: IntentOrchestrator,
) -> None:
    # Establish gateway state before the first poll dispatches anything.
    await orchestrator.probe_health_once()

    scheduler = AsyncioScheduler(logger=logger, stop_event=stop_event)
    register_loops(
        scheduler=scheduler,
        logger=logger,
        app_settings=app_settings,
        storage=storage,
        orchestrator=orchestrator,
    )
    log_event(
        logger,
        level="info",
        event="orchestrator_started",
        message="Intent orchestrator loops started",
        gateway_online=orchestrator.gateway_state.online,
        poll_interval_seconds=app_settings.poll_interval_seconds,
        sweep_interval_seconds=app_settings.sweep_interval_seconds,
        health_interval_seconds=app_settings.health_interval_seconds,
    )

    try:
        await scheduler.run()
    finally:
        await orchestrator.drain(app_settings.shutdown_grace_seconds)

"""
Application entry point — wires dependencies and starts the whitelist scheduler.

Composition root: creates the concrete adapters, binds them into the
whitelist refresh job, and hands the job to the scheduler.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

  1. Load and validate configuration from environment
  2. Configure structlog
  3. Create the repository, participant directory and per-environment engines
  4. Bind the refresh job (partial application with ports)
  5. Create and start the scheduler
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from functools import partial

import structlog

from connection_manager import __version__
from connection_manager.adapters.repository import (
    PsycopgEndpointRepository,
    PsycopgParticipantDirectory,
)
from connection_manager.adapters.vault_engine import VaultCertificateEngine
from connection_manager.adapters.x509_inspector import X509CertificateInspector
from connection_manager.config import AppSettings
from connection_manager.railway import Result
from connection_manager.scheduler import create_scheduler
from connection_manager.services.onboarding import refresh_all_whitelists


def configure_structlog(log_level: str = "INFO") -> None:
    """Configure structlog: ISO timestamps, level, console rendering."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def engine_factory(settings: AppSettings) -> Callable[[int], VaultCertificateEngine]:
    """Return env_id → engine; engines share one inspector and are cached per environment."""
    inspector = X509CertificateInspector()
    engines: dict[int, VaultCertificateEngine] = {}

    def engine_for(env_id: int) -> VaultCertificateEngine:
        if env_id not in engines:
            engines[env_id] = VaultCertificateEngine(
                base_url=settings.engine.url,
                token=settings.engine.token.get_secret_value(),
                env_id=env_id,
                pki_mount=settings.engine.pki_mount,
                root_pki_mount=settings.engine.root_pki_mount,
                kv_mount=settings.engine.kv_mount,
                issue_role=settings.engine.issue_role,
                issue_ttl=settings.engine.issue_ttl,
                timeout=settings.http_timeout_seconds,
                verify_tls=settings.engine.verify_tls,
                inspector=inspector,
            )
        return engines[env_id]

    return engine_for


type _Adapters = tuple[
    Callable[[int], VaultCertificateEngine],
    PsycopgEndpointRepository,
    PsycopgParticipantDirectory,
]


def _create_adapters(settings: AppSettings) -> _Adapters:
    dsn = settings.database.get_dsn()
    return engine_factory(settings), PsycopgEndpointRepository(dsn), PsycopgParticipantDirectory(dsn)


def create_refresh_job(settings: AppSettings) -> Callable[[], Result[int]]:
    """The zero-argument whitelist refresh job run by the scheduler and /trigger."""
    engine_for, repository, directory = _create_adapters(settings)
    return partial(
        refresh_all_whitelists,
        engine_for=engine_for,
        repository=repository,
        directory=directory,
    )


def main() -> None:
    """Wire dependencies and launch the scheduled whitelist refresh."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    scheduler = create_scheduler(
        job_fn=create_refresh_job(settings),
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    log.info("app.scheduler_starting", cron=settings.scheduler.cron)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    except SystemExit:
        log.info("app.shutdown", reason="signal received")
        raise
    except Exception as e:
        log.error("app.fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()

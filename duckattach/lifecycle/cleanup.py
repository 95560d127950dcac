"""Best-effort rollback of a partially completed attach."""

from dataclasses import dataclass, field
from typing import List, Optional

from duckattach.engine.pool import EngineConnectionPool
from duckattach.lifecycle.classify import sanitize_error_message
from duckattach.logging import get_logger
from duckattach.utils.sql import quote_identifier
from duckattach.vault.base import SecretVault

logger = get_logger(__name__)


@dataclass
class PartialAttachState:
    """Whatever an attach pipeline created before it failed.

    The pipeline fills this in as it goes: ``detach_statements`` once the
    attach (or view creation) has been issued, ``secret_name`` once the
    engine secret exists, ``vault_ref`` once a private vault secret was
    written. Only the parts that were actually created are undone.
    """

    detach_statements: List[str] = field(default_factory=list)
    secret_name: Optional[str] = None
    vault_ref: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.detach_statements or self.secret_name or self.vault_ref)


@dataclass
class CleanupReport:
    """Steps that ran and steps that failed during a rollback."""

    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failed


class CleanupCoordinator:
    """Undo engine and vault side effects of a failed attach.

    Steps run in order (detach, drop engine secret, delete vault secret) and
    each one is attempted regardless of earlier failures. Failures are
    logged and recorded in the returned report; ``rollback`` never raises.
    """

    def __init__(self, pool: EngineConnectionPool, vault: SecretVault):
        self.pool = pool
        self.vault = vault

    async def rollback(self, state: PartialAttachState) -> CleanupReport:
        report = CleanupReport()
        if state.is_empty:
            return report

        for statement in state.detach_statements:
            await self._run_step(
                f"detach: {statement}", self.pool.query(statement), report
            )

        if state.secret_name:
            drop_secret = f"DROP SECRET IF EXISTS {quote_identifier(state.secret_name)}"
            await self._run_step(
                f"drop secret {state.secret_name}", self.pool.query(drop_secret), report
            )

        if state.vault_ref:
            await self._run_step(
                f"delete vault secret {state.vault_ref}",
                self.vault.delete(state.vault_ref),
                report,
            )

        if report.failed:
            logger.warning(
                "Cleanup finished with %d failed step(s): %s",
                len(report.failed),
                "; ".join(report.failed),
            )
        else:
            logger.debug("Cleanup completed: %s", "; ".join(report.completed))
        return report

    async def _run_step(self, label: str, awaitable, report: CleanupReport) -> None:
        try:
            await awaitable
            report.completed.append(label)
        except Exception as e:
            logger.warning(
                "Cleanup step '%s' failed: %s", label, sanitize_error_message(str(e))
            )
            report.failed.append(label)

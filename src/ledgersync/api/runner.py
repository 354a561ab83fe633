"""
Background migration runner owned by the API application.

``POST /migrations`` only freezes the dataset; this runner then drives the
migration on a daemon thread with its own database connection, so the
request thread never blocks on waves.  Workers process the jobs the waves
enqueue.  If the API process dies, ``ledgersync migration run <id>``
resumes the migration once the runner lease goes stale.
"""

from __future__ import annotations

import threading

from ledgersync.core.connection import create_connection
from ledgersync.core.errors import LedgerSyncError
from ledgersync.core.logging import get_logger
from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.migration.controller import BatchMigrationController
from ledgersync.ops.components import migration_controller
from ledgersync.ops.context import OperationContext

logger = get_logger(__name__)


class MigrationRunner:
    """Run started migrations on background threads, one thread per migration."""

    def __init__(self, settings: LedgerSyncSettings):
        self._settings = settings
        self._lock = threading.Lock()
        self._threads: dict[str, threading.Thread] = {}
        self._controllers: dict[str, BatchMigrationController] = {}

    def submit(self, migration_id: str) -> bool:
        """Start driving *migration_id*.  Returns ``False`` if already running here."""
        with self._lock:
            existing = self._threads.get(migration_id)
            if existing is not None and existing.is_alive():
                return False
            thread = threading.Thread(
                target=self._run,
                args=(migration_id,),
                name=f"migration-{migration_id}",
                daemon=True,
            )
            self._threads[migration_id] = thread
        thread.start()
        return True

    def _run(self, migration_id: str) -> None:
        conn, _info = create_connection(self._settings.database_url)
        try:
            controller = migration_controller(
                OperationContext(conn=conn, caller="api", settings=self._settings)
            )
            with self._lock:
                self._controllers[migration_id] = controller
            migration = controller.run(migration_id)
            logger.info(
                "background_migration_finished",
                migration_id=migration_id,
                state=migration.state.value,
            )
        except LedgerSyncError as exc:
            logger.warning("background_migration_refused", migration_id=migration_id, error=exc.message)
        except Exception as exc:
            logger.exception("background_migration_crashed", migration_id=migration_id, error=str(exc))
        finally:
            with self._lock:
                self._controllers.pop(migration_id, None)
                self._threads.pop(migration_id, None)
            conn.close()

    def active(self) -> list[str]:
        with self._lock:
            return [mid for mid, t in self._threads.items() if t.is_alive()]

    def shutdown(self, timeout: float = 5.0) -> None:
        """Ask every controller to stop after its current step, then join."""
        with self._lock:
            controllers = list(self._controllers.values())
            threads = list(self._threads.values())
        for controller in controllers:
            controller.stop()
        for thread in threads:
            thread.join(timeout)

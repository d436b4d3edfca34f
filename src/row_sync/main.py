"""
Row Sync Main Entry Point
Replicates new rows of the tracked tables from PostgreSQL to Solace
"""

import argparse
import logging
import sys
from typing import List, Optional

import psycopg2

from .config import RowSyncConfig, load_config
from .db import DatabasePool
from .errors import SyncError
from .offset_store import OffsetStore
from .publisher import StreamPublisher
from .schema_export import export_schema, publish_schema
from .supervisor import SyncSupervisor

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class RowSyncService:
    """Owns the shared pool and publisher for the lifetime of the process"""

    def __init__(self, config: RowSyncConfig):
        self.config = config
        self.pool = DatabasePool(config.database)
        self.publisher = StreamPublisher(config.solace)
        self.supervisor: Optional[SyncSupervisor] = None

    def _connect(self) -> None:
        try:
            self.pool.connect()
        except psycopg2.Error as e:
            raise SyncError(f"Failed to connect to PostgreSQL: {e}") from e
        if not self.publisher.connect():
            raise SyncError("Failed to connect to Solace")

    def export_schema(self) -> None:
        """Publish the source schema once and return"""
        try:
            self._connect()
            schema = export_schema(
                self.pool, self.config.database.schema, self.config.database.database
            )
            publish_schema(self.publisher, schema, self.config.sync.max_part_size)
        finally:
            self._shutdown()

    def run(self) -> None:
        """Sync all tracked tables until signalled"""
        logger.info("=" * 60)
        logger.info("Row Sync Starting")
        logger.info("=" * 60)
        logger.info(f"Tables: {[t.name for t in self.config.tables]}")
        logger.info(
            f"Framing: {self.config.sync.framing}, fetch limit: {self.config.sync.fetch_limit}, "
            f"poll interval: {self.config.sync.poll_interval_seconds}s"
        )
        if self.config.solace.delivery_mode == "direct":
            logger.warning(
                "Direct delivery: offsets are committed without broker acknowledgement, "
                "rows lost in transit are not re-sent"
            )
        logger.info("-" * 60)

        try:
            self._connect()
            offset_store = OffsetStore(self.pool, self.config.sync.tracking_table)
            offset_store.ensure_table()
            self._log_resume_points(offset_store)

            self.supervisor = SyncSupervisor.from_config(self.config, self.pool, self.publisher)
            self.supervisor.run()
        finally:
            self._shutdown()

    def _log_resume_points(self, offset_store: OffsetStore) -> None:
        """Log the committed offset each tracked table will resume from"""
        committed = {e.table_name: e.last_sent_id for e in offset_store.list_entries()}
        for table in self.config.tables:
            stored = committed.get(table.name, 0)
            logger.info(
                f"  {table.name}: committed offset {stored}, resuming after {max(stored, table.initial_offset)}"
            )

    def _shutdown(self) -> None:
        """Cleanup on shutdown"""
        logger.info("-" * 60)
        logger.info("Shutting down row sync...")

        if self.supervisor:
            self.supervisor.log_stats()

        stats = self.publisher.get_stats()
        logger.info(f"Final Stats:")
        logger.info(f"  Messages sent: {stats['messages_sent']}")
        logger.info(f"  Messages failed: {stats['messages_failed']}")
        logger.info(f"  Bytes sent: {stats['bytes_sent']}")
        logger.info(f"  Duration: {stats['elapsed_seconds']}s")

        self.publisher.disconnect()
        self.pool.disconnect()
        logger.info("Row sync stopped")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replicate newly inserted rows from PostgreSQL tables to Solace"
    )
    parser.add_argument("--config", "-c", help="Path to sync.yaml")
    parser.add_argument(
        "--export-schema", action="store_true",
        help="Publish the source schema once and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except SyncError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    # Set log level
    logging.getLogger().setLevel(config.log_level)

    service = RowSyncService(config)
    try:
        if args.export_schema:
            service.export_schema()
        else:
            service.run()
    except SyncError as e:
        logger.error(f"Row sync failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Tests for Row Sync entry point
Covers: argument parsing, config errors, service wiring and shutdown
"""

import logging

import pytest
from unittest.mock import MagicMock, patch

import psycopg2

from src.row_sync.config import RowSyncConfig, TableConfig
from src.row_sync.errors import ConfigError, SyncError
from src.row_sync.main import RowSyncService, main, parse_args
from src.row_sync.models import TrackingEntry


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.export_schema is False

    def test_options(self):
        args = parse_args(["-c", "/etc/sync.yaml", "--export-schema"])
        assert args.config == "/etc/sync.yaml"
        assert args.export_schema is True


@pytest.fixture
def service():
    svc = RowSyncService(RowSyncConfig())
    svc.pool = MagicMock()
    svc.publisher = MagicMock()
    svc.publisher.get_stats.return_value = {
        "messages_sent": 0, "messages_failed": 0, "bytes_sent": 0, "elapsed_seconds": 0,
    }
    return svc


class TestService:

    @patch("src.row_sync.main.SyncSupervisor")
    @patch("src.row_sync.main.OffsetStore")
    def test_run_wires_and_shuts_down(self, mock_store, mock_supervisor, service):
        service.run()

        service.pool.connect.assert_called_once()
        service.publisher.connect.assert_called_once()
        mock_store.return_value.ensure_table.assert_called_once()
        mock_supervisor.from_config.return_value.run.assert_called_once()
        service.publisher.disconnect.assert_called_once()
        service.pool.disconnect.assert_called_once()

    @patch("src.row_sync.main.SyncSupervisor")
    @patch("src.row_sync.main.OffsetStore")
    def test_run_logs_resume_points(self, mock_store, mock_supervisor, service, caplog):
        service.config.tables = [TableConfig("accounts", initial_offset=200), TableConfig("attendance")]
        mock_store.return_value.list_entries.return_value = [
            TrackingEntry("accounts", 50), TrackingEntry("attendance", 120),
        ]
        with caplog.at_level(logging.INFO, logger="src.row_sync.main"):
            service.run()

        mock_store.return_value.list_entries.assert_called_once()
        assert "accounts: committed offset 50, resuming after 200" in caplog.text
        assert "attendance: committed offset 120, resuming after 120" in caplog.text

    @patch("src.row_sync.main.SyncSupervisor")
    @patch("src.row_sync.main.OffsetStore")
    def test_direct_delivery_warns(self, mock_store, mock_supervisor, service, caplog):
        service.config.solace.delivery_mode = "direct"
        with caplog.at_level(logging.WARNING, logger="src.row_sync.main"):
            service.run()
        assert "without broker acknowledgement" in caplog.text

    @patch("src.row_sync.main.SyncSupervisor")
    @patch("src.row_sync.main.OffsetStore")
    def test_persistent_delivery_no_warning(self, mock_store, mock_supervisor, service, caplog):
        with caplog.at_level(logging.WARNING, logger="src.row_sync.main"):
            service.run()
        assert "without broker acknowledgement" not in caplog.text

    def test_solace_unavailable(self, service):
        service.publisher.connect.return_value = False
        with pytest.raises(SyncError, match="Solace"):
            service.run()
        service.pool.disconnect.assert_called_once()

    def test_postgres_unavailable(self, service):
        service.pool.connect.side_effect = psycopg2.OperationalError("refused")
        with pytest.raises(SyncError, match="PostgreSQL"):
            service.run()

    @patch("src.row_sync.main.publish_schema")
    @patch("src.row_sync.main.export_schema")
    def test_export_schema(self, mock_export, mock_publish, service):
        service.export_schema()
        mock_export.assert_called_once_with(service.pool, "public", "prism_db")
        mock_publish.assert_called_once_with(
            service.publisher, mock_export.return_value, 512 * 1024,
        )
        service.publisher.disconnect.assert_called_once()


class TestMain:

    @patch("src.row_sync.main.load_config", side_effect=ConfigError("bad framing"))
    def test_config_error_exit_code(self, _):
        assert main(["-c", "x.yaml"]) == 1

    @patch("src.row_sync.main.RowSyncService")
    @patch("src.row_sync.main.load_config", return_value=RowSyncConfig())
    def test_runs_service(self, _, mock_service):
        assert main([]) == 0
        mock_service.return_value.run.assert_called_once()

    @patch("src.row_sync.main.RowSyncService")
    @patch("src.row_sync.main.load_config", return_value=RowSyncConfig())
    def test_export_mode(self, _, mock_service):
        assert main(["--export-schema"]) == 0
        mock_service.return_value.export_schema.assert_called_once()
        mock_service.return_value.run.assert_not_called()

    @patch("src.row_sync.main.RowSyncService")
    @patch("src.row_sync.main.load_config", return_value=RowSyncConfig())
    def test_sync_error_exit_code(self, _, mock_service):
        mock_service.return_value.run.side_effect = SyncError("Failed to connect to Solace")
        assert main([]) == 1

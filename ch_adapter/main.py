#!/usr/bin/env python3
"""
Clearinghouse Adapter - Main Entry Point

Runs one reconciliation cycle between the Clearinghouse and the local
provider: replicate changed trip tickets, export them as CSV, and push
imported CSV rows back to the Clearinghouse.

Usage:
    ch-adapter                  # Full cycle
    ch-adapter --no-import      # Replicate and export only
    ch-adapter --status         # Show local state without contacting the Clearinghouse
    ch-adapter --verbose        # Enable debug logging

Environment Variables Required:
    CLEARINGHOUSE_API_BASE_URL     - Clearinghouse API URL
    CLEARINGHOUSE_API_KEY          - Provider API key
    CLEARINGHOUSE_API_PRIVATE_KEY  - Provider private key used to sign requests
    IMPORT_FOLDER, IMPORT_COMPLETED_FOLDER, EXPORT_FOLDER (when enabled)

See .env.example for all configuration options.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports if running as script
if __name__ == "__main__" and __package__ is None:
    PROJECT_ROOT = Path(__file__).parent.parent
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import ConfigurationError, Settings, load_settings
from ch_adapter.clearinghouse.client import ClearinghouseAPIError, ClearinghouseClient
from ch_adapter.notify.notifier import EmailNotifier, LogNotifier, Notifier
from ch_adapter.processors.base import ProcessorError
from ch_adapter.processors.csv_export import CsvExportProcessor
from ch_adapter.processors.csv_import import CsvImportProcessor
from ch_adapter.storage.state_store import StateStore, StateStoreError
from ch_adapter.sync.engine import SyncOrchestrator
from ch_adapter.transform.rules import load_ruleset


def setup_logging(verbose: bool = False, level_name: str = "INFO") -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, enable DEBUG level logging
        level_name: Level used when not verbose
    """
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Synchronize trip tickets between the Clearinghouse and a local provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    ch-adapter                       # Full cycle
    ch-adapter --no-export           # Skip writing export files
    ch-adapter --verbose             # Debug output
    ch-adapter --env .env.local      # Use custom env file
        """,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--env",
        type=Path,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--status",
        action="store_true",
        help="Show local sync state without running a cycle",
    )

    parser.add_argument(
        "--no-import",
        action="store_true",
        help="Skip the import phase for this run",
    )

    parser.add_argument(
        "--no-export",
        action="store_true",
        help="Skip the export phase for this run",
    )

    return parser.parse_args(argv)


def show_status(state_store: StateStore) -> None:
    """
    Display current sync state.

    Args:
        state_store: State store to query
    """
    logger = logging.getLogger(__name__)

    total = state_store.count()
    synced = state_store.count(synced_only=True)
    imported_files = state_store.imported_files()
    last_update = state_store.max_remote_updated_at()

    logger.info("=" * 50)
    logger.info("Sync Status")
    logger.info("=" * 50)
    logger.info(f"Tracked trip tickets:      {total}")
    logger.info(f"Synced with Clearinghouse: {synced}")
    logger.info(f"Awaiting Clearinghouse ID: {total - synced}")
    logger.info(f"Imported files:            {len(imported_files)}")
    logger.info(f"Last Clearinghouse update: {last_update or 'never'}")
    logger.info("=" * 50)


def build_notifier(settings: Settings) -> Notifier:
    """Email when SMTP is configured, otherwise log."""
    if settings.notification.enabled:
        return EmailNotifier(settings.notification)
    logging.getLogger(__name__).warning("SMTP not configured, notifications will only be logged")
    return LogNotifier()


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error, 130 when interrupted)
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    logger.info("Clearinghouse Adapter")
    logger.info("=" * 50)

    # Load configuration
    try:
        settings = load_settings(env_file=args.env)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please check your .env file or environment variables")
        logger.error("See .env.example for required configuration")
        return 1

    if not args.verbose:
        logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))

    state_store = None
    client = None

    try:
        # Initialize state store
        state_store = StateStore(settings.storage.database_path)

        # Handle status-only mode
        if args.status:
            show_status(state_store)
            return 0

        import_enabled = settings.imports.enabled and not args.no_import
        export_enabled = settings.exports.enabled and not args.no_export

        importer = None
        if import_enabled:
            importer = CsvImportProcessor(
                store=state_store,
                import_folder=settings.imports.import_folder,
                completed_folder=settings.imports.completed_folder,
                mapping=load_ruleset(settings.imports.mapping_file),
                normalization=load_ruleset(settings.imports.normalization_file),
            )

        exporter = None
        if export_enabled:
            exporter = CsvExportProcessor(
                export_folder=settings.exports.export_folder,
                mapping=load_ruleset(settings.exports.mapping_file),
                normalization=load_ruleset(settings.exports.normalization_file),
            )

        logger.info("Initializing Clearinghouse client...")
        client = ClearinghouseClient(
            base_url=settings.clearinghouse.base_url,
            api_key=settings.clearinghouse.api_key,
            private_key=settings.clearinghouse.private_key,
            api_version=settings.clearinghouse.api_version,
            timeout=settings.clearinghouse.timeout,
            max_retries=settings.clearinghouse.max_retries,
        )

        orchestrator = SyncOrchestrator(
            remote=client,
            store=state_store,
            importer=importer,
            exporter=exporter,
            notifier=build_notifier(settings),
            import_enabled=import_enabled,
            export_enabled=export_enabled,
        )

        # Execute cycle
        logger.info("Starting reconciliation cycle...")
        stats = orchestrator.run_cycle()

        # Report results
        logger.info("=" * 50)
        logger.info("Cycle Summary")
        logger.info("=" * 50)
        logger.info(f"Trips fetched:         {stats.fetched}")
        logger.info(f"New trips:             {stats.new_trips}")
        logger.info(f"Updated trips:         {stats.updated_trips}")
        logger.info(f"Trips exported:        {stats.exported}")
        logger.info(f"Rows imported:         {stats.imported}")
        logger.info(f"Rows skipped:          {stats.skipped}")
        logger.info(f"Rows unposted:         {stats.unposted}")
        logger.info(f"Errors:                {stats.errors}")
        logger.info("=" * 50)

        if stats.errors > 0:
            logger.warning("Some errors occurred during the cycle. Check logs above.")
            return 1

        logger.info("Cycle completed successfully!")
        return 0

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except ClearinghouseAPIError as e:
        logger.error(f"Clearinghouse API error: {e}")
        return 1
    except ProcessorError as e:
        logger.error(f"Processor error: {e}")
        return 1
    except StateStoreError as e:
        logger.error(f"State store error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Cycle interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
    finally:
        # Clean up
        if client:
            client.close()
        if state_store:
            state_store.close()


if __name__ == "__main__":
    sys.exit(main())

import sys
import os
import logging
import argparse

from config.config_manager import ConfigManager
from core.errors import GlimpseError
from core.models import ExportMode
from core.session_service import GlimpseService


def setup_logging(log_level, data_dir):
    numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)
    os.makedirs(data_dir, exist_ok=True)
    log_path = os.path.join(data_dir, "glimpse.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stdout)
        ]
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Glimpse: cache thumbnails for a photo folder and export the keepers.")
    parser.add_argument('directory', help='The folder to open.')
    parser.add_argument('--config', default=None, help='Path to config.yaml (default: $XDG_CONFIG_HOME/glimpse/config.yaml).')
    parser.add_argument('--threads', type=int, default=None, help='Worker threads for this run (overrides the config).')
    parser.add_argument('--export-to', default=None, help='After generation, export non-rejected files here.')
    parser.add_argument(
        '--mode',
        choices=[m.value for m in ExportMode],
        default=ExportMode.COPY.value,
        help='Export mode used with --export-to.'
    )
    args = parser.parse_args(argv)

    config_manager = ConfigManager(args.config)
    if args.threads is not None:
        # In-memory only; the saved file keeps the user's choice.
        config_manager.config["thumbnail_threads"] = args.threads

    setup_logging(config_manager.logging_level, config_manager.data_dir)
    logging.info("Starting Glimpse")

    target_dir = os.path.abspath(args.directory)
    if not os.path.isdir(target_dir):
        logging.error(f"Invalid directory provided: {target_dir}")
        return 1

    service = GlimpseService(config_manager)
    try:
        def on_progress(completed, total):
            logging.info(f"Thumbnails: {completed}/{total}")

        result = service.open_folder(target_dir, on_progress=on_progress)
        logging.info(f"Session {result.session.id}: {len(result.images)} images, "
                     f"{len(result.labels)} labels, cache at {result.cache_dir}")

        results = result.batch.result()
        failures = [r for r in results if not r.success]
        for r in failures:
            logging.warning(f"{r.filename}: {r.error}")
        logging.info(f"Thumbnails done: {len(results) - len(failures)} of {len(results)} succeeded")

        if args.export_to:
            export = service.export(target_dir, args.export_to, args.mode)
            logging.info(f"Export: {export.copied} exported, {export.skipped} skipped, "
                         f"{export.failed} failed of {export.total}")
            if export.failed:
                return 1
    except (GlimpseError, OSError) as e:
        logging.error(f"{e}")
        return 1
    finally:
        service.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Entry point
"""
# ========================================================
# IMPORTS
# ========================================================
import argparse
import logging
import sys

# --------------------------------------------------------
# Local Imports
# --------------------------------------------------------
from maintrack.config import (
    APP_NAME, DB_PATH, HOST, LANGUAGE, LOG_LEVEL, PORT, REMINDER_POLL_SECONDS,
    __version__,
)
from maintrack.controller.app_controller import AppController
from maintrack.utils import i18n
from maintrack.utils.reminders import LocalReminderSink, ReminderDispatcher

logger = logging.getLogger("maintrack")


# ========================================================
# FUNCTIONS
# ========================================================
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="maintrack", description=APP_NAME)
    parser.add_argument("--db", default=DB_PATH, help="path of the SQLite store")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="run the HTTP API (default)")
    serve.add_argument("--host", default=HOST)
    serve.add_argument("--port", type=int, default=PORT)
    serve.add_argument("--demo", action="store_true",
                       help="seed demo sections and machines on first run")

    export = sub.add_parser("export", help="write a JSON backup of all data")
    export.add_argument("path")

    excel = sub.add_parser("export-excel", help="write the maintenance overview workbook")
    excel.add_argument("path")

    sub.add_parser("backup", help="copy the database into the backups folder")
    sub.add_parser("overdue", help="list overdue maintenance")
    return parser


def serve(controller: AppController, host: str, port: int, demo: bool) -> None:
    from maintrack.api.app import create_app

    if demo and controller.load_demo_data():
        logger.info("Seeded demo data")

    dispatcher = None
    if isinstance(controller.sink, LocalReminderSink):
        dispatcher = ReminderDispatcher(controller.sink, interval_seconds=REMINDER_POLL_SECONDS)
        dispatcher.start()

    app = create_app(controller)
    logger.info("%s v%s running on http://%s:%s", APP_NAME, __version__, host, port)
    try:
        app.run(host=host, port=port, debug=False)
    finally:
        if dispatcher is not None:
            dispatcher.stop()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    i18n.set_language(LANGUAGE)

    command = args.command or "serve"
    if command == "serve":
        controller = AppController(args.db)
    else:
        controller = AppController(args.db, backup_interval_hours=0)

    try:
        if command == "serve":
            serve(controller, getattr(args, "host", HOST), getattr(args, "port", PORT),
                  getattr(args, "demo", False))
        elif command == "export":
            controller.export_backup(args.path)
            print(f"Backup exported to {args.path}")
        elif command == "export-excel":
            controller.export_excel(args.path)
            print(f"Overview exported to {args.path}")
        elif command == "backup":
            print(controller.backup())
        elif command == "overdue":
            report = controller.overdue_report()
            for schedule in report.overdue:
                machine = controller.get_machine(schedule.machine_id)
                label = f"{machine.code} {machine.name}" if machine else schedule.machine_id
                print(f"{label}: due {schedule.next_due_date:%Y-%m-%d %H:%M}")
            print(f"{report.count} overdue")
    finally:
        controller.close()
    return 0


# ========================================================
# MAIN
# ========================================================
if __name__ == "__main__":
    sys.exit(main())

"""Command-line front end for the fieldattend client."""

import argparse
import asyncio
import datetime
import logging
import pathlib
from typing import Optional

import rich
import rich.console
import rich.logging
import rich.table

from fieldattend import config, flows
from fieldattend.model import attendance_mod, database, roster_mod, session_mod


def build_parser() -> argparse.ArgumentParser:
    """Define command line arguments."""
    parser = argparse.ArgumentParser(prog="fieldattend")
    parser.add_argument(
        "-d", "--db_path",
        help="Path to the local attendance database",
        type=pathlib.Path,
        default=None,
    )
    parser.add_argument(
        "-c", "--config_path",
        help="Path to config file",
        type=pathlib.Path,
        default=None,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug log messages.",
    )
    subparsers = parser.add_subparsers(required=True)

    login_parser = subparsers.add_parser(
        "login", help="Download the teacher's data and start a session."
    )
    login_parser.add_argument("identity", help="Teacher identity number.")
    login_parser.set_defaults(func=run_login)

    refresh_parser = subparsers.add_parser(
        "refresh", help="Download the logged-in teacher's data again."
    )
    refresh_parser.set_defaults(func=run_refresh)

    sync_parser = subparsers.add_parser("sync", help="Upload pending attendance.")
    sync_parser.add_argument(
        "-a", "--activity",
        type=int,
        default=None,
        help="Only upload attendance for this activity ID.",
    )
    sync_parser.set_defaults(func=run_sync)

    status_parser = subparsers.add_parser(
        "status", help="Show the session and pending uploads per activity."
    )
    status_parser.add_argument(
        "-p", "--period",
        type=int,
        default=None,
        help="Period ID. Defaults to the period containing today.",
    )
    status_parser.set_defaults(func=run_status)

    sweep_parser = subparsers.add_parser(
        "sweep", help="Delete old attendance that has already been uploaded."
    )
    sweep_parser.set_defaults(func=run_sweep)

    logout_parser = subparsers.add_parser(
        "logout", help="Wipe local data. Refused while uploads are pending."
    )
    logout_parser.set_defaults(func=run_logout)

    watch_parser = subparsers.add_parser(
        "watch", help="Upload pending attendance whenever the network returns."
    )
    watch_parser.set_defaults(func=run_watch)

    export_parser = subparsers.add_parser(
        "export", help="Write attendance records (without signatures) to CSV."
    )
    export_parser.add_argument("csv_path", type=pathlib.Path)
    export_parser.set_defaults(func=run_export)
    return parser


def configure_logging(verbose: bool) -> None:
    """Send log records to the console through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich.logging.RichHandler(show_path=False)],
    )


def report(result: flows.FlowResult) -> int:
    """Print the outcome of an action and return an exit status."""
    style = "green" if result.ok else "bold red"
    rich.print(f"[{style}]{result.message}[/{style}]")
    return 0 if result.ok else 1


def run_login(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    return report(asyncio.run(app.login(args.identity)))


def run_refresh(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    return report(asyncio.run(app.refresh_data()))


def run_sync(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    return report(asyncio.run(app.manual_sync(args.activity)))


def run_sweep(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    return report(asyncio.run(app.sweep()))


def run_logout(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    return report(asyncio.run(app.logout()))


def run_status(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    """Print session details and pending counts for a period."""
    try:
        dbase = asyncio.run(app.store.open())
    except database.StoreUnavailable as err:
        return report(flows.FlowResult(False, flows.describe_error(err)))
    session = session_mod.Session.get(dbase)
    if session is None:
        rich.print("[yellow]Not logged in.[/yellow]")
        return 1
    rich.print(f"Teacher: [bold]{session.display_name}[/bold] ({session.location_label})")
    rich.print(f"Last sync: {session.last_sync or 'never'}")
    rich.print(f"Pending uploads: {attendance_mod.AttendanceEvent.count_pending(dbase)}")
    period = _select_period(dbase, args.period)
    if period is None:
        rich.print("No periods downloaded yet.")
        return 0
    table = rich.table.Table(title=f"{period.name} ({period.start_date} to {period.end_date})")
    table.add_column("Activity ID", justify="right")
    table.add_column("Activity")
    table.add_column("Type")
    table.add_column("Pending", justify="right")
    for row in attendance_mod.AttendanceEvent.count_pending_by_activity(
        dbase, period.period_id
    ):
        table.add_row(
            str(row.activity.activity_id),
            row.activity.name,
            row.activity.activity_type,
            str(row.pending_count),
        )
    rich.console.Console().print(table)
    return 0


def _select_period(
    dbase: database.DBase, period_id: Optional[int]
) -> Optional[roster_mod.Period]:
    """Requested period, else the one containing today, else the newest."""
    periods = roster_mod.Period.get_all(dbase)
    if period_id is not None:
        return next((p for p in periods if p.period_id == period_id), None)
    today = datetime.date.today()
    current = [p for p in periods if p.contains(today)]
    if current:
        return current[0]
    return periods[0] if periods else None


def run_watch(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    """Poll the network until interrupted."""
    rich.print("Watching the network. Press Ctrl+C to stop.")
    report(asyncio.run(app.sweep()))
    monitor = app.make_monitor()
    try:
        asyncio.run(monitor.run(app.settings.poll_interval))
    except KeyboardInterrupt:
        rich.print("Stopped.")
    return 0


def run_export(app: flows.FieldAttend, args: argparse.Namespace) -> int:
    """Export attendance records to a CSV file."""
    try:
        dbase = asyncio.run(app.store.open())
    except database.StoreUnavailable as err:
        return report(flows.FlowResult(False, flows.describe_error(err)))
    dframe = attendance_mod.AttendanceEvent.get_dataframe(dbase)
    dframe.write_csv(args.csv_path)
    rich.print(f"Wrote {dframe.height} records to {args.csv_path}")
    return 0


def main() -> None:
    """Function to run the client, used for the pyproject.toml script entry."""
    parser = build_parser()
    args = parser.parse_args()
    configure_logging(args.verbose)
    try:
        config.settings.update_from_args(args)
    except config.ConfigError as err:
        rich.print(f"[bold red]{err}[/bold red]")
        raise SystemExit(2)
    app = flows.FieldAttend(config.settings)
    raise SystemExit(args.func(app, args))


if __name__ == "__main__":
    main()

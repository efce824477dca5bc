from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time

from .config import Config
from .durations import format_duration, net_minutes
from .grants import AccessManager, build_qr_payload
from .reporter import Reporter
from .timesheet import Timesheet


@dataclass(slots=True)
class App:
    config: Config
    access: AccessManager
    timesheet: Timesheet
    reporter: Reporter


def register_commands(subparsers) -> None:
    """Register all subcommands on the parser. Called once during setup."""

    def command(name: str, help_text: str):
        def decorator(handler):
            parser = subparsers.add_parser(name, help=help_text)
            parser.set_defaults(handler=handler)
            handler.parser = parser
            return handler

        return decorator

    @command("add-location", "Add a geofenced job location")
    def add_location(app: App, args) -> str:
        location = app.timesheet.add_location(
            args.user, args.name, args.latitude, args.longitude, args.radius, args.color
        )
        return f"Location added: {location.name} ({location.id})"

    add_location.parser.add_argument("name")
    add_location.parser.add_argument("latitude", type=float)
    add_location.parser.add_argument("longitude", type=float)
    add_location.parser.add_argument("--radius", type=int, default=100)
    add_location.parser.add_argument("--color", default="#3B82F6")

    @command("locations", "List your active locations")
    def locations(app: App, args) -> str:
        rows = app.timesheet.list_locations(args.user)
        if not rows:
            return "No locations yet."
        return "\n".join(f"- {row.name} `{row.id}` ({row.radius}m)" for row in rows)

    @command("rename-location", "Rename one of your locations")
    def rename_location(app: App, args) -> str:
        location = app.timesheet.rename_location(args.user, args.location_id, args.name)
        return f"Location renamed: {location.name} ({location.id})"

    rename_location.parser.add_argument("location_id")
    rename_location.parser.add_argument("name")

    @command("check-in", "Start a session at a location")
    def check_in(app: App, args) -> str:
        session = app.timesheet.check_in(args.user, args.location_id, method=args.method)
        return f"Checked in at {session.location_name} ({session.id})"

    check_in.parser.add_argument("location_id")
    check_in.parser.add_argument("--method", default="manual")

    @command("check-out", "Finish an open session")
    def check_out(app: App, args) -> str:
        session = app.timesheet.check_out(args.user, args.session_id)
        return f"Checked out: {format_duration(net_minutes(session))} worked"

    check_out.parser.add_argument("session_id")

    @command("add-entry", "Record hours manually")
    def add_entry(app: App, args) -> str:
        tz = app.config.timezone
        day_value = date.fromisoformat(args.day) if args.day else app.config.report_settings().today()
        entry_at = datetime.combine(day_value, time.fromisoformat(args.entry), tzinfo=tz)
        exit_at = datetime.combine(day_value, time.fromisoformat(args.exit), tzinfo=tz)
        session = app.timesheet.add_manual_entry(
            args.user, args.location_id, entry_at, exit_at, args.pause
        )
        return f"Hours saved ({session.id})"

    add_entry.parser.add_argument("location_id")
    add_entry.parser.add_argument("--day", default=None)
    add_entry.parser.add_argument("--entry", default="08:00")
    add_entry.parser.add_argument("--exit", default="17:00")
    add_entry.parser.add_argument("--pause", type=int, default=30)

    @command("delete-entry", "Delete a time record")
    def delete_entry(app: App, args) -> str:
        app.timesheet.delete_session(args.user, args.session_id)
        return "Entry deleted."

    delete_entry.parser.add_argument("session_id")

    @command("report", "Print a daily report")
    def report(app: App, args) -> str:
        owner_id = args.owner or args.user
        day_value = date.fromisoformat(args.day) if args.day else app.config.report_settings().today()
        return app.reporter.daily_report(args.user, owner_id, args.name, day_value)

    report.parser.add_argument("name")
    report.parser.add_argument("--owner", default=None)
    report.parser.add_argument("--day", default=None)

    @command("range-report", "Print a report covering several days")
    def range_report(app: App, args) -> str:
        owner_id = args.owner or args.user
        text = app.reporter.range_report(
            args.user,
            owner_id,
            args.name,
            date.fromisoformat(args.start),
            date.fromisoformat(args.end),
        )
        if args.export:
            return f"Report exported to {app.reporter.export_report(text, args.name, args.export)}"
        return text

    range_report.parser.add_argument("name")
    range_report.parser.add_argument("start")
    range_report.parser.add_argument("end")
    range_report.parser.add_argument("--owner", default=None)
    range_report.parser.add_argument("--export", default=None, metavar="DIR")

    @command("worker-report", "Print a worker's pending hours")
    def worker_report(app: App, args) -> str:
        text = app.reporter.worker_report(args.user, args.owner, args.name)
        if not text:
            return "No pending hours. All hours have been archived."
        if args.export:
            return f"Report exported to {app.reporter.export_report(text, args.name, args.export)}"
        return text

    worker_report.parser.add_argument("owner")
    worker_report.parser.add_argument("name")
    worker_report.parser.add_argument("--export", default=None, metavar="DIR")

    @command("archive", "Archive a worker's pending hours")
    def archive(app: App, args) -> str:
        sessions = app.reporter.pending_sessions(args.user, args.owner)
        count = app.reporter.archive_entries(args.user, args.owner, [session.id for session in sessions])
        return f"Archived {count} entries."

    archive.parser.add_argument("owner")

    @command("generate-token", "Create a QR payload that links a viewer to your timesheet")
    def generate_token(app: App, args) -> str:
        token = app.access.generate_token(args.user, args.name)
        local_expiry = token.expires_at.astimezone(app.config.timezone)
        return f"{build_qr_payload(token)}\nExpires: {local_expiry.strftime('%H:%M:%S')}"

    generate_token.parser.add_argument("name")

    @command("redeem", "Redeem a scanned QR payload")
    def redeem(app: App, args) -> str:
        grant = app.access.redeem_qr_payload(args.payload, args.user)
        if grant.status == "pending":
            return "Request sent. The worker needs to approve it."
        return "Linked. You can now view this worker's hours."

    redeem.parser.add_argument("payload")

    @command("approve", "Approve a pending access request")
    def approve(app: App, args) -> str:
        app.access.approve(args.grant_id, args.user)
        return "Access approved."

    approve.parser.add_argument("grant_id")

    @command("revoke", "Revoke access to your timesheet")
    def revoke(app: App, args) -> str:
        app.access.revoke(args.grant_id, args.user)
        return "Access revoked."

    revoke.parser.add_argument("grant_id")

    @command("grants", "Show who can view your hours and whose hours you can view")
    def grants(app: App, args) -> str:
        owned = app.access.list_owner_grants(args.user)
        viewable = app.access.list_viewable_owners(args.user)

        lines = [f"People with access ({sum(1 for g in owned if g.status == 'active')}):"]
        lines.extend(f"- {g.viewer_id} [{g.status}] `{g.id}`" for g in owned if g.status in ("active", "pending"))
        lines.append(f"Workers I can view ({len(viewable)}):")
        lines.extend(f"- {g.owner_id} since {g.created_at.astimezone(app.config.timezone).date()}" for g in viewable)
        return "\n".join(lines)


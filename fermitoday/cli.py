"""
CLI (Command Line Interface).

Quick terminal commands, e.g.:

    fermitoday events --section 5AIIN
    fermitoday events --professor rossi --day tomorrow
    fermitoday extract "PROF. ROSSI CLASSE 3C"
    fermitoday add 5AIIN
    fermitoday remove --professor ROSSI
    fermitoday saved
    fermitoday notify on --section 5AIIN --digest-time 07:00
    fermitoday notify prefs --no-realtime
    fermitoday notify off
    fermitoday worker --origin https://fermitoday.app
    fermitoday version
"""

from __future__ import annotations

import argparse
import logging
import re
from dataclasses import replace
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich import box

from fermitoday import config
from fermitoday.api import BackendClient
from fermitoday.classify import (
    description_text,
    extract_classes,
    extract_professors,
    format_time_range,
    select_events,
    target_date,
)
from fermitoday.effects import PushSubscriptionChangeEvent
from fermitoday.errors import BackendRejected, FermiTodayError, NetworkUnavailable, NotSupported, PermissionDenied
from fermitoday.model import Event, Preferences
from fermitoday.platform import HttpNetwork, MemoryPushManager, Platform
from fermitoday.push import SubscriptionController
from fermitoday.storage import PreferenceStore
from fermitoday.worker import Registration, ServiceWorker

console = Console()


def _print_events(events: List[Event], title: str) -> None:
    if not events:
        console.print("Nessuna variazione.")
        return

    table = Table(title=title, box=box.SIMPLE_HEAVY, show_lines=False)
    table.add_column("Orario", style="bold", no_wrap=True)
    table.add_column("Variazione")
    table.add_column("Dettagli", style="dim")
    for ev in events:
        table.add_row(format_time_range(ev), ev.summary, description_text(ev.description))
    console.print(table)


def _cmd_events(args: argparse.Namespace, backend: BackendClient) -> int:
    """
    Fetch the day's changes and show the ones for a class or a professor.
    """
    section = (args.section or "").strip().upper()
    professor = (args.professor or "").strip().upper()

    try:
        day = target_date(args.day)
    except ValueError:
        print(f"Invalid day: {args.day!r} (use today, tomorrow or YYYY-MM-DD)")
        return 1

    try:
        raw = backend.fetch_events(day, section=section or None)
    except NetworkUnavailable:
        print("Nessuna connessione internet")
        return 1
    except BackendRejected as exc:
        print(f"Impossibile caricare le variazioni. ({exc})")
        return 1

    events = select_events(raw, day, section=section or None, professor=professor or None)

    who = section or professor or "tutte"
    _print_events(events, f"{day.isoformat()} · {who}")
    return 0


def _cmd_extract(args: argparse.Namespace) -> int:
    summary = (args.summary or "").strip()
    if not summary:
        print("Please provide a summary text.")
        return 1
    print("Classi    :", ", ".join(extract_classes(summary)) or "-")
    print("Professori:", ", ".join(extract_professors(summary)) or "-")
    return 0


def _shortlist_key(args: argparse.Namespace) -> str:
    return "savedProfessors" if args.professor else "savedSections"


def _cmd_add(args: argparse.Namespace, store: PreferenceStore) -> int:
    value = (args.value or "").strip().upper()
    if not value:
        print("Please provide a class or professor.")
        return 1
    if not store.add_saved(_shortlist_key(args), value):
        print(f"Already saved: {value}")
        return 0
    print(f"Added: {value}")
    return 0


def _cmd_remove(args: argparse.Namespace, store: PreferenceStore) -> int:
    value = (args.value or "").strip().upper()
    if not value:
        print("Please provide a class or professor.")
        return 1
    if not store.remove_saved(_shortlist_key(args), value):
        print(f"Not saved: {value}")
        return 0
    print(f"Removed: {value}")
    return 0


def _cmd_saved(store: PreferenceStore) -> int:
    print("Classi    :", ", ".join(store.saved("savedSections")) or "-")
    print("Professori:", ", ".join(store.saved("savedProfessors")) or "-")
    return 0


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

DIGEST_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _push_manager(store: PreferenceStore) -> MemoryPushManager:
    # the terminal is the push device; it keeps the subscription issued on opt-in
    manager = MemoryPushManager()
    record = store.subscription
    if record is not None:
        manager.restore(record)
    return manager


def _controller(args: argparse.Namespace, store: PreferenceStore) -> SubscriptionController:
    return SubscriptionController(BackendClient(args.backend), _push_manager(store), store)


def _preferences_from_args(args: argparse.Namespace, current: Preferences) -> Preferences:
    """
    Apply the options given on the command line on top of the stored preferences.
    """
    changes = {}
    if args.section is not None:
        changes["section"] = args.section.strip().upper() or None
    if args.professor is not None:
        changes["professor"] = " ".join(args.professor.split()).upper() or None
    if args.digest_time is not None:
        if not DIGEST_TIME_RE.match(args.digest_time):
            raise ValueError(f"invalid digest time {args.digest_time!r} (use HH:MM)")
        changes["digest_time"] = args.digest_time
    if args.digest is not None:
        changes["digest_enabled"] = args.digest
    if args.realtime is not None:
        changes["realtime_enabled"] = args.realtime
    return replace(current, **changes)


def _notify_on(controller: SubscriptionController, prefs: Preferences) -> int:
    try:
        controller.opt_in(prefs)
    except NotSupported:
        print("Le notifiche non sono supportate su questo dispositivo")
        return 1
    except PermissionDenied:
        print("Devi abilitare le notifiche nelle impostazioni")
        return 1
    except FermiTodayError as exc:
        print(f"Errore nell'attivazione delle notifiche: {exc}")
        return 1

    if not prefs.section and not prefs.professor:
        print("Notifiche attivate! Configura classe o professore.")
    else:
        print("Notifiche attivate")
    return 0


def _notify_renew(controller: SubscriptionController) -> int:
    """
    Replace a subscription the push service dropped, the way the worker does.
    """
    old = controller.store.subscription
    if old is None or not controller.subscribed:
        print("Notifiche non attive")
        return 1

    controller.push_manager.invalidate()
    cfg = config.WorkerConfig.default()
    worker = ServiceWorker(cfg, Platform(network=HttpNetwork(cfg.origin)), subscriptions=controller)
    token = worker.dispatch(PushSubscriptionChangeEvent(old_endpoint=old.endpoint))
    if token.error is not None:
        print(f"Rinnovo non riuscito: {token.error}")
        return 1
    print("Iscrizione rinnovata")
    return 0


def _notify_status(store: PreferenceStore) -> int:
    prefs = store.load_preferences()
    record = store.subscription
    print("Notifiche  :", "attive" if store.notifications_enabled and record else "disattivate")
    print("Classe     :", prefs.section or "-")
    print("Professore :", prefs.professor or "-")
    print("Riepilogo  :", prefs.digest_time if prefs.digest_enabled else "no")
    print("Tempo reale:", "sì" if prefs.realtime_enabled else "no")
    if record is not None:
        print("Endpoint   :", record.endpoint)
    return 0


def _cmd_notify(args: argparse.Namespace, store: PreferenceStore) -> int:
    if args.action == "status":
        return _notify_status(store)

    controller = _controller(args, store)
    if args.action == "off":
        controller.opt_out()
        print("Notifiche disattivate")
        return 0
    if args.action == "renew":
        return _notify_renew(controller)

    try:
        prefs = _preferences_from_args(args, store.load_preferences())
    except ValueError as exc:
        print(exc)
        return 1

    if args.action == "on":
        return _notify_on(controller, prefs)

    # prefs
    if controller.preferences_changed(prefs):
        print("Preferenze salvate e inviate")
    else:
        print("Preferenze salvate (non inviate)")
    return 0


# ---------------------------------------------------------------------------
# Offline worker
# ---------------------------------------------------------------------------


def _cmd_worker(args: argparse.Namespace) -> int:
    """
    Install the offline worker against the app origin and list the precached shell.
    """
    cfg = config.WorkerConfig.default()
    if args.origin:
        cfg = replace(cfg, origin=args.origin.rstrip("/"))

    platform = Platform(network=HttpNetwork(cfg.origin))
    registration = Registration(platform)
    worker = ServiceWorker(cfg, platform)
    if not registration.register(worker):
        print(f"Installazione non riuscita: {cfg.cache_version}")
        return 1

    print(f"{cfg.cache_version} ({worker.state})")
    for url in platform.caches.open(cfg.cache_version).keys():
        print(" ", url)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="fermitoday", description="FermiToday CLI")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--backend", type=str, default=config.BACKEND_URL, help="Backend base URL")
    sub = parser.add_subparsers(dest="command", required=True)

    p_events = sub.add_parser("events", help="Show timetable changes")
    who = p_events.add_mutually_exclusive_group()
    who.add_argument("--section", "-s", type=str, help="Class code (e.g. 5AIIN)")
    who.add_argument("--professor", "-p", type=str, help="Professor surname (e.g. ROSSI)")
    p_events.add_argument("--day", "-d", type=str, default="today", help="today, tomorrow or YYYY-MM-DD")

    p_extract = sub.add_parser("extract", help="Show classes/professors found in a summary")
    p_extract.add_argument("summary", type=str, help="Event summary text")

    for name, help_text in (("add", "Save a class or professor"), ("remove", "Forget a class or professor")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("value", type=str, help="Class code or professor name")
        p.add_argument("--professor", action="store_true", help="Value is a professor")

    sub.add_parser("saved", help="List saved classes and professors")

    p_notify = sub.add_parser("notify", help="Push notifications for timetable changes")
    p_notify.add_argument("action", choices=("on", "off", "prefs", "status", "renew"))
    p_notify.add_argument("--section", "-s", type=str, help="Class to be notified about (empty to clear)")
    p_notify.add_argument("--professor", "-p", type=str, help="Professor to be notified about (empty to clear)")
    p_notify.add_argument("--digest-time", type=str, help="Time of the daily summary (HH:MM)")
    p_notify.add_argument("--digest", action=argparse.BooleanOptionalAction, default=None, help="Daily summary")
    p_notify.add_argument("--realtime", action=argparse.BooleanOptionalAction, default=None, help="Real-time alerts")

    p_worker = sub.add_parser("worker", help="Install the offline worker and precache the app shell")
    p_worker.add_argument("--origin", type=str, help="App origin (default: FERMITODAY_ORIGIN)")

    sub.add_parser("version", help="Print the cache version")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "events":
        raise SystemExit(_cmd_events(args, BackendClient(args.backend)))
    if args.command == "extract":
        raise SystemExit(_cmd_extract(args))
    if args.command == "add":
        raise SystemExit(_cmd_add(args, PreferenceStore()))
    if args.command == "remove":
        raise SystemExit(_cmd_remove(args, PreferenceStore()))
    if args.command == "saved":
        raise SystemExit(_cmd_saved(PreferenceStore()))
    if args.command == "notify":
        raise SystemExit(_cmd_notify(args, PreferenceStore()))
    if args.command == "worker":
        raise SystemExit(_cmd_worker(args))
    if args.command == "version":
        print(config.WorkerConfig.default().cache_version)
        raise SystemExit(0)

    raise SystemExit(2)

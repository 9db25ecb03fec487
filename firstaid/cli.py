from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import typer

from .alerts import CONFIRM_SEND, CONFIRM_TITLE, ContactBook, LocationStatus, NoRecipients
from .auth import AuthController
from .catalog import Catalog, UnknownTopicError, load_catalog
from .catalog_loader import CatalogError
from .collaborators import (
    ConnectivityMonitor,
    EmergencyCaller,
    NetworkGate,
    ScheduledMetronome,
    check_connectivity,
)
from .config import settings
from .engine import GuidanceEngine
from .firebase import FirebaseIdentityService
from .identity import IdentityError, IdentityService
from .log import configure_logging
from .schema import InstructionKey, Topic
from .timer import AsyncioScheduler, IntervalTimer, PollingScheduler
from .validator import FormState

app = typer.Typer(add_completion=False, no_args_is_help=True)


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    log_file: Optional[str] = typer.Option(settings.log_file, "--log-file"),
):
    configure_logging(log_level, log_file)


def _catalog() -> Catalog:
    try:
        return load_catalog(settings.content_dir)
    except (CatalogError, FileNotFoundError) as e:
        typer.echo(f"Error loading content: {e}", err=True)
        raise typer.Exit(code=1)


def _topic(catalog: Catalog, topic_id: str) -> Topic:
    try:
        return catalog.get_topic(topic_id)
    except UnknownTopicError:
        typer.echo(f"Error: unknown topic '{topic_id}'", err=True)
        raise typer.Exit(code=1)


# browsing


@app.command("categories")
def cli_categories(as_json: bool = typer.Option(False, "--json")):
    catalog = _catalog()
    if as_json:
        typer.echo(json.dumps([c.model_dump(include={"id", "title", "subtitle"}) for c in catalog.categories()]))
        return
    for c in catalog.categories():
        typer.echo(f"{c.id:<14} {c.title} - {c.subtitle}")


@app.command("topics")
def cli_topics(
    category: str = typer.Option(..., "--category", help="Category id, e.g. burns"),
    as_json: bool = typer.Option(False, "--json"),
):
    catalog = _catalog()
    try:
        topics = catalog.list_topics(category)
    except KeyError:
        typer.echo(f"Error: unknown category '{category}'", err=True)
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps([t.model_dump(include={"id", "title", "subtitle"}) for t in topics]))
        return
    for t in topics:
        typer.echo(f"{t.id:<22} {t.title} - {t.subtitle}")


@app.command("steps")
def cli_steps(
    topic: str = typer.Option(..., "--topic"),
    as_json: bool = typer.Option(False, "--json"),
):
    t = _topic(_catalog(), topic)
    if as_json:
        typer.echo(json.dumps([s.model_dump(exclude_none=True) for s in t.steps]))
        return
    with GuidanceEngine(t, scheduler=PollingScheduler()) as engine:
        for line in render_topic(t, engine):
            typer.echo(line)


@app.command("search")
def cli_search(
    query: str = typer.Option("", "--query", "-q"),
    as_json: bool = typer.Option(False, "--json"),
):
    results = _catalog().search(query)
    if as_json:
        typer.echo(json.dumps([r.model_dump() for r in results]))
        return
    if not results:
        typer.echo("No matching topics.")
        return
    for r in results:
        ref = r.topic_id or r.category
        typer.echo(f"{r.title} ({r.subtitle}) [{ref}]")


@app.command("status")
def cli_status():
    gate = NetworkGate(ConnectivityMonitor(check_connectivity()))
    typer.echo(gate.banner or "Online: all features available.")


# guidance


def render_topic(topic: Topic, engine: GuidanceEngine) -> List[str]:
    done, total = engine.progress()
    lines = [f"{topic.title} - {topic.subtitle}", f"Progress: {done}/{total}", ""]
    if topic.symptoms:
        lines.append(topic.symptoms.title)
        lines.extend(f"  * {s}" for s in topic.symptoms.items)
        if topic.symptoms.warning_note:
            lines.append(f"  ! {topic.symptoms.warning_note}")
        lines.append("")
    for step in topic.steps:
        aff = engine.affordances(step.number)
        lines.append(f"Step {step.number}: {step.title}")
        for i, ins in enumerate(step.instructions):
            mark = "x" if engine.is_completed(InstructionKey(step.number, i)) else " "
            extra = ""
            if i in aff.call_buttons:
                extra += "  [call 999 | call 112]"
            if i in aff.links:
                extra += f"  -> {aff.links[i]}"
            lines.append(f"  [{mark}] {step.number}.{i + 1} {ins.text}{extra}")
        if aff.timer is not None:
            controls = "start" if aff.timer.start_offered else ("reset" if aff.timer.state == "expired" else "stop")
            lines.append(f"  {aff.timer.label}{aff.timer.remaining} ({aff.timer.state}; {controls} {step.number})")
        if aff.timestamp is not None:
            lines.append(f"  {aff.timestamp_label}{aff.timestamp:%H:%M:%S}")
        if aff.metronome_available:
            lines.append(f"  CPR beat: {'playing' if aff.metronome_playing else 'off'} (beat)")
        if step.warning_note:
            suffix = ""
            if aff.warning_call:
                suffix += "  [call 999 | call 112]"
            if aff.warning_link:
                suffix += f"  -> {aff.warning_link}"
            lines.append(f"  ! {step.warning_note}{suffix}")
        lines.append("")
    return lines


class ConsoleTelephony:
    def place_call(self, number: str) -> None:
        typer.echo(f"Dialing tel://{number}")


GUIDE_HELP = (
    "Commands: <step>.<n> toggle | start/stop/reset <step> | beat | call 999|112 | open <topic> | q"
)


def _parse_key(text: str) -> Optional[InstructionKey]:
    parts = text.replace(".", " ").split()
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    return InstructionKey(int(parts[0]), int(parts[1]) - 1)


@app.command("guide")
def cli_guide(topic: str = typer.Option(..., "--topic")):
    """Walk through a topic interactively."""
    catalog = _catalog()
    current = _topic(catalog, topic)
    caller = EmergencyCaller(ConsoleTelephony(), typer.confirm)
    while current is not None:
        current = _guide_topic(catalog, current, caller)


def _guide_topic(catalog: Catalog, topic: Topic, caller: EmergencyCaller) -> Optional[Topic]:
    scheduler = PollingScheduler()
    metronome = ScheduledMetronome(lambda n: None, scheduler=scheduler, bpm=settings.metronome_bpm)
    finished: List[int] = []
    with GuidanceEngine(topic, scheduler=scheduler, metronome=metronome, on_timer_expire=finished.append) as engine:
        typer.echo(GUIDE_HELP)
        while True:
            scheduler.poll()
            for n in finished:
                typer.echo(f"Timer for step {n} finished.")
            finished.clear()
            for line in render_topic(topic, engine):
                typer.echo(line)
            try:
                answer = typer.prompt(">", default="", show_default=False).strip()
            except (KeyboardInterrupt, EOFError, typer.Abort):
                return None
            scheduler.poll()
            cmd, _, arg = answer.partition(" ")
            try:
                if answer.lower() in ("q", "quit", "exit"):
                    return None
                if not answer:
                    continue
                if cmd == "open":
                    return catalog.get_topic(arg.strip())
                if cmd in ("start", "stop", "reset"):
                    n = int(arg)
                    action = {"start": engine.start_timer, "stop": engine.stop_timer, "reset": engine.restart_timer}[cmd]
                    if not action(n):
                        typer.echo(f"The timer for step {n} is not available yet.")
                    continue
                if cmd == "beat":
                    engine.toggle_metronome()
                    continue
                if cmd == "call":
                    caller.call(arg.strip())
                    continue
                key = _parse_key(answer)
                if key is None:
                    typer.echo(GUIDE_HELP)
                    continue
                engine.toggle(key)
            except (KeyError, ValueError) as e:
                typer.echo(f"Error: {e}", err=True)


@app.command("timer")
def cli_timer(
    seconds: Optional[int] = typer.Option(None, "--seconds"),
    topic: Optional[str] = typer.Option(None, "--topic", help="Use the timer authored on a topic step"),
    step: Optional[int] = typer.Option(None, "--step"),
    label: str = typer.Option("Timer: ", "--label"),
    interval: float = typer.Option(1.0, "--interval", hidden=True),
):
    if topic is not None:
        t = _topic(_catalog(), topic)
        timed = [s for s in t.steps if s.trigger and s.trigger.is_timer and (step is None or s.number == step)]
        if not timed:
            typer.echo(f"Error: {topic} has no timed step", err=True)
            raise typer.Exit(code=1)
        seconds, label = timed[0].trigger.duration_seconds, timed[0].trigger.label
    if not seconds or seconds <= 0:
        typer.echo("Error: give --seconds or a --topic with a timed step", err=True)
        raise typer.Exit(code=1)
    asyncio.run(_run_countdown(seconds, label, interval))
    typer.echo("Time is up.")


async def _run_countdown(seconds: int, label: str, interval: float) -> None:
    done = asyncio.get_running_loop().create_future()
    timer = IntervalTimer(seconds, scheduler=AsyncioScheduler(), interval=interval)
    timer.on_tick = lambda remaining: typer.echo(f"{label}{timer.formatted_remaining()}")
    timer.on_expire = lambda: done.set_result(None)
    typer.echo(f"{label}{timer.formatted_remaining()}")
    timer.start()
    try:
        await done
    finally:
        timer.dispose()


@app.command("metronome")
def cli_metronome(
    beats: int = typer.Option(30, "--beats", help="Stop after this many beats (one cycle of compressions)"),
    bpm: int = typer.Option(settings.metronome_bpm, "--bpm"),
):
    try:
        asyncio.run(_run_metronome(beats, bpm))
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


async def _run_metronome(beats: int, bpm: int) -> None:
    done = asyncio.get_running_loop().create_future()

    def on_beat(n: int) -> None:
        typer.echo(f"{n:>3} push")
        if n >= beats and not done.done():
            done.set_result(None)

    metronome = ScheduledMetronome(on_beat, scheduler=AsyncioScheduler(), bpm=bpm)
    metronome.start()
    try:
        await done
    finally:
        metronome.stop()


@app.command("call")
def cli_call(number: str = typer.Option("999", "--number")):
    caller = EmergencyCaller(ConsoleTelephony(), typer.confirm)
    try:
        caller.call(number)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


# accounts


def make_identity() -> IdentityService:
    return FirebaseIdentityService(settings)


def _controller() -> AuthController:
    return AuthController(make_identity(), ConnectivityMonitor(check_connectivity()))


def _check_form(form: FormState) -> None:
    if form.is_valid:
        return
    for field, message in form.errors.items():
        if message:
            typer.echo(f"{field}: {message}", err=True)
    raise typer.Exit(code=1)


def _verify_interactively(controller: AuthController) -> None:
    scheduler = PollingScheduler()
    flow = controller.verification_flow(scheduler=scheduler, cooldown=settings.resend_cooldown)
    flow.enter()
    typer.echo(f"We sent a 6-digit code to {flow.email}.")
    try:
        while not flow.verified:
            scheduler.poll()
            hint = "'r' to resend" if flow.resend_enabled else f"resend in {flow.seconds_until_resend}s"
            answer = typer.prompt(f"Verification code ({hint}, 'q' to cancel)").strip()
            scheduler.poll()
            if answer.lower() in ("q", "quit"):
                if typer.confirm("Cancel verification? You will need to log in again."):
                    flow.cancel()
                    raise typer.Exit(code=1)
                continue
            if answer.lower() == "r":
                if not flow.resend_enabled:
                    typer.echo(f"You can request a new code in {flow.seconds_until_resend}s.")
                elif asyncio.run(flow.resend()):
                    typer.echo("A new code has been sent.")
                else:
                    typer.echo(flow.error, err=True)
                continue
            flow.enter_code(answer)
            if not flow.is_code_valid:
                typer.echo("Enter the 6-digit code.", err=True)
                continue
            if not asyncio.run(flow.submit_code()):
                typer.echo(flow.error, err=True)
    finally:
        flow.dispose()


@app.command("login")
def cli_login(
    email: str = typer.Option(..., "--email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
):
    _check_form(FormState("login", email=email, password=password))
    controller = _controller()
    result = asyncio.run(controller.sign_in(email, password))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        raise typer.Exit(code=1)
    _verify_interactively(controller)
    typer.echo(f"Welcome, {controller.session.display_name or controller.session.email}.")


@app.command("signup")
def cli_signup(
    first_name: str = typer.Option(..., "--first-name", prompt=True),
    surname: str = typer.Option(..., "--surname", prompt=True),
    email: str = typer.Option(..., "--email", prompt=True),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    confirm_password: str = typer.Option(..., "--confirm-password", prompt=True, hide_input=True),
):
    _check_form(
        FormState(
            "signup",
            first_name=first_name,
            surname=surname,
            email=email,
            password=password,
            confirm_password=confirm_password,
        )
    )
    controller = _controller()
    result = asyncio.run(controller.sign_up(first_name, surname, email, password))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        if result.offer_login:
            typer.echo(f"Log in instead with: firstaid login --email {email}", err=True)
        raise typer.Exit(code=1)
    _verify_interactively(controller)
    typer.echo(f"Account created. Welcome, {first_name}.")


@app.command("reset-password")
def cli_reset_password(email: str = typer.Option(..., "--email")):
    _check_form(FormState("reset_password", email=email))
    result = asyncio.run(_controller().reset_password(email))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        raise typer.Exit(code=1)
    typer.echo(result.message)


@app.command("delete-account")
def cli_delete_account(
    email: str = typer.Option(..., "--email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
):
    _check_form(FormState("login", email=email, password=password))
    controller = _controller()
    result = asyncio.run(controller.sign_in(email, password))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        raise typer.Exit(code=1)
    _verify_interactively(controller)
    controller.request_account_deletion()
    if not typer.confirm("Are you sure you want to delete your account? This action cannot be undone."):
        controller.cancel_account_deletion()
        typer.echo("Account kept.")
        return
    confirm = typer.prompt("Enter your password to confirm", hide_input=True)
    _check_form(FormState("delete_account", password=confirm))
    result = asyncio.run(controller.confirm_account_deletion(confirm))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        raise typer.Exit(code=1)
    typer.echo("Your account has been deleted.")


@app.command("login-google")
def cli_login_google(id_token: str = typer.Option(..., "--id-token", help="Google ID token from the sign-in client")):
    controller = _controller()
    result = asyncio.run(controller.sign_in_with_provider(id_token))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Welcome, {controller.session.display_name or controller.session.email}.")


# emergency alerts


class ConsoleMessenger:
    def send_text(self, recipients: List[str], body: str) -> None:
        typer.echo(f"To: {', '.join(recipients)}")
        typer.echo(body)


ALERT_HELP = "Commands: add | rm <n> | toggle <n> | send | q"


def _show_contacts(book: ContactBook) -> None:
    if not len(book):
        typer.echo("No emergency contacts yet.")
    for i, c in enumerate(book.contacts, 1):
        mark = "x" if c.is_selected else " "
        typer.echo(f"{i}. [{mark}] {c.name}  {c.phone_number}")


def _contact_id(book: ContactBook, arg: str) -> Optional[str]:
    if not arg.isdigit() or not 1 <= int(arg) <= len(book):
        typer.echo(f"No contact number {arg}.", err=True)
        return None
    return book.contacts[int(arg) - 1].id


@app.command("alert")
def cli_alert(
    email: str = typer.Option(..., "--email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    lat: Optional[float] = typer.Option(None, "--lat", help="Latitude of the last known location"),
    lon: Optional[float] = typer.Option(None, "--lon", help="Longitude of the last known location"),
    location_failed: bool = typer.Option(False, "--location-failed", help="Location lookup was attempted and failed"),
):
    _check_form(FormState("login", email=email, password=password))
    controller = _controller()
    result = asyncio.run(controller.sign_in(email, password))
    if not result.ok:
        typer.echo(result.message or "Please try again.", err=True)
        raise typer.Exit(code=1)
    _verify_interactively(controller)

    identity = controller.identity
    book = ContactBook()
    asyncio.run(book.load(identity))
    location = (lat, lon) if lat is not None and lon is not None else None
    status = LocationStatus.FAILED if location_failed else LocationStatus.DENIED
    _show_contacts(book)
    typer.echo(ALERT_HELP)
    while True:
        cmd, _, rest = typer.prompt(">", default="", show_default=False).strip().partition(" ")
        cmd = cmd.lower()
        if cmd in ("q", "quit"):
            return
        if cmd == "add":
            if not book.can_add:
                typer.echo(f"You can add up to {book.max_contacts} emergency contacts.", err=True)
                continue
            name = typer.prompt("Name").strip()
            phone = typer.prompt("Phone number").strip()
            try:
                book.add(name, phone)
            except ValueError:
                typer.echo("A contact needs a name and a phone number.", err=True)
                continue
        elif cmd in ("rm", "toggle"):
            contact_id = _contact_id(book, rest.strip())
            if contact_id is None:
                continue
            if cmd == "toggle":
                book.toggle(contact_id)
            else:
                name = book.get(contact_id).name
                if not typer.confirm(f"Are you sure you want to remove {name} from your emergency contacts?"):
                    continue
                book.remove(contact_id)
        elif cmd == "send":
            try:
                book.prepare_alert(location, status)
            except NoRecipients as e:
                typer.echo(str(e), err=True)
                continue
            if typer.confirm(f"{CONFIRM_TITLE}: {CONFIRM_SEND}"):
                sent = book.send_alert(ConsoleMessenger(), location, status)
                shared = "shared" if sent.location_shared else "not shared"
                typer.echo(f"Alert sent to {len(sent.recipients)} contact(s); location {shared}.")
            continue
        else:
            typer.echo(ALERT_HELP)
            continue
        try:
            asyncio.run(book.save(identity))
        except IdentityError as e:
            typer.echo(f"Could not save emergency contacts: {e}", err=True)
        _show_contacts(book)


if __name__ == "__main__":
    app()

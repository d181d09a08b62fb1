from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer

from auto_containers.m1 import db as db_mod
from auto_containers.m1.config import Settings, load_settings
from auto_containers.m1.paths import default_config_path, default_db_path
from auto_containers.m1.store import (
    COLORS,
    ICONS,
    ContainerStyle,
    SettingsStore,
    TempContainerStyle,
)
from auto_containers.m2.rules import (
    RuleSyntaxError,
    find_rule_errors,
    first_match,
    parse_rules,
    rule_lines,
)
from auto_containers.m3.editing import (
    RuleExistsError,
    add_rule,
    delete_rule,
    rules_for_container,
    save_rules,
    sort_stored_rules,
)
from auto_containers.m4.memory import InMemoryBrowser
from auto_containers.m6.background import Background
from auto_containers.m6.simulate import load_script, run_script
from auto_containers.m7.client import DEFAULT_BASE_URL, MessageClientError, send_message
from auto_containers.m7.message_server import DEFAULT_PORT
from auto_containers.m7.message_server import serve as serve_messages

app = typer.Typer(add_completion=False, no_args_is_help=True)
config_app = typer.Typer(add_completion=False, no_args_is_help=True)
rules_app = typer.Typer(add_completion=False, no_args_is_help=True)
style_app = typer.Typer(add_completion=False, no_args_is_help=True)
notifications_app = typer.Typer(add_completion=False, no_args_is_help=True)
send_app = typer.Typer(add_completion=False, no_args_is_help=True)
app.add_typer(config_app, name="config")
app.add_typer(rules_app, name="rules")
app.add_typer(style_app, name="style")
app.add_typer(notifications_app, name="notifications")
app.add_typer(send_app, name="send")

DB_ENVVAR = "AUTO_CONTAINERS_DB"
CONFIG_ENVVAR = "AUTO_CONTAINERS_CONFIG"
URL_ENVVAR = "AUTO_CONTAINERS_URL"


def _db_option() -> Path:
    return typer.Option(default_db_path, "--db", help="SQLite DB path", envvar=DB_ENVVAR)


def _config_option() -> Path:
    return typer.Option(
        default_config_path,
        "--config",
        help="config.json path",
        envvar=CONFIG_ENVVAR,
    )


def _url_option() -> str:
    return typer.Option(DEFAULT_BASE_URL, "--url", help="Message server URL", envvar=URL_ENVVAR)


def _open_store(db: Path) -> SettingsStore:
    return SettingsStore(db_mod.connect(db))


def _load_settings(config: Path) -> Settings:
    try:
        return load_settings(config)
    except (ValueError, OSError) as e:
        typer.echo(f"invalid config {config}: {e}")
        raise typer.Exit(code=2) from e


@app.callback()
def _root(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logging (-vv for debug)"),  # noqa: B008
) -> None:
    """auto-containers."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.command()
def doctor(
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
) -> None:
    """Check that the config loads, the DB opens and the stored rules are valid."""
    _load_settings(config)
    store = _open_store(db)
    try:
        errors = find_rule_errors(store.get_rules())
    finally:
        store.conn.close()

    if errors:
        for e in errors:
            typer.echo(str(e))
        raise typer.Exit(code=1)
    typer.echo("ok")


@config_app.command("show")
def config_show(
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
) -> None:
    """Print resolved paths and settings."""
    settings = _load_settings(config)
    typer.echo(f"db: {db}")
    typer.echo(f"config: {config}{'' if config.exists() else ' (missing, using defaults)'}")
    typer.echo(f"quiet_seconds: {settings.quiet_seconds:g}")
    typer.echo(f"max_processing_per_tab: {settings.max_processing_per_tab}")
    typer.echo(f"multi_part_tlds: {', '.join(settings.multi_part_tlds)}")


@rules_app.command("show")
def rules_show(
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Print the stored rules, one per line."""
    store = _open_store(db)
    try:
        for line in rule_lines(store.get_rules()):
            typer.echo(line)
    finally:
        store.conn.close()


@rules_app.command("check")
def rules_check(
    path: Path | None = typer.Argument(None, help="Rules file to check (default: stored rules)"),  # noqa: B008
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Validate rule text without saving it."""
    if path is not None:
        text = path.read_text(encoding="utf-8")
    else:
        store = _open_store(db)
        try:
            text = store.get_rules()
        finally:
            store.conn.close()

    errors = find_rule_errors(text)
    for e in errors:
        typer.echo(str(e))
    if errors:
        raise typer.Exit(code=1)
    typer.echo(f"ok ({len(rule_lines(text))} rule(s))")


@rules_app.command("sort")
def rules_sort(
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
) -> None:
    """Sort the stored rules most-specific-first."""
    settings = _load_settings(config)
    store = _open_store(db)
    try:
        changed = sort_stored_rules(store, multi_part_tlds=settings.multi_part_tlds)
    finally:
        store.conn.close()
    typer.echo("sorted" if changed else "unchanged")


@rules_app.command("add")
def rules_add(
    pattern: str = typer.Argument(..., help="Domain pattern, e.g. *.example.com or example.com/app"),
    name: str = typer.Argument(..., help="Container name"),
    color: str = typer.Option("", "--color", help=f"One of: {', '.join(COLORS)}"),  # noqa: B008
    icon: str = typer.Option("", "--icon", help=f"One of: {', '.join(ICONS)}"),  # noqa: B008
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
) -> None:
    """Add one rule (and a style for its container) and re-sort."""
    style = _style_or_exit(color, icon) if color or icon else None
    settings = _load_settings(config)
    store = _open_store(db)
    try:
        add_rule(store, pattern, name, style=style, multi_part_tlds=settings.multi_part_tlds)
    except (RuleSyntaxError, RuleExistsError) as e:
        typer.echo(str(e))
        raise typer.Exit(code=1) from e
    finally:
        store.conn.close()
    typer.echo(f"added: {pattern.strip()}, {name.strip()}")


@rules_app.command("remove")
def rules_remove(
    line: str = typer.Argument(..., help='The exact rule line, e.g. "youtube.com, YT"'),
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Delete one rule line."""
    store = _open_store(db)
    try:
        removed = delete_rule(store, line)
    finally:
        store.conn.close()
    if not removed:
        typer.echo(f"no such rule: {line.strip()}")
        raise typer.Exit(code=1)
    typer.echo(f"removed: {line.strip()}")


@rules_app.command("for-container")
def rules_for_container_cmd(
    name: str = typer.Argument(..., help="Container name"),
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """List the rules that route into one container."""
    store = _open_store(db)
    try:
        lines = rules_for_container(store.get_rules(), name)
    finally:
        store.conn.close()
    for line in lines:
        typer.echo(line)


@rules_app.command("import")
def rules_import(
    path: Path = typer.Argument(..., help="Text file with one `pattern, name` rule per line"),  # noqa: B008
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
) -> None:
    """Replace all stored rules with the contents of a file (validated, then sorted)."""
    settings = _load_settings(config)
    text = path.read_text(encoding="utf-8")
    store = _open_store(db)
    try:
        saved = save_rules(store, text, multi_part_tlds=settings.multi_part_tlds)
    except RuleSyntaxError as e:
        typer.echo(str(e))
        raise typer.Exit(code=1) from e
    finally:
        store.conn.close()
    typer.echo(f"saved {len(rule_lines(saved))} rule(s)")


@app.command("match")
def match(
    url: str = typer.Argument(..., help="URL to test"),
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Show which rule (if any) a URL would be routed by."""
    store = _open_store(db)
    try:
        rule = first_match(parse_rules(store.get_rules()), url)
    finally:
        store.conn.close()
    if rule is None:
        typer.echo("no match (ephemeral container)")
        return
    typer.echo(f"{rule.container_name} ({rule.pattern})")


def _style_or_exit(color: str, icon: str) -> ContainerStyle:
    color = color or "blue"
    icon = icon or "circle"
    if color not in COLORS:
        typer.echo(f"unknown color: {color} (choose from {', '.join(COLORS)})")
        raise typer.Exit(code=2)
    if icon not in ICONS:
        typer.echo(f"unknown icon: {icon} (choose from {', '.join(ICONS)})")
        raise typer.Exit(code=2)
    return ContainerStyle(color=color, icon=icon)


@style_app.command("temp")
def style_temp(
    color: str = typer.Option("", "--color", help=f"One of: {', '.join(COLORS)}"),  # noqa: B008
    icon: str = typer.Option("", "--icon", help=f"One of: {', '.join(ICONS)}"),  # noqa: B008
    random_color: bool = typer.Option(False, "--random-color", help="Pick a random color per container"),  # noqa: B008
    random_icon: bool = typer.Option(False, "--random-icon", help="Pick a random icon per container"),  # noqa: B008
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Show or set the style of ephemeral containers."""
    store = _open_store(db)
    try:
        if color or icon or random_color or random_icon:
            base = _style_or_exit(color, icon)
            store.set_temp_style(
                TempContainerStyle(
                    color=None if random_color else base.color,
                    icon=None if random_icon else base.icon,
                    random_color=random_color,
                    random_icon=random_icon,
                )
            )
        style = store.get_temp_style()
    finally:
        store.conn.close()
    typer.echo(f"color: {'random' if style.random_color else style.color}")
    typer.echo(f"icon: {'random' if style.random_icon else style.icon}")


@style_app.command("container")
def style_container(
    name: str = typer.Argument(..., help="Container name"),
    color: str = typer.Option("", "--color", help=f"One of: {', '.join(COLORS)}"),  # noqa: B008
    icon: str = typer.Option("", "--icon", help=f"One of: {', '.join(ICONS)}"),  # noqa: B008
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Show or set the style used when a rule first creates this container."""
    store = _open_store(db)
    try:
        if color or icon:
            current = store.get_container_style(name) or ContainerStyle()
            store.set_container_style(name, _style_or_exit(color or current.color, icon or current.icon))
        style = store.get_container_style(name)
    finally:
        store.conn.close()
    if style is None:
        typer.echo(f"{name}: default")
        return
    typer.echo(f"{name}: {style.color}/{style.icon}")


@notifications_app.command("on")
def notifications_on(
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Notify on saves and rejected rule edits."""
    store = _open_store(db)
    try:
        store.set_notifications(True)
    finally:
        store.conn.close()
    typer.echo("notifications: on")


@notifications_app.command("off")
def notifications_off(
    db: Path = _db_option(),  # noqa: B008
) -> None:
    """Stop notifications."""
    store = _open_store(db)
    try:
        store.set_notifications(False)
    finally:
        store.conn.close()
    typer.echo("notifications: off")


@app.command("serve")
def serve(
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
    host: str = typer.Option("127.0.0.1", "--host", help="Bind host"),  # noqa: B008
    port: int = typer.Option(DEFAULT_PORT, "--port", help="Bind port"),  # noqa: B008
) -> None:
    """Run the localhost message channel for the options page and popup."""
    settings = _load_settings(config)
    typer.echo(f"message server listening on http://{host}:{port} (db={db})")
    serve_messages(db_path=db, settings=settings, host=host, port=port)


def _send(url: str, action: str, **fields: object) -> dict:
    try:
        reply = send_message(url, action, **fields)
    except MessageClientError as e:
        typer.echo(str(e))
        raise typer.Exit(code=1) from e
    if not reply.get("success"):
        typer.echo(f"error: {reply.get('error', 'unknown error')}")
        raise typer.Exit(code=1)
    return reply


@send_app.command("sort-rules")
def send_sort_rules(
    url: str = _url_option(),  # noqa: B008
) -> None:
    """Ask a running server to sort and persist the rules."""
    reply = _send(url, "sortRules")
    typer.echo("sorted" if reply.get("changed") else "unchanged")


@send_app.command("exclude")
def send_exclude(
    tab_id: int = typer.Argument(..., help="Tab id"),
    url: str = _url_option(),  # noqa: B008
) -> None:
    """Exclude a tab from container isolation."""
    _send(url, "excludeTab", tabId=tab_id)
    typer.echo(f"tab {tab_id}: excluded")


@send_app.command("include")
def send_include(
    tab_id: int = typer.Argument(..., help="Tab id"),
    url: str = _url_option(),  # noqa: B008
) -> None:
    """Remove a tab's exclusion."""
    _send(url, "removeExclusion", tabId=tab_id)
    typer.echo(f"tab {tab_id}: not excluded")


@send_app.command("status")
def send_status(
    tab_id: int = typer.Argument(..., help="Tab id"),
    url: str = _url_option(),  # noqa: B008
) -> None:
    """Show whether a tab is excluded."""
    reply = _send(url, "isExcluded", tabId=tab_id)
    typer.echo(f"tab {tab_id}: {'excluded' if reply.get('isExcluded') else 'not excluded'}")


@app.command("simulate")
def simulate(
    script: Path = typer.Argument(..., help="JSON-lines script of user actions"),  # noqa: B008
    db: Path = _db_option(),  # noqa: B008
    config: Path = _config_option(),  # noqa: B008
    as_json: bool = typer.Option(False, "--json", help="Print the final tabs as JSON"),  # noqa: B008
) -> None:
    """Replay user actions against an in-memory browser and print where tabs ended up."""
    settings = _load_settings(config)
    try:
        steps = load_script(script)
    except ValueError as e:
        typer.echo(f"invalid script: {e}")
        raise typer.Exit(code=2) from e

    store = _open_store(db)
    browser = InMemoryBrowser()
    try:
        rows = asyncio.run(run_script(Background(browser, store, settings), browser, steps))
    except ValueError as e:
        typer.echo(f"script failed: {e}")
        raise typer.Exit(code=1) from e
    finally:
        store.conn.close()

    if as_json:
        typer.echo(
            json.dumps(
                [
                    {
                        "index": r.index,
                        "tab": r.tab_id,
                        "container": r.container,
                        "url": r.url,
                        "excluded": r.excluded,
                    }
                    for r in rows
                ],
                indent=2,
            )
        )
        return
    for r in rows:
        flag = " [excluded]" if r.excluded else ""
        typer.echo(f"{r.index} | {r.container} | {r.url}{flag}")


def main() -> None:
    app()

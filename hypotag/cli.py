"""
CLI interface for hypotag.

Usage:
    hypotag sync
    hypotag search --fuzzy
    hypotag tag ID -t research
    hypotag tags
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Tagger
from .dispatcher import Outcome
from .errors import DoingNothing, HypotagError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import Gesture


# Configure quiet mode by default
# Set HYPOTAG_VERBOSE=1 to enable debug mode via environment
if os.environ.get("HYPOTAG_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"hypotag {version('hypotag')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_store_override: Optional[Path] = None


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="hypotag",
    help="Tag and organize Hypothesis annotations locally.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

config_app = typer.Typer(
    help="Show or change configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="HYPOTAG_STORE_PATH",
        help="Directory holding the tag index",
        callback=_store_callback,
    )] = None,
):
    """Tag and organize Hypothesis annotations locally."""


TagOption = Annotated[Optional[list[str]], typer.Option(
    "--tag", "-t",
    help="Tag (repeatable)",
)]

YesOption = Annotated[bool, typer.Option(
    "--yes", "-y",
    help="Don't ask for confirmation",
)]


def _get_tagger() -> Tagger:
    """Open the tag index, handling errors gracefully."""
    import atexit

    try:
        tg = Tagger(_get_store_override())
    except HypotagError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(tg.close)
    return tg


@contextmanager
def _errors():
    """Turn hypotag errors into a clean message and exit status 1."""
    try:
        yield
    except (HypotagError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _confirm(message: str, yes: bool) -> None:
    if not yes and not typer.confirm(message):
        raise DoingNothing()


def _report(outcome: Outcome) -> None:
    """Tell the user what a search did."""
    if not outcome.ids:
        typer.echo("Nothing selected")
        return
    n = len(outcome.ids)
    gesture = outcome.gesture
    if gesture in (Gesture.ACCEPT, Gesture.ADD_TAG):
        if outcome.tags:
            typer.echo(f"Added {', '.join(outcome.tags)} to {n} annotation(s)")
        else:
            typer.echo("No tags chosen")
    elif gesture is Gesture.REMOVE_TAG:
        if outcome.tags:
            typer.echo(f"Removed {', '.join(outcome.tags)} from {n} annotation(s)")
        else:
            typer.echo("No tags chosen")
    elif gesture is Gesture.DELETE:
        typer.echo(f"Deleted {n} annotation(s) from the index")
    elif gesture is Gesture.EXPORT:
        for uri in outcome.uris:
            typer.echo(uri)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def sync(
    group: Annotated[Optional[str], typer.Option(
        "--group", "-g",
        help="Hypothesis group ID (default: configured group)",
    )] = None,
):
    """Fetch new and updated annotations from Hypothesis."""
    tg = _get_tagger()
    with _errors():
        fetched, added = tg.sync(group=group)
    typer.echo(f"Synced {fetched} annotation(s), {added} new")


@app.command()
def search(
    fuzzy: Annotated[bool, typer.Option(
        "--fuzzy", "-f",
        help="Fuzzy matching instead of exact substrings",
    )] = False,
    tag: TagOption = None,
    untagged: Annotated[bool, typer.Option(
        "--untagged", "-u",
        help="Only annotations without tags",
    )] = False,
):
    """Search annotations interactively, then tag, untag, delete or export them."""
    tg = _get_tagger()
    with _errors():
        annotations = tg.annotations(tag, untagged=untagged)
        if not annotations:
            typer.echo("No annotations to search.")
            return
        outcome = tg.search(annotations, fuzzy=fuzzy)
    _report(outcome)


@app.command()
def tag(
    ids: Annotated[list[str], typer.Argument(help="Annotation IDs")],
    tags: Annotated[list[str], typer.Option(
        "--tag", "-t",
        help="Tag to add (repeatable)",
    )],
):
    """Add tags to annotations."""
    tg = _get_tagger()
    with _errors():
        tg.tag(ids, tags)
    typer.echo(f"Added {', '.join(tags)} to {len(ids)} annotation(s)")


@app.command()
def untag(
    ids: Annotated[list[str], typer.Argument(help="Annotation IDs")],
    tags: Annotated[list[str], typer.Option(
        "--tag", "-t",
        help="Tag to remove (repeatable)",
    )],
):
    """Remove tags from annotations."""
    tg = _get_tagger()
    with _errors():
        tg.untag(ids, tags)
    typer.echo(f"Removed {', '.join(tags)} from {len(ids)} annotation(s)")


@app.command("tags")
def list_tags(
    name: Annotated[Optional[str], typer.Argument(
        help="Show the annotations with this tag instead",
    )] = None,
):
    """List tags with annotation counts, or the annotations under one tag."""
    tg = _get_tagger()
    with _errors():
        if name is not None:
            for id in sorted(tg.index.annotations_with_tag(name, strict=True)):
                typer.echo(id)
            return
        counts = tg.list_tags()
    if not counts:
        typer.echo("No tags found.")
        return
    width = max(len(t) for t, _ in counts)
    for t, n in counts:
        typer.echo(f"{t:<{width}}  {n}")


@app.command()
def delete(
    ids: Annotated[list[str], typer.Argument(help="Annotation IDs")],
    remote: Annotated[bool, typer.Option(
        "--remote",
        help="Also delete them on Hypothesis",
    )] = False,
    yes: YesOption = False,
):
    """Remove annotations from the local index (and optionally from Hypothesis)."""
    where = "the index and Hypothesis" if remote else "the index"
    tg = _get_tagger()
    with _errors():
        _confirm(f"Delete {len(ids)} annotation(s) from {where}?", yes)
        tg.delete(ids, remote=remote)
    typer.echo(f"Deleted {len(ids)} annotation(s) from {where}")


@app.command()
def pick(
    fuzzy: Annotated[bool, typer.Option(
        "--fuzzy", "-f",
        help="Fuzzy matching instead of exact substrings",
    )] = False,
    tag: TagOption = None,
):
    """Choose annotations interactively and print their IDs."""
    tg = _get_tagger()
    with _errors():
        annotations = tg.annotations(tag)
        if not annotations:
            typer.echo("No annotations to search.")
            return
        ids = tg.search_group(annotations, fuzzy=fuzzy)
    for id in sorted(ids):
        typer.echo(id)


@app.command()
def uri(
    tag: TagOption = None,
):
    """Print the distinct URIs of annotations (all, or those with every given tag)."""
    tg = _get_tagger()
    with _errors():
        uris = tg.uris(tag)
    for u in uris:
        typer.echo(u)


@app.command()
def clear(
    yes: YesOption = False,
):
    """Delete every annotation and tag from the local index."""
    tg = _get_tagger()
    with _errors():
        _confirm("Clear the whole tag index?", yes)
        count = tg.clear()
    typer.echo(f"Cleared {count} annotation(s)")


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------

@config_app.command("show")
def config_show():
    """Show the current configuration."""
    from .config import load_or_create_config

    with _errors():
        config = load_or_create_config()
    username, key = config.credentials()
    typer.echo(f"config:    {config.config_path}")
    typer.echo(f"store:     {_get_store_override() or config.store_path}")
    typer.echo(f"username:  {username or '(not set)'}")
    typer.echo(f"api key:   {'(set)' if key else '(not set)'}")
    typer.echo(f"group:     {config.hypothesis_group or '(all)'}")
    typer.echo(f"template:  {'(set)' if config.has_template() else '(not set)'}")
    typer.echo(f"last sync: {config.last_sync or '(never)'}")


@config_app.command("template")
def config_template(
    file: Annotated[Optional[Path], typer.Option(
        "--file", "-f",
        help="Read the template from a file (default: built-in template)",
        exists=True, dir_okay=False,
    )] = None,
):
    """Set the annotation preview template."""
    from .config import load_or_create_config

    with _errors():
        config = load_or_create_config()
        template = file.read_text(encoding="utf-8") if file is not None else None
        config.set_annotation_template(template)
    typer.echo(f"Template saved to {config.config_path}")


@config_app.command("auth")
def config_auth(
    username: Annotated[str, typer.Option(
        "--username", prompt="Hypothesis username",
    )],
    key: Annotated[str, typer.Option(
        "--key", prompt="Hypothesis API key", hide_input=True,
    )],
    group: Annotated[Optional[str], typer.Option(
        "--group", help="Only sync annotations in this group",
    )] = None,
):
    """Store and verify Hypothesis credentials."""
    from .config import load_or_create_config, save_config
    from .hypothesis import HypothesisClient

    with _errors():
        profile = HypothesisClient(username, key).get_profile()
        if not profile.get("userid"):
            typer.echo("Error: Hypothesis did not accept that API key", err=True)
            raise typer.Exit(1)
        config = load_or_create_config()
        config.hypothesis_username = username
        config.hypothesis_key = key
        if group is not None:
            config.hypothesis_group = group
        save_config(config)
    typer.echo(f"Authenticated as {profile['userid']}")


# -----------------------------------------------------------------------------

def _error_store() -> Optional[Path]:
    """Store directory for the error log: --store, else the configured one."""
    if _store_override is not None:
        return _store_override
    from .config import get_config_dir, load_config
    try:
        return load_config(get_config_dir()).store_path
    except HypotagError:
        return None


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="hypotag CLI", store_path=_error_store())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()

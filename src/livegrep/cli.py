"""CLI entry point using Typer."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from livegrep.app import run_app
from livegrep.backend import Backend
from livegrep.models import SearchMode
from livegrep.settings import PROMPT_POSITIONS, load_settings, merge_settings
from livegrep.workspace import find_git_root, health_check

app = typer.Typer(
    name="livegrep",
    help="Live grep - incremental content and file search for a project tree",
    no_args_is_help=False,
)


@app.command()
def main(
    query: Annotated[
        str | None,
        typer.Argument(help="Initial search query"),
    ] = None,
    path: Annotated[
        Path,
        typer.Option(
            "--path", "-C", help="Directory to search", exists=True, file_okay=False, resolve_path=True
        ),
    ] = Path("."),
    git_root: Annotated[
        bool,
        typer.Option("--git-root", help="Search from the root of the git repository containing --path"),
    ] = False,
    files: Annotated[
        bool,
        typer.Option("--files", "-f", help="Search file names instead of contents"),
    ] = False,
    debounce_ms: Annotated[
        int | None,
        typer.Option(min=0, help="Delay before a query starts the backend"),
    ] = None,
    throttle_ms: Annotated[
        int | None,
        typer.Option(min=0, help="Minimum interval between result updates"),
    ] = None,
    max_results: Annotated[
        int | None,
        typer.Option(min=1, help="Stop the backend after this many matches"),
    ] = None,
    rg_flag: Annotated[
        list[str] | None,
        typer.Option("--rg-flag", help="Extra flag passed to rg (repeatable)"),
    ] = None,
    prompt: Annotated[
        str | None,
        typer.Option(help=f"Prompt position: {' or '.join(PROMPT_POSITIONS)}"),
    ] = None,
    current_file: Annotated[
        Path | None,
        typer.Option(help="File to rank below equally good candidates in --files mode"),
    ] = None,
    health: Annotated[
        bool,
        typer.Option("--health", help="Report whether rg and git are available, then exit"),
    ] = False,
) -> None:
    """Search a project tree as you type and print the chosen location."""
    if prompt is not None and prompt not in PROMPT_POSITIONS:
        raise typer.BadParameter(f"must be one of {', '.join(PROMPT_POSITIONS)}", param_hint="--prompt")

    settings = merge_settings(
        load_settings(),
        {
            "debounce_ms": debounce_ms,
            "throttle_ms": throttle_ms,
            "max_results": max_results,
            "extra_flags": rg_flag or None,
            "prompt_position": prompt,
        },
    )

    if health:
        items = health_check(Backend.from_settings(settings))
        for item in items:
            status = "OK" if item.ok else ("MISSING" if item.required else "WARN")
            typer.echo(f"{status:<8}{item.name}: {item.detail}")
        raise typer.Exit(0 if all(item.ok or not item.required for item in items) else 1)

    if git_root:
        root = find_git_root(path)
        if root is None:
            raise typer.BadParameter(f"{path} is not inside a git repository", param_hint="--git-root")
        path = root

    location = run_app(
        base_path=str(path),
        initial_query=query or "",
        mode=SearchMode.FILES if files else SearchMode.GREP,
        settings=settings,
        pinned_path=str(current_file.resolve()) if current_file else None,
    )
    if location:
        typer.echo(location)


if __name__ == "__main__":
    app()

"""CLI entry point for knife-changelog."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import click

from knife_changelog.config import ChangelogConfig, load_config
from knife_changelog.engine import ChangelogEngine
from knife_changelog.errors import ChangelogError
from knife_changelog.locks import BerksfileLock, EmptyDependencySet
from knife_changelog.policy import PolicyfileChangelog
from knife_changelog.registry import SupermarketRegistry

FilePath = click.Path(dir_okay=False, path_type=Path)


def output_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every changelog command.

    Each defaults to None so unset flags leave the config file's value alone.
    """
    options = [
        click.option("--linkify/--no-linkify", default=None, help="Turn commit ids into links."),
        click.option("--markdown/--no-markdown", default=None, help="Format output as markdown."),
        click.option(
            "--ignore-changelog-file/--use-changelog-file",
            default=None,
            help="Always use git history, even when a CHANGELOG file exists.",
        ),
        click.option(
            "--allow-update-all/--no-allow-update-all",
            default=None,
            help="With no COOKBOOK given, report every cookbook.",
        ),
        click.option(
            "--submodules",
            default=None,
            metavar="NAME[,NAME...]",
            help="Host-repo submodules to report after the cookbooks.",
        ),
        click.option(
            "--fail-fast/--best-effort",
            default=None,
            help="Abort on the first failing cookbook, or report the error and go on.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@contextlib.contextmanager
def _reported_errors() -> Iterator[None]:
    try:
        yield
    except ChangelogError as exc:
        raise click.ClickException(str(exc)) from exc


def _options(config: ChangelogConfig, overrides: dict[str, Any]) -> ChangelogConfig:
    with _reported_errors():
        return config.merged(overrides)


def _emit(text: str) -> None:
    if text:
        click.echo(text, nl=not text.endswith("\n"))


@click.group()
@click.version_option(package_name="knife-changelog")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.option(
    "--config",
    "config_path",
    type=FilePath,
    default=None,
    help="Options file (default: ./.knife-changelog.toml if present).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """Changelogs for Chef cookbook dependency updates."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    with _reported_errors():
        ctx.obj = load_config(config_path)


@cli.command()
@click.argument("cookbooks", nargs=-1)
@click.option(
    "--lockfile",
    type=FilePath,
    default="Berksfile.lock",
    show_default=True,
    help="Committed Berksfile.lock.",
)
@click.option(
    "--updated-lockfile",
    type=FilePath,
    default=None,
    help="Berksfile.lock after update; without it, compare with upstream master.",
)
@click.option(
    "--berksfile",
    type=FilePath,
    default=None,
    help="Berksfile declaring supermarket sources (default: next to the lockfile).",
)
@output_options
@click.pass_obj
def berks(
    config: ChangelogConfig,
    cookbooks: tuple[str, ...],
    lockfile: Path,
    updated_lockfile: Path | None,
    berksfile: Path | None,
    **overrides: Any,
) -> None:
    """Changelog of Berkshelf-managed COOKBOOKS."""
    options = _options(config, overrides)
    with _reported_errors():
        dependencies = BerksfileLock.from_files(lockfile, updated_lockfile, berksfile)
        with SupermarketRegistry(verify=options.verify_ssl) as registry:
            text = ChangelogEngine(dependencies, options, registry).run(cookbooks)
    _emit(text)


@cli.command()
@click.argument("cookbooks", nargs=-1)
@click.option(
    "--policyfile",
    type=FilePath,
    default="Policyfile.rb",
    show_default=True,
    help="Policyfile whose lock is compared.",
)
@click.option(
    "--updated-lockfile",
    type=FilePath,
    default=None,
    help="Updated Policyfile.lock.json; computed with `chef update` when omitted.",
)
@click.option(
    "--with-dependencies/--without-dependencies",
    default=None,
    help="Also report cookbooks updated as dependencies of COOKBOOKS.",
)
@click.option(
    "--prevent-downgrade/--allow-downgrade",
    default=None,
    help="Fail if a cookbook would move to a lower version.",
)
@output_options
@click.pass_obj
def policy(
    config: ChangelogConfig,
    cookbooks: tuple[str, ...],
    policyfile: Path,
    updated_lockfile: Path | None,
    **overrides: Any,
) -> None:
    """Changelog of a Policyfile update of COOKBOOKS."""
    options = _options(config, overrides)
    target = None
    if updated_lockfile is not None:
        try:
            target = json.loads(updated_lockfile.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise click.ClickException(f"Cannot read {updated_lockfile}: {exc}") from exc

    with _reported_errors():
        with SupermarketRegistry(verify=options.verify_ssl) as registry:
            changelog = PolicyfileChangelog(policyfile, cookbooks, options, registry=registry)
            text = changelog.generate(target)
    _emit(text)


@cli.command()
@click.argument("names", nargs=-1, required=True)
@output_options
@click.pass_obj
def submodules(config: ChangelogConfig, names: tuple[str, ...], **overrides: Any) -> None:
    """Changelog of git submodules of the current repository."""
    requested = [n for name in names for n in name.split(",") if n]
    overrides["submodules"] = requested
    options = _options(config, overrides)
    with _reported_errors():
        text = ChangelogEngine(EmptyDependencySet(), options).run()
    _emit(text)

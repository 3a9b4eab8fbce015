"""click plumbing shared by the depot CLI tools."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import click

from .config import AppConfig, load_config
from .exceptions import ConfigurationError, DepotCliError, SpecError
from .logging import Logger, configure_library_logging, get_logger

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(slots=True)
class CLIContext:
    """Per-invocation state: loaded config, output flags, and a scratch ``state`` dict.

    Subcommands use ``state`` to hand work between the group callback and the
    command (plugin CLI arguments, the plugin discovery report).
    """

    config: AppConfig
    dry_run: bool
    verbose: bool
    logger: Logger
    state: dict[str, Any] = field(default_factory=dict)


pass_cli_context = click.make_pass_decorator(CLIContext)


def common_cli_options(func: F) -> F:
    """Add ``--config``/``--dry-run``/``--verbose`` and build the ``CLIContext``."""

    @click.option("--config", "config_path", type=click.Path(path_type=str), help="Path to config file.")
    @click.option("--dry-run", is_flag=True, help="Preview actions without writing output.")
    @click.option("--verbose", is_flag=True, help="Show engine diagnostics (abandoned blocks, skipped units).")
    @click.pass_context
    @functools.wraps(func)
    def wrapper(
        ctx: click.Context,
        *args: Any,
        config_path: str | None = None,
        dry_run: bool = False,
        verbose: bool = False,
        **kwargs: Any,
    ) -> Any:
        try:
            app_config = load_config(config_path)
        except ConfigurationError as exc:
            raise click.ClickException(str(exc)) from exc

        configure_library_logging(verbose=verbose)
        ctx.obj = kwargs["cli_ctx"] = CLIContext(
            config=app_config,
            dry_run=dry_run,
            verbose=verbose,
            logger=get_logger(verbose=verbose),
        )
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def handle_cli_errors(func: F) -> F:
    """Convert project exceptions into Click-friendly errors."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ConfigurationError as exc:
            raise click.ClickException(f"Configuration error: {exc}") from exc
        except SpecError as exc:
            raise click.ClickException(f"Invalid rule file: {exc}") from exc
        except DepotCliError as exc:
            raise click.ClickException(str(exc)) from exc
        except click.ClickException:
            raise
        except Exception as exc:
            raise click.ClickException(f"Unexpected error: {exc}") from exc

    return wrapper  # type: ignore[return-value]

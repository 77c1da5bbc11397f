"""
CLI entry point for scpush.

Provides the command-line interface using Click.
"""

import logging
import sys
import time
from typing import Optional, Tuple

import click

from scpush import __version__
from scpush.client import ScpClient
from scpush.config import (
    auto_detect_binding,
    get_host_config,
    load_config,
    load_config_with_sources,
)
from scpush.exceptions import ScpError
from scpush.utils import display_comment, format_elapsed


def version_callback(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Callback to display version and exit."""
    if value and not ctx.resilient_parsing:
        click.echo(f"scpush version {__version__}")
        ctx.exit()


def configure_logging(debug: bool) -> None:
    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )
    else:
        # Suppress paramiko's verbose error messages
        logging.getLogger("paramiko").setLevel(logging.CRITICAL)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--version",
    "-v",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option(
    "-b",
    "--binding",
    "binding_alias",
    default=None,
    help="Binding alias from configuration. If omitted, auto-detects from current directory.",
)
@click.option(
    "-d",
    "--destination",
    default=None,
    help="Remote directory to copy into (overrides the binding's remote_basepath).",
)
@click.option(
    "-p/-np",
    "--preserve-times/--no-preserve-times",
    default=None,
    help="Preserve modification times on the remote side [default: binding preserve_times or enabled]",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Do not print the remote command or per-file progress.",
)
@click.option(
    "--show-config",
    is_flag=True,
    help="Display the merged configuration with source file annotations and exit.",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Log every SCP record and acknowledgment.",
)
@click.argument("paths", nargs=-1, required=False, type=click.Path(exists=True))
def main(
    binding_alias: Optional[str],
    destination: Optional[str],
    preserve_times: Optional[bool],
    quiet: bool,
    show_config: bool,
    debug: bool,
    paths: Tuple[str, ...],
) -> None:
    """
    Copy files and directories to a remote host with scp.

    Sends every PATH, in order, over one SSH channel to a remote `scp -t`
    receiver. Directories are copied recursively.

    \b
    Examples:
      scpush index.html assets                   # Auto-detect binding
      scpush -b frontend dist                    # Use the 'frontend' binding
      scpush -b backend -d /srv/app/releases app # Override the remote directory
      scpush -q -np -b backend build             # Quiet, without timestamps

    \b
    Configuration:
      Bindings are read from ~/.scpush/scpush.json or
      ~/.config/scpush/scpush.json, then from every .scpush.json between the
      filesystem root and the current directory (deeper files override).
    """
    configure_logging(debug)

    if not paths and not show_config:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit()

    if show_config:
        from scpush.config import show_config as display_config_fn

        merged_config, source_map = load_config_with_sources()
        display_config_fn(merged_config, source_map)
        sys.exit(0)

    config = load_config()

    if binding_alias is None:
        binding_alias = auto_detect_binding(config)
        if binding_alias is None:
            click.echo(
                "Error: Could not auto-detect binding. Please specify binding with -b or --binding.",
                err=True,
            )
            click.echo("\nAvailable bindings:", err=True)
            for alias, binding_config in config.get("bindings", {}).items():
                click.echo(f"  - {alias}: {binding_config.get('local_basepath')}", err=True)
            sys.exit(1)
        click.echo(f"🔍 Auto-detected binding: {binding_alias}")

    if "comments" in config:
        display_comment(config["comments"])

    host_config = dict(get_host_config(config, binding_alias))
    if "comments" in host_config:
        display_comment(host_config["comments"], prefix="📝")

    if preserve_times is not None:
        host_config["preserve_times"] = preserve_times
    if quiet:
        host_config["quiet"] = True

    remote_dir = destination or host_config.get("remote_basepath")
    if not remote_dir:
        click.echo(
            "Error: No destination given and the binding has no remote_basepath.",
            err=True,
        )
        sys.exit(1)

    start_time = time.time()
    try:
        with ScpClient.from_config(host_config) as client:
            client.send(remote_dir, *paths)
    except ScpError as e:
        click.echo(click.style(f"❌ {e}", fg="red"), err=True)
        sys.exit(1)

    if not host_config.get("quiet"):
        click.echo()
        click.echo(f"⏱️  Upload completed in {format_elapsed(time.time() - start_time)}")


if __name__ == "__main__":
    main()

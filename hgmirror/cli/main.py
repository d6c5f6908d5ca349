"""hgmirror CLI"""

import click

from hgmirror import __version__
from hgmirror.cli.cache import describe, hash_command
from hgmirror.cli.sync import sync

from .debug import debug_option


@click.group()
@click.version_option(__version__, prog_name="hgmirror")
@click.pass_context
def cli(ctx):
    """
    Mercurial mirror cache for build clusters.
    """
    ctx.ensure_object(dict)


cli.add_command(debug_option(sync))
cli.add_command(debug_option(describe))
cli.add_command(hash_command)

debug_option(cli)

if __name__ == "__main__":
    cli(obj={})

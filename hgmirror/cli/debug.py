import click

from .utils.logging import configure_logging


def debug_option(cmd: click.Command) -> click.Command:
    """Attach a --debug/--no-debug flag to an existing command or group."""
    if not any(param.name == "debug" for param in cmd.params):
        cmd.params.insert(
            0,
            click.Option(
                ["--debug/--no-debug"],
                is_eager=True,
                expose_value=False,
                callback=_set_debug,
                help="Enable debug mode",
            ),
        )
    return cmd


def _set_debug(ctx: click.Context, param, value: bool) -> bool:
    # Once enabled at any level, debug stays on for nested commands; only the
    # root command may switch it off again.
    root_ctx = ctx.find_root()
    root_ctx.ensure_object(dict)
    enabled = root_ctx.obj.get("DEBUG", False)
    if value or ctx is root_ctx:
        enabled = value
    root_ctx.obj["DEBUG"] = enabled

    configure_logging(enabled)
    return enabled

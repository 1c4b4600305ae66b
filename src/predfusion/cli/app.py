"""predfusion command line: global config options, then markets / api subcommands."""

from pathlib import Path

import typer

from predfusion import __version__
from predfusion.config import configure_logging, get_settings

app = typer.Typer(
    name="predfusion",
    help="PredFusion - unified prediction markets across Polymarket, Kalshi and Limitless.",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Path | None = typer.Option(
        None, "--config-dir", "-C", help="Directory holding default.toml and profile overlays"
    ),
    profile: str | None = typer.Option(None, "--profile", "-p", help="Overlay <profile>.toml, e.g. dev"),
    log_level: str | None = typer.Option(None, "--log-level", help="Override [logging].level"),
) -> None:
    """Load settings once; every subcommand reads them from ctx.obj."""
    settings = get_settings(profile, config_dir)
    if log_level:
        settings.logging["level"] = log_level
    configure_logging(settings)
    ctx.obj = {"settings": settings, "config_dir": config_dir, "profile": profile}


@app.command("version")
def version() -> None:
    typer.echo(f"predfusion {__version__}")


from predfusion.cli import api_cmd, markets  # noqa: E402

app.add_typer(markets.app, name="markets")
app.add_typer(api_cmd.app, name="api")


def run() -> None:
    app()


if __name__ == "__main__":
    run()

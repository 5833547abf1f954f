"""Command line entrypoint."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from config import JsonConfigStore, ServiceSettings
from errors import TranscriptionError
from event_pump import EventPump
from logging_setup import setup_logging
from models import EventKind
from session_controller import TranscriptionService

MODEL_LOAD_TIMEOUT_S = 120.0


class ConsoleListener:
    """Prints partials in place and finals on their own line."""

    def on_partial_result(self, text: str) -> None:
        click.echo(f"\r… {text}", nl=False)

    def on_final_result(self, text: str) -> None:
        click.echo(f"\r{text}")

    def on_error(self, message: str) -> None:
        click.echo(f"\rError: {message}", err=True)

    def on_model_ready(self) -> None:
        click.echo("Model ready.", err=True)


def _load_service(settings: ServiceSettings) -> TranscriptionService:
    service = TranscriptionService.from_settings(settings)
    service.initialize()
    if service.wait_until_ready(timeout=MODEL_LOAD_TIMEOUT_S):
        return service
    message = "model did not load in time"
    while not service.events.empty():
        event = service.events.get_nowait()
        if event.kind == EventKind.ERROR:
            message = event.message
    service.shutdown()
    raise click.ClickException(message)


@click.group()
@click.option(
    "-c",
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the JSON config file.",
)
@click.option("--assets-dir", default=None, type=click.Path(file_okay=False, path_type=Path),
              help="Directory containing the bundled model folder.")
@click.option("--model-name", default=None, help="Model folder name (default: model-hi).")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False, path_type=Path),
              help="Write logs to this file instead of stderr.")
@click.pass_context
def cli(ctx, config_path, assets_dir, model_name, verbose, log_file):
    """Offline speech-to-text from the microphone or an audio file."""
    setup_logging(verbose=verbose, log_file=log_file)
    settings = JsonConfigStore(path=config_path).load_settings()
    if assets_dir is not None:
        settings.assets_dir = assets_dir
    if model_name:
        settings.model_name = model_name
    ctx.obj = settings


@cli.command()
@click.pass_obj
def record(settings: ServiceSettings) -> None:
    """Transcribe live microphone input until Enter is pressed."""
    service = _load_service(settings)
    pump = EventPump(service.events, ConsoleListener())
    pump.start()
    try:
        service.start_recording()
        click.echo("Listening... press Enter to stop.", err=True)
        sys.stdin.readline()
    except KeyboardInterrupt:
        pass
    finally:
        text = service.stop_recording()
        service.shutdown()
        pump.stop()
    click.echo("")
    click.echo(text)


@cli.command()
@click.argument("audio_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def transcribe(settings: ServiceSettings, audio_file: Path) -> None:
    """Transcribe a 16 kHz mono 16-bit WAV or raw PCM file."""
    service = _load_service(settings)
    try:
        text = service.transcribe_file(audio_file)
    except TranscriptionError as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}") from exc
    finally:
        service.shutdown()
    click.echo(text)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.table import Table

from interview_transcriber.bot.commands import build_speakers
from interview_transcriber.config import SUPPORTED_LANGUAGES, Settings, get_settings
from interview_transcriber.doctor import DoctorCheck, run_doctor
from interview_transcriber.errors import ConfigurationError, StageError
from interview_transcriber.logging_setup import configure_logging
from interview_transcriber.services import TranscriptionRequest, TranscriptionService
from interview_transcriber.storage.drive import extract_file_id

app = typer.Typer(help="interview-transcriber - transcribe interviews stored in Google Drive")
console = Console()
logger = logging.getLogger("interview_transcriber")

# The terminal has no Discord token or guild to care about.
_CLI_ONLY_OPTIONAL = {"DISCORD_BOT_TOKEN", "DISCORD_GUILD_ID"}


def resolve_language(language: str) -> str:
    key = language.lower().strip()
    if key not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language '{language}'. Use: {'|'.join(SUPPORTED_LANGUAGES)}")
    return key


def _render_checks(checks: list[DoctorCheck]) -> bool:
    table = Table(title="interview-transcriber doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Detail")

    failed = False
    for check in checks:
        status = check.status.upper()
        color = {"ok": "green", "warn": "yellow", "fail": "red"}.get(check.status, "white")
        table.add_row(check.name, f"[{color}]{status}[/{color}]", check.detail)
        if check.status == "fail":
            failed = True

    console.print(table)
    return failed


@app.command()
def doctor() -> None:
    """Check credentials, ffmpeg and API access."""

    settings = get_settings()
    checks = asyncio.run(run_doctor(settings))
    if _render_checks(checks):
        raise typer.Exit(code=1)


@app.command()
def run() -> None:
    """Check the environment, then start the Discord bot."""

    from interview_transcriber.bot.client import TranscriberBot

    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("interview-transcriber is starting...")

    missing = settings.missing_required()
    if missing:
        logger.error(
            "Environment variables %s are not set. Follow the instructions in README.md and set them in .env.",
            ", ".join(missing),
        )
        raise typer.Exit(code=1)

    # Fail fast on invalid credentials or a missing ffmpeg.
    checks = asyncio.run(run_doctor(settings))
    for check in checks:
        if check.status == "fail":
            logger.error("%s: %s", check.name, check.detail)
        elif check.status == "warn":
            logger.warning("%s: %s", check.name, check.detail)
        else:
            logger.info("%s is ready: %s", check.name, check.detail)
    if any(check.status == "fail" for check in checks):
        raise typer.Exit(code=1)

    service = TranscriptionService.from_settings(settings)
    bot = TranscriberBot(settings, lambda: service)
    logger.info("Starting Discord bot...")
    try:
        bot.run(settings.discord_bot_token, log_handler=None)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc


@app.command()
def transcribe(
    source_url: str = typer.Argument(..., help="Google Drive URL of the video or audio"),
    language: str = typer.Option("ja", "--language", help="en|ja"),
    proofread_model: str | None = typer.Option(None, "--proofread-model", help="Proofread with this model"),
    interviewer: str | None = typer.Option(None, "--interviewer"),
    interviewer_gender: str | None = typer.Option(None, "--interviewer-gender", help="male|female"),
    interviewee: str | None = typer.Option(None, "--interviewee"),
    interviewee_gender: str | None = typer.Option(None, "--interviewee-gender", help="male|female"),
) -> None:
    """Run one transcription from the terminal and print the uploaded links."""

    settings: Settings = get_settings()
    configure_logging(settings.log_level)
    missing = [name for name in settings.missing_required() if name not in _CLI_ONLY_OPTIONAL]
    if missing:
        console.print(f"[red]missing environment variables:[/red] {', '.join(missing)}")
        raise typer.Exit(code=1)

    file_id = extract_file_id(source_url)
    if not file_id:
        console.print("[red]Invalid file URL.[/red]")
        raise typer.Exit(code=2)
    try:
        lang = resolve_language(language)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc

    request = TranscriptionRequest(
        file_id=file_id,
        language=lang,
        speakers=build_speakers(lang, interviewer, interviewer_gender, interviewee, interviewee_gender),
        proofread_model=proofread_model or settings.default_proofread_model,
    )
    service = TranscriptionService.from_settings(settings)
    try:
        outcome = asyncio.run(service.run(request))
    except StageError as exc:
        console.print(f"[red]transcribe failed at {exc.stage.value}:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    console.print(f"[green]Source:[/green] {outcome.source.name} ({outcome.source.web_view_link})")
    for label, file in (
        ("Folder", outcome.parent),
        ("Audio", outcome.audio),
        ("Transcription", outcome.transcription),
        ("Proofread", outcome.proofread),
    ):
        if file is not None:
            console.print(f"[green]{label}:[/green] {file.name} ({file.web_view_link})")


if __name__ == "__main__":
    app()

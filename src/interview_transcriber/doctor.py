from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from interview_transcriber.audio.ffmpeg import get_tool_version, project_tool_candidates, resolve_tool_command
from interview_transcriber.config import Settings


@dataclass(slots=True)
class DoctorCheck:
    name: str
    status: str
    detail: str


def _check_env(settings: Settings) -> DoctorCheck:
    missing = settings.missing_required()
    if missing:
        return DoctorCheck(
            "Environment",
            "fail",
            f"Environment variables {', '.join(missing)} are not set. "
            "Follow the instructions in README.md and set them in .env.",
        )
    return DoctorCheck("Environment", "ok", "All required variables are set.")


def _check_tool(tool: str, settings: Settings) -> DoctorCheck:
    configured = settings.ffmpeg_path if tool == "ffmpeg" else settings.ffprobe_path
    if configured is not None and not configured.exists():
        return DoctorCheck(tool, "fail", f"Configured {tool.upper()}_PATH does not exist: {configured}")

    version = get_tool_version(tool, configured)
    if version:
        return DoctorCheck(tool, "ok", version)

    local_candidates = ", ".join(str(path) for path in project_tool_candidates(tool))
    command = resolve_tool_command(tool, configured)
    return DoctorCheck(
        tool,
        "fail",
        f"{tool} not found. Tried command '{command}'. "
        f"Install ffmpeg on PATH, place it in project (candidates: {local_candidates}), "
        f"or set {tool.upper()}_PATH.",
    )


async def _check_openai(client: Any) -> DoctorCheck:
    try:
        models = await client.list_models()
    except Exception as exc:  # pragma: no cover - network dependent
        return DoctorCheck("OpenAI API", "fail", f"Cannot list models: {exc}")
    return DoctorCheck("OpenAI API", "ok", f"{len(models)} models available")


async def _check_gemini(client: Any) -> DoctorCheck:
    try:
        models = await client.list_models()
    except Exception as exc:  # pragma: no cover - network dependent
        return DoctorCheck("Gemini API", "fail", f"Cannot list models: {exc}")
    return DoctorCheck("Gemini API", "ok", f"{len(models)} models available")


async def _check_drive(client: Any, email: str) -> DoctorCheck:
    try:
        shared = await client.count_shared_files()
    except Exception as exc:  # pragma: no cover - network dependent
        return DoctorCheck("Google Drive API", "fail", f"Cannot list files as {email}: {exc}")
    if shared == 0:
        return DoctorCheck(
            "Google Drive API",
            "warn",
            f"No files are shared to the service account {email}. Share some files to it.",
        )
    return DoctorCheck("Google Drive API", "ok", f"{shared} shared file(s) visible to {email}")


async def run_doctor(
    settings: Settings,
    *,
    openai: Any = None,
    gemini: Any = None,
    drive: Any = None,
) -> list[DoctorCheck]:
    checks = [_check_env(settings), _check_tool("ffmpeg", settings), _check_tool("ffprobe", settings)]
    if checks[0].status == "fail":
        checks.append(DoctorCheck("External APIs", "warn", "Skipped until credentials are set."))
        return checks

    if openai is None:
        from interview_transcriber.clients.openai import OpenAIClient

        openai = OpenAIClient(settings.openai_api_key)
    if gemini is None:
        from interview_transcriber.clients.gemini import GeminiClient

        gemini = GeminiClient(settings.gemini_api_key)
    if drive is None:
        from interview_transcriber.storage.drive import DriveClient

        drive = DriveClient.from_service_account(
            settings.google_service_account_email,
            settings.google_service_account_key,
        )

    checks.extend(
        await asyncio.gather(
            _check_openai(openai),
            _check_gemini(gemini),
            _check_drive(drive, settings.google_service_account_email),
        )
    )
    return checks

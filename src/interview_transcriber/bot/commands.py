from __future__ import annotations

import logging
from typing import Callable

import discord
from discord import app_commands
from discord.app_commands import Choice, locale_str

from interview_transcriber.asr.base import Speaker
from interview_transcriber.errors import InvalidInputError, StageError
from interview_transcriber.nlp.proofreader import PROOFREAD_MODELS
from interview_transcriber.services import TranscriptionOutcome, TranscriptionRequest, TranscriptionService
from interview_transcriber.storage.drive import extract_file_id

logger = logging.getLogger(__name__)

JAPANESE: dict[str, str] = {
    "Transcribe an interview from a Google Drive file.": "Google ドライブのファイルからインタビューを書き起こします",
    "The Google Drive URL of the video or the audio to transcribe.": "書き起こす動画・音声の Google ドライブ URL",
    "Name of the interviewer.": "インタビュアーの名前",
    "Gender of the interviewer.": "インタビュアーの性別",
    "Name of the interviewee.": "インタビュイーの名前",
    "Gender of the interviewee.": "インタビュイーの性別",
    "The AI model to use for proofreading.": "校正に使用する AI モデル",
    "Male": "男性",
    "Female": "女性",
}

_ROLES = {
    "en": ("Interviewer", "Interviewee"),
    "ja": ("インタビュアー", "インタビュイー"),
}
_GENDERS = {
    "en": {"male": "male", "female": "female"},
    "ja": {"male": "男", "female": "女"},
}
_FIELD_NAMES = {
    "en": {"folder": "Folder", "audio": "Audio", "transcription": "Transcription", "proofread": "Proofread"},
    "ja": {"folder": "フォルダー", "audio": "音声", "transcription": "文字起こし", "proofread": "校正"},
}
_ERROR_TITLES = {
    "en": {"input": "Invalid input", "error": "Error"},
    "ja": {"input": "入力エラー", "error": "エラー"},
}

GENDER_CHOICES = [
    Choice(name=locale_str("Male"), value="male"),
    Choice(name=locale_str("Female"), value="female"),
]


class CommandTranslator(app_commands.Translator):
    """Serves Japanese command descriptions from `JAPANESE`."""

    async def translate(
        self,
        string: locale_str,
        locale: discord.Locale,
        context: app_commands.TranslationContextTypes,
    ) -> str | None:
        if locale is discord.Locale.japanese:
            return JAPANESE.get(string.message)
        return None


def resolve_language(locale: discord.Locale | str | None) -> str | None:
    value = str(locale.value if isinstance(locale, discord.Locale) else locale or "")
    if value.startswith("en"):
        return "en"
    if value.startswith("ja"):
        return "ja"
    return None


def build_speakers(
    language: str,
    interviewer: str | None = None,
    interviewer_gender: str | None = None,
    interviewee: str | None = None,
    interviewee_gender: str | None = None,
) -> list[Speaker]:
    roles = _ROLES[language]
    genders = _GENDERS[language]
    speakers: list[Speaker] = []
    for role, name, gender in (
        (roles[0], interviewer, interviewer_gender),
        (roles[1], interviewee, interviewee_gender),
    ):
        if name:
            speakers.append(Speaker(role=role, name=name.strip(), gender=genders.get(gender or "", "")))
    return speakers


def build_result_embed(outcome: TranscriptionOutcome, language: str) -> discord.Embed:
    names = _FIELD_NAMES[language]
    embed = discord.Embed(
        title=outcome.source.name,
        url=outcome.source.web_view_link,
        color=discord.Color.green(),
    )
    for key, file in (
        ("folder", outcome.parent),
        ("audio", outcome.audio),
        ("transcription", outcome.transcription),
        ("proofread", outcome.proofread),
    ):
        if file is None:
            continue
        embed.add_field(name=names[key], value=f"[{file.name}]({file.web_view_link})", inline=True)
    return embed


def build_error_embed(error: BaseException, language: str) -> discord.Embed:
    cause = error.cause if isinstance(error, StageError) else error
    titles = _ERROR_TITLES[language]
    title = titles["input"] if isinstance(cause, InvalidInputError) else titles["error"]
    embed = discord.Embed(title=title, description=str(error), color=discord.Color.red())
    if isinstance(error, StageError):
        embed.set_footer(text=f"stage: {error.stage.value}")
    return embed


def build_transcribe_command(
    service_provider: Callable[[], TranscriptionService],
    default_language: str = "ja",
    default_proofread_model: str | None = None,
) -> app_commands.Command:
    @app_commands.command(
        name="transcribe",
        description=locale_str("Transcribe an interview from a Google Drive file."),
    )
    @app_commands.describe(
        source_url=locale_str("The Google Drive URL of the video or the audio to transcribe."),
        interviewer=locale_str("Name of the interviewer."),
        interviewer_gender=locale_str("Gender of the interviewer."),
        interviewee=locale_str("Name of the interviewee."),
        interviewee_gender=locale_str("Gender of the interviewee."),
        proofread_model=locale_str("The AI model to use for proofreading."),
    )
    @app_commands.choices(
        interviewer_gender=GENDER_CHOICES,
        interviewee_gender=GENDER_CHOICES,
        proofread_model=[Choice(name=model.name, value=key) for key, model in PROOFREAD_MODELS.items()],
    )
    async def transcribe(
        interaction: discord.Interaction,
        source_url: str,
        interviewer: str | None = None,
        interviewer_gender: Choice[str] | None = None,
        interviewee: str | None = None,
        interviewee_gender: Choice[str] | None = None,
        proofread_model: Choice[str] | None = None,
    ) -> None:
        language = resolve_language(interaction.guild_locale) or default_language
        file_id = extract_file_id(source_url)
        if not file_id:
            await interaction.response.send_message(
                embed=build_error_embed(InvalidInputError("Invalid file URL."), language),
                ephemeral=True,
            )
            return

        request = TranscriptionRequest(
            file_id=file_id,
            language=language,
            speakers=build_speakers(
                language,
                interviewer,
                interviewer_gender.value if interviewer_gender else None,
                interviewee,
                interviewee_gender.value if interviewee_gender else None,
            ),
            proofread_model=proofread_model.value if proofread_model else default_proofread_model,
        )

        await interaction.response.defer(thinking=True)
        try:
            outcome = await service_provider().run(request)
        except Exception as exc:
            logger.exception("Transcription of %s failed", file_id)
            await interaction.edit_original_response(embed=build_error_embed(exc, language))
            return
        await interaction.edit_original_response(embed=build_result_embed(outcome, language))

    return transcribe

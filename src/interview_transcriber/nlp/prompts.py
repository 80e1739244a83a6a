from __future__ import annotations

from typing import Sequence

from interview_transcriber.asr.base import Speaker

_TRANSCRIPTION_PROMPTS: dict[str, str] = {
    "ja": (
        "インタビューの録音をインタビュー記事として文字起こししてください。\n"
        "不要な繰り返しやフィラーは削除してください。\n"
        "ただし、インタビュー内の情報は削除しないでください。"
    ),
    "en": (
        "Transcribe the interview recording as an interview article.\n"
        "Remove unnecessary repetitions and filler words.\n"
        "Do not remove any information contained in the interview."
    ),
}

_SPEAKERS_HEADINGS: dict[str, str] = {
    "ja": "話者は以下の通りです。",
    "en": "The speakers are as follows.",
}

_PROOFREAD_PROMPTS: dict[str, str] = {
    "ja": (
        "以下はインタビューを文字起こししたテキストの一部です。\n"
        "誤字脱字や誤変換を修正し、読みやすい文章に校正してください。\n"
        "内容の要約や削除はせず、改行の位置は維持してください。\n"
        "校正後のテキストのみを出力してください。"
    ),
    "en": (
        "The following is part of a transcribed interview.\n"
        "Fix typos, misheard words and punctuation so that it reads well.\n"
        "Do not summarize or remove content, and keep the line breaks.\n"
        "Output only the proofread text."
    ),
}


def _language_key(language: str | None) -> str:
    return "en" if language and language.lower().startswith("en") else "ja"


def format_speakers(speakers: Sequence[Speaker]) -> str:
    return "\n".join(f"{speaker.role}({speaker.gender}): {speaker.name}" for speaker in speakers)


def build_transcription_prompt(speakers: Sequence[Speaker], language: str | None) -> str:
    key = _language_key(language)
    prompt = _TRANSCRIPTION_PROMPTS[key]
    if speakers:
        prompt = f"{prompt}\n\n{_SPEAKERS_HEADINGS[key]}\n{format_speakers(speakers)}"
    return prompt


def build_proofread_prompt(language: str | None) -> str:
    return _PROOFREAD_PROMPTS[_language_key(language)]

from __future__ import annotations

import logging
from typing import Callable

import discord
from discord import app_commands

from interview_transcriber.bot.commands import CommandTranslator, build_transcribe_command
from interview_transcriber.config import Settings
from interview_transcriber.errors import ConfigurationError
from interview_transcriber.services import TranscriptionService

logger = logging.getLogger(__name__)


class GuildCommandTree(app_commands.CommandTree):
    """Command tree that ignores interactions outside the configured guild."""

    def __init__(self, client: discord.Client, guild_id: int) -> None:
        super().__init__(client)
        self.guild_id = guild_id

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.guild_id == self.guild_id:
            return True
        name = interaction.command.name if interaction.command else "unknown"
        where = "an unauthorized guild" if interaction.guild_id else "DM"
        logger.warning("Command %s was triggered in %s.", name, where)
        return False


class TranscriberBot(discord.Client):
    def __init__(
        self,
        settings: Settings,
        service_provider: Callable[[], TranscriptionService],
    ) -> None:
        super().__init__(intents=discord.Intents.none())
        self.settings = settings
        self.guild = discord.Object(id=settings.guild_id)
        self.tree = GuildCommandTree(self, settings.guild_id)
        self.tree.add_command(
            build_transcribe_command(
                service_provider,
                settings.default_language,
                settings.default_proofread_model,
            ),
            guild=self.guild,
        )

    async def setup_hook(self) -> None:
        # Registered as guild commands so that data from DMs or other guilds is never touched.
        logger.info("Registering application commands...")
        await self.tree.set_translator(CommandTranslator())
        try:
            synced = await self.tree.sync(guild=self.guild)
        except discord.Forbidden as exc:
            logger.error("Failed to register application commands.")
            logger.error("Bot may not be in the target guild %s.", self.settings.discord_guild_id)
            if self.application_id is not None:
                url = discord.utils.oauth_url(self.application_id, scopes=("bot", "applications.commands"))
                logger.info("Follow this link to add the bot to the guild: %s", url)
            raise ConfigurationError(f"Cannot register commands: {exc}") from exc
        logger.info(
            "Successfully registered application commands: %s",
            ", ".join(command.name for command in synced),
        )

    async def on_ready(self) -> None:
        logger.info("Logged in as %s.", self.user)
        await self.change_presence(
            activity=discord.Activity(type=discord.ActivityType.listening, name="interviews")
        )

        application = await self.application_info()
        settings_url = f"https://discord.com/developers/applications/{application.id}/bot"
        if application.bot_public:
            logger.warning(
                "Bot is public (can be added by anyone). Consider making it private from %s.",
                settings_url,
            )
        if application.bot_require_code_grant:
            logger.warning(
                "Bot requires OAuth2 code grant. It is unnecessary for this bot. "
                "Consider disabling it from %s.",
                settings_url,
            )
        logger.info("interview-transcriber is successfully started!")

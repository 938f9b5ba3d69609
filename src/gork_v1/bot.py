from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

from gork_v1.config import Settings
from gork_v1.pipeline import RelayPipeline
from gork_v1.services.logger_service import LoggerService
from gork_v1.storage import MessagePackStore


HOUSEKEEPING_INTERVAL_SEC = 15 * 60


class GorkBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents, help_command=None)
        self.settings = settings
        self.store = MessagePackStore(settings.store_path)
        self.logger = LoggerService(self.store)
        self.pipeline = RelayPipeline(settings, self.store, self.logger)
        self.started_at = datetime.now(tz=timezone.utc)
        self._autosave_task: asyncio.Task | None = None
        self._housekeeping_task: asyncio.Task | None = None

    async def setup_hook(self) -> None:
        await self.store.load()
        if self.store.load_error:
            self.logger.log("store.reset_to_defaults", path=str(self.store.path), error=self.store.load_error)
        if not self.pipeline.ai.has_api_key():
            self.logger.log("ai.api_key_missing")
        self._autosave_task = asyncio.create_task(self.store.autosave_loop(), name="msgpack-autosave")
        self._housekeeping_task = asyncio.create_task(self._run_housekeeping_loop(), name="housekeeping")
        self.pipeline.start()
        self._register_commands()
        try:
            synced = await self.tree.sync()
            self.logger.log("commands.synced", count=len(synced))
        except discord.HTTPException as exc:
            self.logger.log("commands.sync_failed", error=str(exc)[:300])

    async def close(self) -> None:
        await self.pipeline.stop()
        for task in (self._housekeeping_task, self._autosave_task):
            if task and not task.done():
                task.cancel()
        await self.store.save()
        await super().close()

    def _register_commands(self) -> None:
        self.tree.error(self.on_app_command_error)

        @self.tree.command(name="channel", description="Set the channel for the bot to operate in")
        @app_commands.describe(channel="The channel to set for the bot to operate in")
        async def channel_cmd(interaction: discord.Interaction, channel: discord.TextChannel) -> None:
            await self.set_channel_command(interaction, channel)

        @self.tree.command(name="personality", description="Set the personality for the bot")
        @app_commands.describe(personality="The personality to set for the bot")
        async def personality_cmd(interaction: discord.Interaction, personality: str) -> None:
            await self.set_personality_command(interaction, personality)

        @personality_cmd.autocomplete("personality")
        async def personality_autocomplete(
            interaction: discord.Interaction, current: str
        ) -> list[app_commands.Choice[str]]:
            needle = current.lower()
            return [
                app_commands.Choice(name=p.name[:100], value=p.value)
                for p in self.pipeline.personalities.list_personalities()
                if needle in p.name.lower() or needle in p.value.lower()
            ][:25]

        @self.tree.command(name="forget", description="Delete everything the bot remembers about you")
        async def forget_cmd(interaction: discord.Interaction) -> None:
            await self.forget_command(interaction)

    def can_configure(self, interaction: Any) -> bool:
        if self.settings.owner_user_id and interaction.user.id == self.settings.owner_user_id:
            return True
        permissions = getattr(interaction, "permissions", None)
        return bool(permissions and permissions.manage_channels)

    async def set_channel_command(self, interaction: Any, channel: Any) -> None:
        await interaction.response.defer()
        if not interaction.guild_id:
            await interaction.edit_original_response(content="This command can only be used in a server!")
            return
        if not self.can_configure(interaction):
            await interaction.edit_original_response(content="You need the `Manage Channels` permission to use this command!")
            return
        await self.pipeline.guild_configs.set_channel(interaction.guild_id, channel.id)
        self.logger.log("command.channel_set", guild_id=interaction.guild_id, channel_id=channel.id, actor_id=interaction.user.id)
        await interaction.edit_original_response(content=f"\u2705 Bot channel has been set to {channel.mention}!")

    async def set_personality_command(self, interaction: Any, personality: str) -> None:
        await interaction.response.defer()
        if not interaction.guild_id:
            await interaction.edit_original_response(content="This command can only be used in a server!")
            return
        if not self.can_configure(interaction):
            await interaction.edit_original_response(content="You need the `Manage Channels` permission to use this command!")
            return
        selected = self.pipeline.personalities.find(personality)
        if selected is None:
            await interaction.edit_original_response(content="\u274c Invalid personality selected!")
            return
        await self.pipeline.guild_configs.set_personality(interaction.guild_id, selected.value)
        self.logger.log("command.personality_set", guild_id=interaction.guild_id, personality=selected.value, actor_id=interaction.user.id)
        await interaction.edit_original_response(content=f"\u2705 Bot personality has been set to **{selected.name}**!")

    async def forget_command(self, interaction: Any) -> None:
        existed = await self.pipeline.memory.forget(interaction.user.id)
        text = "Done, I forgot everything about you." if existed else "I don't remember anything about you yet."
        await interaction.response.send_message(text, ephemeral=True)

    async def on_ready(self) -> None:
        self.logger.log("bot.ready", user_id=self.user.id if self.user else None, guilds=len(self.guilds))

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        self.logger.log("command.error", command=interaction.command.name if interaction.command else "unknown", error=str(error)[:300])
        payload = "There was an error while executing this command!"
        try:
            if interaction.response.is_done():
                await interaction.followup.send(payload, ephemeral=True)
            else:
                await interaction.response.send_message(payload, ephemeral=True)
        except discord.HTTPException:
            pass

    async def on_message(self, message: discord.Message) -> None:
        try:
            await self.pipeline.handle_event(message)
        except discord.HTTPException as exc:
            self.logger.log("intake.failed", guild_id=message.guild.id if message.guild else 0, error=str(exc)[:300])

    async def _run_housekeeping_loop(self) -> None:
        while True:
            await asyncio.sleep(HOUSEKEEPING_INTERVAL_SEC)
            pruned = self.pipeline.admission.prune()
            self.logger.log("housekeeping.cooldowns_pruned", pruned=pruned, pending=len(self.pipeline.queue))


def main() -> None:
    settings = Settings.load()
    bot = GorkBot(settings)
    bot.run(settings.discord_token)

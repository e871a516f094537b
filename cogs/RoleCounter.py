import dataclasses
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from rolecounter.audit import audit_log
from rolecounter.config import (
    DEFAULT_CONFIG_PATH,
    MAX_INTERVAL_SECONDS,
    MIN_INTERVAL_SECONDS,
    ConfigError,
    ConfigFile,
)
from rolecounter.discord_adapter import DiscordChannelUpdater, DiscordRosterSource
from rolecounter.engine import ReconciliationEngine
from rolecounter.errors import DuplicateTarget, FetchFailed, NotFound
from rolecounter.membership import MembershipResolver
from rolecounter.models import DEFAULT_TEMPLATE, Binding, LabelVars
from rolecounter.renderer import fit_label, render
from rolecounter.store import BindingStore

TEMPLATE_HELP = "Channel name template (placeholders: {count}, {role}, {roleid}, {guild})"


class RoleCounter(commands.Cog):
    """
    Keeps locked voice channels named after the member count of tracked roles.
    Tracked roles live in config.yaml under trackedRoles and are edited only
    through the slash commands below.
    """

    CONFIG_PATH = DEFAULT_CONFIG_PATH

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.config = ConfigFile(self.CONFIG_PATH)
        self.config.load()

        self.store = BindingStore(self.config)
        self.resolver = MembershipResolver(DiscordRosterSource(bot))
        self.engine = ReconciliationEngine(
            store=self.store,
            resolver=self.resolver,
            updater=DiscordChannelUpdater(bot),
            debounce_seconds=self.config.debounce_seconds,
            interval_seconds=self.config.update_interval_ms / 1000,
        )
        logging.info(f"RoleCounter loaded {len(self.store)} tracked role(s).")

    # ---------------------------
    # Lifecycle
    # ---------------------------

    @commands.Cog.listener()
    async def on_ready(self):
        logging.info("\033[96mRoleCounter\033[0m cog synced successfully.")
        audit_log("RoleCounter cog synced successfully.")

        if not getattr(self.bot, "intents", None) or not self.bot.intents.members:
            msg = (
                "Warning: Server Members Intent is disabled. Role counts will not update live. "
                "Enable it in the Developer Portal and pass intents when creating the bot client."
            )
            logging.warning(msg)
            audit_log(msg)

        logging.info("Fetching member lists for all servers...")
        warmed = await self.resolver.warm_all(str(guild.id) for guild in self.bot.guilds)
        logging.info(f"Fetched member lists for {warmed}/{len(self.bot.guilds)} server(s).")

        # First tick runs immediately
        self.engine.start()

    def cog_unload(self):
        self.engine.stop()

    # ---------------------------
    # Events
    # ---------------------------

    def _tracks(self, guild: discord.Guild) -> bool:
        return bool(self.store.for_community(str(guild.id)))

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member):
        if self._tracks(member.guild):
            self.engine.notify_membership_change()

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member):
        if self._tracks(member.guild):
            self.engine.notify_membership_change()

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member):
        if before.roles != after.roles and self._tracks(after.guild):
            self.engine.notify_membership_change()

    @commands.Cog.listener()
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role):
        # Role renames change {role}
        if before.name != after.name and self.store.find(str(after.guild.id), str(after.id)):
            self.engine.notify_membership_change()

    @commands.Cog.listener()
    async def on_guild_update(self, before: discord.Guild, after: discord.Guild):
        if before.name != after.name and self._tracks(after):
            self.engine.notify_membership_change()

    # ---------------------------
    # Commands
    # ---------------------------

    @app_commands.command(name="addrole", description="Track a role's member count in a voice channel.")
    @app_commands.describe(role="Role to track", template=TEMPLATE_HELP)
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.checks.has_permissions(manage_channels=True)
    @app_commands.checks.bot_has_permissions(manage_channels=True)
    async def addrole(
        self, interaction: discord.Interaction, role: discord.Role, template: Optional[str] = None
    ):
        guild = interaction.guild
        gid = str(guild.id)
        template = template or DEFAULT_TEMPLATE

        if self.store.find(gid, str(role.id)) is not None:
            await interaction.response.send_message(
                f"Role **{role.name}** is already tracked.", ephemeral=True
            )
            return

        await interaction.response.defer(thinking=True)
        label = fit_label(
            render(
                template,
                LabelVars(
                    count=len(role.members),
                    role_name=role.name,
                    role_id=str(role.id),
                    community_name=guild.name,
                ),
            )
        )

        try:
            channel = await guild.create_voice_channel(
                name=label,
                overwrites={guild.default_role: discord.PermissionOverwrite(connect=False)},
                reason=f"Role counter for '{role.name}' requested by {interaction.user}",
            )
        except discord.HTTPException as e:
            logging.error(f"[{guild.name}] Failed creating counter channel for '{role.name}': {e}")
            audit_log(
                f"Failed creating counter channel for role '{role.name}' ({role.id}) in guild '{guild.name}' ({guild.id}): {e}"
            )
            await interaction.followup.send("Failed to create the voice channel.", ephemeral=True)
            return

        try:
            self.store.upsert(
                Binding(
                    community_id=gid,
                    group_id=str(role.id),
                    channel_id=str(channel.id),
                    template=template,
                    last_applied_label=label,
                )
            )
        except (DuplicateTarget, ConfigError) as e:
            logging.error(f"[{guild.name}] Could not store binding for '{role.name}': {e}")
            # Nothing tracks the new channel, so it would never be renamed
            try:
                await channel.delete(reason="Role counter could not be saved")
            except discord.HTTPException as delete_error:
                logging.warning(f"[{guild.name}] Failed deleting orphan channel {channel.id}: {delete_error}")
            await interaction.followup.send(f"Could not save the tracked role: {e}", ephemeral=True)
            return

        logging.info(f"[{guild.name}] Tracking role '{role.name}' in #{channel.name}.")
        audit_log(
            f"{interaction.user} (ID: {interaction.user.id}) started tracking role '{role.name}' ({role.id}) "
            f"in channel #{channel.name} ({channel.id}) in guild '{guild.name}' ({guild.id})."
        )
        await interaction.followup.send(
            f"Now tracking **{role.name}** in channel **{channel.name}**."
        )

    @app_commands.command(name="removerole", description="Stop tracking a role and delete its channel.")
    @app_commands.describe(role="Role to stop tracking")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.checks.has_permissions(manage_channels=True)
    async def removerole(self, interaction: discord.Interaction, role: discord.Role):
        guild = interaction.guild
        binding = self.store.find(str(guild.id), str(role.id))
        if binding is None:
            await interaction.response.send_message(
                f"Role **{role.name}** is not tracked.", ephemeral=True
            )
            return

        await interaction.response.defer(thinking=True)

        # Untrack first so a failed save leaves the channel in place
        try:
            self.store.remove(str(guild.id), str(role.id))
        except (NotFound, ConfigError) as e:
            logging.error(f"[{guild.name}] Could not remove binding for '{role.name}': {e}")
            await interaction.followup.send(f"Could not update the tracked roles: {e}", ephemeral=True)
            return

        channel = guild.get_channel(int(binding.channel_id))
        if channel is not None:
            try:
                await channel.delete(reason=f"Role counter for '{role.name}' removed by {interaction.user}")
            except discord.NotFound:
                pass
            except discord.HTTPException as e:
                logging.warning(f"[{guild.name}] Failed deleting counter channel {channel.id}: {e}")

        audit_log(
            f"{interaction.user} (ID: {interaction.user.id}) stopped tracking role '{role.name}' ({role.id}) "
            f"in guild '{guild.name}' ({guild.id})."
        )
        await interaction.followup.send(f"Stopped tracking **{role.name}**.")

    @app_commands.command(name="settemplate", description="Change the channel name template of a tracked role.")
    @app_commands.describe(role="Tracked role", template=TEMPLATE_HELP)
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.checks.has_permissions(manage_channels=True)
    async def settemplate(self, interaction: discord.Interaction, role: discord.Role, template: str):
        guild = interaction.guild
        binding = self.store.find(str(guild.id), str(role.id))
        if binding is None:
            await interaction.response.send_message(
                f"Role **{role.name}** is not tracked.", ephemeral=True
            )
            return

        try:
            self.store.upsert(dataclasses.replace(binding, template=template))
        except ConfigError as e:
            await interaction.response.send_message(f"Could not save the template: {e}", ephemeral=True)
            return

        audit_log(
            f"{interaction.user} (ID: {interaction.user.id}) set template '{template}' for role "
            f"'{role.name}' ({role.id}) in guild '{guild.name}' ({guild.id})."
        )
        await interaction.response.defer(thinking=True)
        if await self.engine.run_now("settemplate") is None:
            # A pass is in flight; make sure another one follows it
            self.engine.notify_membership_change()
        await interaction.followup.send(f"Template for **{role.name}** set to `{template}`.")

    @app_commands.command(name="listroles", description="List the tracked roles of this server.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.checks.has_permissions(manage_channels=True)
    async def listroles(self, interaction: discord.Interaction):
        guild = interaction.guild
        bindings = self.store.for_community(str(guild.id))
        if not bindings:
            await interaction.response.send_message("No roles are tracked yet.", ephemeral=True)
            return

        lines = []
        for binding in bindings:
            role = guild.get_role(int(binding.group_id))
            if role is None:
                lines.append(f"• Unknown role `{binding.group_id}` (template: `{binding.template}`)")
                continue
            try:
                count = str(await self.resolver.count(binding.community_id, binding.group_id))
            except FetchFailed:
                count = "?"
            lines.append(f"• {role.mention}: {count} members (template: `{binding.template}`)")

        embed = discord.Embed(
            title="Tracked Roles",
            description="\n".join(lines),
            color=discord.Color.blurple(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="setinterval", description="Set the periodic refresh interval in seconds.")
    @app_commands.describe(seconds=f"Interval in seconds ({MIN_INTERVAL_SECONDS}-{MAX_INTERVAL_SECONDS})")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.checks.has_permissions(manage_channels=True)
    async def setinterval(
        self,
        interaction: discord.Interaction,
        seconds: app_commands.Range[int, MIN_INTERVAL_SECONDS, MAX_INTERVAL_SECONDS],
    ):
        try:
            self.config.set_update_interval(seconds)
        except ConfigError as e:
            await interaction.response.send_message(str(e), ephemeral=True)
            return
        self.engine.set_interval(seconds)
        audit_log(
            f"{interaction.user} (ID: {interaction.user.id}) set the refresh interval to {seconds}s."
        )
        await interaction.response.send_message(f"Refresh interval set to {seconds} seconds.")

    @app_commands.command(name="updateall", description="Refresh every tracked channel now.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.checks.has_permissions(manage_channels=True)
    async def updateall(self, interaction: discord.Interaction):
        await interaction.response.defer(thinking=True)
        report = await self.engine.run_now("manual")
        if report is None:
            await interaction.followup.send("A refresh is already running. Try again shortly.")
            return
        audit_log(f"{interaction.user} (ID: {interaction.user.id}) refreshed all counters: {report.summary()}.")
        await interaction.followup.send(f"Refreshed all tracked channels ({report.summary()}).")

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ):
        if isinstance(error, app_commands.MissingPermissions):
            msg = "You need the Manage Channels permission to use this command."
        elif isinstance(error, app_commands.BotMissingPermissions):
            msg = "I need the Manage Channels permission to do that."
        elif isinstance(error, app_commands.NoPrivateMessage):
            msg = "This command must be used in a server."
        else:
            logging.error(f"RoleCounter command error: {error}", exc_info=True)
            msg = "I could not run that command right now. Please try again later."

        if interaction.response.is_done():
            await interaction.followup.send(msg, ephemeral=True)
        else:
            await interaction.response.send_message(msg, ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(RoleCounter(bot))

from __future__ import annotations

import io
from datetime import datetime

import discord
from discord import app_commands

from .config import LIFE_WORK_TYPE
from .errors import WorklogError
from .ledger import build_manual_record
from .reporter import build_csv, build_html_report, format_duration


def _state_label(snapshot) -> str:
    if snapshot.is_running:
        return "running"
    if snapshot.is_paused:
        return "paused"
    return "idle"


def register_commands(bot):
    """Register all slash commands on the bot. Called once during setup."""
    guild_scope = discord.Object(id=bot.config.guild_id)

    async def reply(interaction, text: str) -> None:
        await interaction.response.send_message(text, ephemeral=True)

    async def check_scope(interaction, feature: str | None = None) -> bool:
        if interaction.guild is None or interaction.guild.id != bot.config.guild_id:
            await reply(interaction, "This command can only be used in the configured server.")
            return False
        if feature is None:
            return True
        try:
            enabled = bot.settings.load().feature_enabled(feature)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return False
        if not enabled:
            await reply(interaction, f"The `{feature}` feature is turned off. Use /feature to enable it.")
            return False
        return True

    async def report_error(interaction, exc: WorklogError) -> None:
        bot.logger.info("Command %s rejected: %s", interaction.command.name if interaction.command else "?", exc)
        await reply(interaction, f"Could not complete that: {exc}")

    @bot.tree.command(name="timer-start", description="Start the work timer", guild=guild_scope)
    async def timer_start(interaction):
        if not await check_scope(interaction, "timer"):
            return
        observer = bot.new_observer()
        try:
            await observer.attach()
            snapshot = await observer.start()
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        finally:
            observer.detach()
        await reply(interaction, f"Timer {_state_label(snapshot)} at `{format_duration(observer.elapsed_ms())}`.")

    @bot.tree.command(name="timer-pause", description="Pause the work timer", guild=guild_scope)
    async def timer_pause(interaction):
        if not await check_scope(interaction, "timer"):
            return
        observer = bot.new_observer()
        try:
            await observer.attach()
            snapshot = await observer.pause()
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        finally:
            observer.detach()
        await reply(interaction, f"Timer {_state_label(snapshot)} at `{format_duration(observer.elapsed_ms())}`.")

    @bot.tree.command(name="timer-resume", description="Resume a paused timer", guild=guild_scope)
    async def timer_resume(interaction):
        if not await check_scope(interaction, "timer"):
            return
        observer = bot.new_observer()
        try:
            await observer.attach()
            snapshot = await observer.resume()
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        finally:
            observer.detach()
        await reply(interaction, f"Timer {_state_label(snapshot)} at `{format_duration(observer.elapsed_ms())}`.")

    @bot.tree.command(name="timer-stop", description="Stop the timer and save the session", guild=guild_scope)
    @app_commands.describe(content="What you worked on", work_type="Category for the session")
    async def timer_stop(interaction, content: str | None = None, work_type: str | None = None):
        if not await check_scope(interaction, "timer"):
            return
        observer = bot.new_observer()
        try:
            await observer.attach()
            record = await observer.stop(content=content, work_type=work_type)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        finally:
            observer.detach()
        await reply(
            interaction,
            f"Saved `{record.start_time}-{record.end_time}` ({record.duration} min, {record.type}) as record `{record.id}`.",
        )

    @bot.tree.command(name="timer-status", description="Show the current timer", guild=guild_scope)
    async def timer_status(interaction):
        if not await check_scope(interaction):
            return
        observer = bot.new_observer()
        try:
            snapshot = await observer.attach()
        finally:
            observer.detach()
        await reply(interaction, f"Timer is {_state_label(snapshot)}: `{format_duration(observer.elapsed_ms())}`.")

    @bot.tree.command(name="today", description="Show today's records and totals", guild=guild_scope)
    async def today(interaction):
        if not await check_scope(interaction):
            return

        try:
            records = bot.ledger.today(bot.config.timezone)
            totals = None
            if records and bot.settings.load().feature_enabled("statistics"):
                day = records[0].date
                totals = (bot.ledger.total_minutes(day), bot.ledger.total_minutes_excluding(day, LIFE_WORK_TYPE))
        except WorklogError as exc:
            await report_error(interaction, exc)
            return

        if not records:
            await reply(interaction, "No records for today.")
            return

        lines = [f"Records for {records[0].date}:"]
        lines.extend(
            f"- `{item.start_time}-{item.end_time}` {item.duration} min [{item.type}] {item.content} (id `{item.id}`)"
            for item in records
        )
        if totals is not None:
            lines.append(f"Total: `{totals[0]}` min")
            lines.append(f"Excluding {LIFE_WORK_TYPE}: `{totals[1]}` min")
        await reply(interaction, "\n".join(lines))

    @bot.tree.command(name="record-add", description="Add a session by hand", guild=guild_scope)
    @app_commands.describe(start="Start time HH:MM", end="End time HH:MM", day="Date YYYY-MM-DD (default today)")
    async def record_add(interaction, content: str, work_type: str, start: str, end: str, day: str | None = None):
        if not await check_scope(interaction, "manualRecord"):
            return

        day = day or datetime.now(bot.config.timezone).date().isoformat()
        try:
            fields = build_manual_record(day, start, end, content, work_type, bot.settings.load().work_types)
            record = bot.ledger.add(fields)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, f"Record `{record.id}` added ({record.duration} min).")

    @bot.tree.command(name="record-edit", description="Edit a saved session", guild=guild_scope)
    @app_commands.describe(record_id="Record id shown by /today")
    async def record_edit(
        interaction,
        record_id: int,
        content: str | None = None,
        work_type: str | None = None,
        start: str | None = None,
        end: str | None = None,
        day: str | None = None,
    ):
        if not await check_scope(interaction, "manualRecord"):
            return

        try:
            existing = bot.ledger.get(record_id)
            fields = build_manual_record(
                day or existing.date,
                start or existing.start_time,
                end or existing.end_time,
                content or existing.content,
                work_type or existing.type,
                bot.settings.load().work_types,
            )
            record = bot.ledger.update(record_id, fields)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, f"Record `{record.id}` updated ({record.duration} min).")

    @bot.tree.command(name="record-delete", description="Delete one saved session", guild=guild_scope)
    async def record_delete(interaction, record_id: int):
        if not await check_scope(interaction):
            return
        try:
            bot.ledger.delete(record_id)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, f"Record `{record_id}` deleted.")

    @bot.tree.command(name="record-delete-all", description="Delete every saved session", guild=guild_scope)
    @app_commands.describe(confirm="Set to true to confirm; this cannot be undone")
    async def record_delete_all(interaction, confirm: bool = False):
        if not await check_scope(interaction):
            return
        if not confirm:
            await reply(interaction, "Nothing deleted. Run again with `confirm: True` to delete all records.")
            return
        try:
            bot.ledger.delete_all()
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, "All records deleted.")

    @bot.tree.command(name="categories", description="List work categories", guild=guild_scope)
    async def categories(interaction):
        if not await check_scope(interaction):
            return
        try:
            settings = bot.settings.load()
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        features = ", ".join(f"{name}={'on' if enabled else 'off'}" for name, enabled in settings.features.items())
        await reply(interaction, f"Categories: {', '.join(settings.work_types)}\nFeatures: {features}")

    @bot.tree.command(name="category-add", description="Add a work category", guild=guild_scope)
    async def category_add(interaction, name: str):
        if not await check_scope(interaction):
            return
        try:
            settings = bot.settings.add_work_type(name)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, f"Categories: {', '.join(settings.work_types)}")

    @bot.tree.command(name="category-delete", description="Delete a work category", guild=guild_scope)
    async def category_delete(interaction, name: str):
        if not await check_scope(interaction):
            return
        try:
            settings = bot.settings.delete_work_type(name)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, f"Categories: {', '.join(settings.work_types)}")

    @bot.tree.command(name="feature", description="Turn a feature on or off", guild=guild_scope)
    @app_commands.describe(name="timer, statistics, export or manualRecord")
    async def feature(interaction, name: str, enabled: bool):
        if not await check_scope(interaction):
            return
        try:
            bot.settings.set_feature(name, enabled)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        await reply(interaction, f"Feature `{name}` is now {'on' if enabled else 'off'}.")

    @bot.tree.command(name="export-csv", description="Download all records as CSV", guild=guild_scope)
    async def export_csv(interaction):
        if not await check_scope(interaction, "export"):
            return
        now = datetime.now(bot.config.timezone)
        try:
            payload = build_csv(bot.ledger.all())
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        file = discord.File(io.BytesIO(payload), filename=f"worklog_{now.date().isoformat()}.csv")
        await interaction.response.send_message("Exported records.", file=file, ephemeral=True)

    @bot.tree.command(name="report", description="Download an HTML summary report", guild=guild_scope)
    async def report(interaction):
        if not await check_scope(interaction, "export"):
            return
        now = datetime.now(bot.config.timezone)
        try:
            content = build_html_report(bot.ledger.all(), now)
        except WorklogError as exc:
            await report_error(interaction, exc)
            return
        file = discord.File(io.BytesIO(content.encode("utf-8")), filename=f"worklog_report_{now.date().isoformat()}.html")
        await interaction.response.send_message("Report generated.", file=file, ephemeral=True)

"""Embed renderers for enforcement notices, modlog entries, cases and appeals."""

from __future__ import annotations

from typing import Optional

import discord

from .constants import ACTION_COLORS, COLORS
from .enforcement.models import Appeal, Case, ModLogEntry, Notice, ThreatScore
from .services.threat_store import HIGH_RISK_SCORE, MEDIUM_RISK_SCORE
from .utils import add_field, format_duration, safe_embed, truncate


def notice_embed(notice: Notice, guild_name: str) -> discord.Embed:
    e = safe_embed(notice.title, color=ACTION_COLORS.get(notice.action, COLORS["default"]))
    add_field(e, "Server", guild_name)
    add_field(e, "Case ID", notice.case_id)
    for name, value in notice.fields.items():
        add_field(e, name, value, inline=name != "Appeal")
    add_field(e, "Reason", notice.reason, inline=False)
    if notice.duration_seconds:
        add_field(e, "Duration", format_duration(notice.duration_seconds))
    e.timestamp = discord.utils.utcnow()
    return e


def modlog_embed(entry: ModLogEntry, user: Optional[discord.abc.User] = None) -> discord.Embed:
    action = entry.action.value
    e = safe_embed("AutoMod Action", color=ACTION_COLORS.get(action, COLORS["default"]))
    who = f"{user}\n`{entry.user_id}`" if user is not None else f"<@{entry.user_id}>\n`{entry.user_id}`"
    add_field(e, "User", who)
    add_field(e, "Channel", f"<#{entry.channel_id}>" if entry.channel_id else None)
    add_field(e, "Action", action.capitalize())
    add_field(e, "Case ID", entry.case_id)
    add_field(e, "Warnings", entry.warning_count)
    add_field(e, "Violations", "\n".join(f"**{name}** ({sev}/10)" for name, sev in entry.violations))
    if entry.duration_seconds:
        add_field(e, "Duration", format_duration(entry.duration_seconds))
    add_field(e, "Original Message", entry.excerpt, inline=False)
    if entry.errors:
        add_field(e, "Failures", "\n".join(entry.errors), inline=False)
    if user is not None:
        e.set_thumbnail(url=user.display_avatar.url)
    e.timestamp = discord.utils.utcnow()
    return e


def case_embed(case: Case, *, max_notes: int = 5) -> discord.Embed:
    e = safe_embed(f"Case {case.case_id}", case.reason, ACTION_COLORS.get(case.type.value, COLORS["info"]))
    add_field(e, "Type", case.type.value)
    add_field(e, "Status", case.status.value)
    add_field(e, "User", f"<@{case.subject_user_id}>")
    add_field(e, "Issuer", "AutoMod" if case.automated else f"<@{case.issuer_id}>")
    add_field(e, "Appealable", "yes" if case.appealable else "no")
    if case.duration_seconds:
        add_field(e, "Duration", format_duration(case.duration_seconds))
    if case.appeal_reason:
        add_field(e, "Appeal", case.appeal_reason, inline=False)
    if case.notes:
        lines = [f"<@{n.author_id}> ({n.created_at_iso}): {truncate(n.content, 150)}" for n in case.notes[-max_notes:]]
        add_field(e, f"Notes ({len(case.notes)})", "\n".join(lines), inline=False)
    e.set_footer(text=f"Created {case.created_at_iso} | Updated {case.updated_at_iso}")
    return e


def case_list_embed(title: str, cases: list[Case]) -> discord.Embed:
    e = safe_embed(title, color=COLORS["info"])
    if not cases:
        e.description = "No cases."
        return e
    for c in cases[:20]:
        add_field(e, f"{c.case_id} | {c.type.value} | {c.status.value}", truncate(c.reason, 200), inline=False)
    if len(cases) > 20:
        e.set_footer(text=f"Showing 20 of {len(cases)}")
    return e


def appeal_embed(appeal: Appeal, case: Optional[Case] = None) -> discord.Embed:
    e = safe_embed(
        f"Appeal for case {appeal.case_id}",
        appeal.reason,
        ACTION_COLORS.get(appeal.status.value, COLORS["info"]),
    )
    add_field(e, "Status", appeal.status.value)
    add_field(e, "User", f"<@{appeal.user_id}>")
    add_field(e, "Submitted", appeal.submitted_at_iso)
    if appeal.evidence:
        add_field(e, "Evidence", appeal.evidence, inline=False)
    if appeal.contact:
        add_field(e, "Contact", appeal.contact)
    if appeal.reviewed_by:
        add_field(e, "Reviewed by", f"<@{appeal.reviewed_by}>")
        add_field(e, "Reviewed at", appeal.reviewed_at_iso)
    if appeal.review_note:
        add_field(e, "Review note", appeal.review_note, inline=False)
    if case is not None:
        add_field(e, "Case type", case.type.value)
        add_field(e, "Original reason", case.reason, inline=False)
    return e


def stats_embed(title: str, stats: dict) -> discord.Embed:
    e = safe_embed(title, color=COLORS["info"])
    for key, value in stats.items():
        if isinstance(value, dict):
            value = "\n".join(f"{k}: {v}" for k, v in value.items()) or "-"
        add_field(e, key.replace("_", " ").title(), value)
    return e


def threat_embed(score: ThreatScore) -> discord.Embed:
    if score.score >= HIGH_RISK_SCORE:
        color, level = COLORS["error"], "High"
    elif score.score >= MEDIUM_RISK_SCORE:
        color, level = COLORS["warning"], "Medium"
    else:
        color, level = COLORS["success"], "Low"
    e = safe_embed("Threat Score", f"<@{score.user_id}>", color)
    add_field(e, "Score", score.score)
    add_field(e, "Risk", level)
    add_field(e, "Last reason", score.reason)
    add_field(e, "Last changed", score.last_changed_iso)
    return e

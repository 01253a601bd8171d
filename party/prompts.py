"""Prompt and transcript assembly from the configured templates."""

from config.config_loader import PromptsConfig
from party.models import (
    SYSTEM_ID,
    USER_ID,
    Message,
    ModeFlags,
    Participant,
    RefereeContext,
    RefereeStatus,
    Role,
)

_DEFAULT_PERSONA = "You are a unique virtual individual."


def speaker_label(sender_id: str, roster: list[Participant]) -> str:
    if sender_id == USER_ID:
        return "User"
    if sender_id == SYSTEM_ID:
        return "System"
    for p in roster:
        if p.id == sender_id:
            return p.display_name
    return sender_id


def _others_line(target: Participant, roster: list[Participant], role: Role, special_role_id: str | None) -> str:
    others = [p for p in roster if p.enabled and p.id != target.id]
    if role == Role.PLAYER and special_role_id:
        others = [p for p in others if p.id != special_role_id]
    if not others:
        return "nobody else yet"
    return ", ".join(f"{p.display_name} (ID: {p.id}) [{p.alliance or 'none'}]" for p in others)


def _mode_instructions(flags: ModeFlags, prompts: PromptsConfig) -> str:
    enabled = {
        "deep_thinking": flags.deep_thinking,
        "human": flags.human,
        "logic": flags.logic,
        "social": flags.social,
    }
    return "\n".join(prompts.modes[k].strip() for k, on in enabled.items() if on and k in prompts.modes)


def _referee_context_line(context: RefereeContext | None) -> str:
    if context is None:
        return ""
    parts = [f"Referee mode: {context.mode.value}"]
    if context.status == RefereeStatus.ACTIVE:
        parts.append(f"game in progress: {context.game_name or 'unnamed'}")
    if context.topic:
        parts.append(f"topic: {context.topic}")
    return "; ".join(parts)


def build_system_prompt(
    target: Participant,
    role: Role,
    roster: list[Participant],
    flags: ModeFlags,
    prompts: PromptsConfig,
    referee_context: RefereeContext | None = None,
    special_role_id: str | None = None,
) -> str:
    if role == Role.JUDGE:
        role_instruction = f"{prompts.judge.strip()}\n{prompts.protocol.strip()}"
    elif role == Role.NARRATOR:
        role_instruction = f"{prompts.narrator.strip()}\n{prompts.protocol.strip()}"
    else:
        role_instruction = prompts.player.strip()

    return prompts.system.format(
        persona=target.system_instruction.strip() or _DEFAULT_PERSONA,
        name=target.display_name,
        id=target.id,
        others=_others_line(target, roster, role, special_role_id),
        role_instruction=role_instruction,
        mode_instructions=_mode_instructions(flags, prompts),
        referee_context=_referee_context_line(referee_context) if role != Role.PLAYER else "",
    ).strip()


def format_line(message: Message, roster: list[Participant]) -> str:
    label = speaker_label(message.sender_id, roster)
    if message.annotation:
        label = f"{label} ({message.annotation})"
    if message.recipient_id:
        label = f"{label} -> {speaker_label(message.recipient_id, roster)} [private]"
    text = message.text
    if message.media:
        text = f"{text} [{len(message.media)} attachment(s)]".strip()
    return f"{label}: {text}"


def format_transcript(history: list[Message], roster: list[Participant]) -> str:
    return "\n".join(format_line(m, roster) for m in history)


def build_turn_prompt(
    target: Participant,
    history: list[Message],
    roster: list[Participant],
    memory: str | None = None,
) -> str:
    parts: list[str] = []
    if memory:
        parts.append(f"=== Memory (summary of earlier conversation) ===\n{memory}")
    parts.append(f"=== Conversation ===\n{format_transcript(history, roster) or '(no messages yet)'}")
    parts.append(f"=== Your turn ===\nSpeak now as {target.display_name}.")
    return "\n\n".join(parts)


def build_summary_prompt(
    prompts: PromptsConfig,
    prior_summary: str,
    messages: list[Message],
    roster: list[Participant],
) -> str:
    participants = ", ".join(f"{p.display_name} (ID: {p.id}) [{p.alliance or 'none'}]" for p in roster)
    return prompts.summary.format(
        participants=participants or "none",
        prior_summary=prior_summary or "(none yet)",
        transcript=format_transcript(messages, roster),
    )

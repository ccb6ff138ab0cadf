"""Format loop results as plain text for prompts and fallback chat messages."""
from typing import Any, Dict, List, Optional

from talentbrain.models import BatchResult, ConversationContext, GapRecord, MatchCandidate


def format_matches(matches: List[MatchCandidate], limit: int = 5) -> str:
    if not matches:
        return "No semantic matches found."

    lines = []
    for i, match in enumerate(matches[:limit], 1):
        lines.append(f"{i}. {match.name} [{match.type}] ({match.similarity * 100:.1f}% similarity)")
        if match.summary:
            lines.append(f"   {match.summary[:200]}")
    return "\n".join(lines)


def format_batch_results(results: List[BatchResult], names: Optional[Dict[str, str]] = None, limit: int = 5) -> str:
    """One line per scored candidate, best first."""
    names = names or {}
    scored = [r for r in results if r.succeeded]
    if not scored:
        return "No fit scores available."

    lines = []
    for i, result in enumerate(scored[:limit], 1):
        fit = result.fit
        label = names.get(result.candidate_id) or (result.match.name if result.match else result.candidate_id)
        lines.append(
            f"{i}. {label}: {fit.score}/100 - {fit.summary} "
            f"(capabilities {fit.capability_score:.0f}, skills {fit.skill_score:.0f}, semantic {fit.semantic_score:.0f})"
        )
        if fit.missing_capabilities:
            lines.append(f"   ❌ Capability gaps: {', '.join(fit.missing_capabilities[:3])}")
        if fit.missing_skills:
            lines.append(f"   ❌ Skill gaps: {', '.join(fit.missing_skills[:3])}")
    return "\n".join(lines)


def format_gaps(gaps: List[GapRecord], limit: int = 8) -> str:
    open_gaps = [g for g in gaps if g.gap_type != "met"]
    if not gaps:
        return "The role declares no requirements."
    if not open_gaps:
        return f"All {len(gaps)} requirements are met."

    lines = [f"{len(open_gaps)} of {len(gaps)} requirements not yet met:"]
    for gap in open_gaps[:limit]:
        have = gap.achieved_level or "none"
        lines.append(f"- {gap.name} ({gap.kind}): needs {gap.required_level}, has {have} [severity {gap.severity:.0f}]")
    return "\n".join(lines)


def format_heatmap_summary(summary: Dict[str, Any], max_groups: int = 8) -> str:
    """Compact text rendering of summarize_heatmap() output."""
    stats = summary.get("summary", {})
    if not stats.get("total_groups"):
        return "No capability data found for the selected scope."

    lines = [
        f"Total Roles Analyzed: {stats['total_roles']}",
        f"Total Groups: {stats['total_groups']}",
        f"Total Unique Capabilities: {stats['total_capabilities']}",
        "",
        "Top Capabilities:",
    ]
    for cap in stats.get("top_capabilities", []):
        lines.append(
            f"- {cap['name']}: {cap['total_occurrences']} roles across {cap['groups_present']} groups "
            f"(avg {cap['average_per_group']})"
        )

    lines.append("")
    for group in stats.get("groups", [])[:max_groups]:
        tops = ", ".join(f"{c['name']} ({c['percentage']}%)" for c in group["top_capabilities"][:3])
        lines.append(f"{group['name']} - {group['total_roles']} roles: {tops}")
    return "\n".join(lines)


def format_history(context: ConversationContext, limit: int = 5) -> str:
    if not context.history:
        return ""
    # History is newest first; prompts read better oldest first
    turns = list(reversed(context.history[:limit]))
    return "\n".join(f"{m.sender}: {m.content[:300]}" for m in turns)

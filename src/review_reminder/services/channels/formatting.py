"""Minimal plain-text and HTML renderings of a report."""

from html import escape

from review_reminder.schemas.report import SECTION_TITLES, Report


def render_text(report: Report) -> str:
    lines = [f"Hi {report.user.name},", ""]
    for key, items in report.non_empty_sections():
        lines.append(f"{SECTION_TITLES[key]} ({len(items)}):")
        lines.extend(f"  - {item.reference}: {item.title} <{item.html_url}>" for item in items)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def render_html(report: Report) -> str:
    parts = [f"<p>Hi {escape(report.user.name)},</p>"]
    for key, items in report.non_empty_sections():
        parts.append(f"<h3>{escape(SECTION_TITLES[key])} ({len(items)})</h3>")
        parts.append("<ul>")
        parts.extend(
            f'<li><a href="{escape(item.html_url)}">{escape(item.reference)}</a> {escape(item.title)}</li>'
            for item in items
        )
        parts.append("</ul>")
    return "\n".join(parts)


def render_slack(report: Report) -> str:
    """Slack mrkdwn summary; links use the <url|text> form."""
    lines = []
    for key, items in report.non_empty_sections():
        lines.append(f"*{SECTION_TITLES[key]}* ({len(items)})")
        lines.extend(f"• <{item.html_url}|{item.reference}> {item.title}" for item in items)
    return "\n".join(lines)

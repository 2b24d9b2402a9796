"""
Presentation helpers: timestamps in UTC/EDT, the Telegram reply with its link,
the /mydata summary and the standalone HTML page for a published response.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from html import escape, unescape
from typing import Iterable

import markdown
from markdown.treeprocessors import Treeprocessor

from relaybot.schemas.records import ResponseRecord, UserFile
from relaybot.services.telegram import TELEGRAM_MAX_LENGTH

EDT = timezone(timedelta(hours=-4), "EDT")
_RFC1123 = "%a, %d %b %Y %H:%M:%S %Z"


def format_time(ts: datetime) -> str:
    return f"UTC: {ts.astimezone(timezone.utc).strftime(_RFC1123)} | EDT: {ts.astimezone(EDT).strftime(_RFC1123)}"


def format_duration(delta: timedelta) -> str:
    total = max(0, int(delta.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def response_url(base_url: str, response_id: str) -> str:
    return f"{base_url.rstrip('/')}/{response_id}"


def file_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/files/{key}"


def _cut_escaped(text: str, limit: int) -> str:
    # cut an HTML-escaped string without leaving half an entity (e.g. "&am") at the end
    cut = text[:limit]
    amp = cut.rfind("&")
    if amp != -1 and ";" not in cut[amp:]:
        cut = cut[:amp]
    return cut


def build_reply(response_text: str, link: str) -> str:
    """Escaped reply plus a link to the full page, truncated to fit one Telegram message."""
    footer = f'\n\n<a href="{escape(link)}">View Formatted Response in its entirety</a>'
    body = escape(response_text, quote=False)
    room = TELEGRAM_MAX_LENGTH - len(footer)
    if len(body) > room:
        body = _cut_escaped(body, max(0, room - 3)) + "..."
    return body + footer


_SAFE_SCHEMES = frozenset({"http", "https", "mailto"})
_URL_ATTRS = ("href", "src")


def is_safe_url(url: str) -> bool:
    """Relative URLs and http(s)/mailto links pass; javascript:, data: and the rest do not."""
    # browsers decode entities and ignore whitespace/control chars before reading the scheme
    cleaned = "".join(ch for ch in unescape(url) if ch > " " and ch != "\x7f")
    scheme, sep, _ = cleaned.partition(":")
    if not sep or any(ch in scheme for ch in "/?#"):
        return True
    return scheme.lower() in _SAFE_SCHEMES


class _LinkFilter(Treeprocessor):
    # registered below "unescape" so it sees the final attribute values
    def run(self, root):
        for el in root.iter():
            for attr in _URL_ATTRS:
                url = el.get(attr)
                if url is not None and not is_safe_url(url):
                    del el.attrib[attr]


def render_markdown(text: str) -> str:
    # raw HTML in the model output is shown as text, never interpreted
    md = markdown.Markdown(extensions=["fenced_code", "tables", "sane_lists"])
    md.preprocessors.deregister("html_block")
    md.inlinePatterns.deregister("html")
    md.treeprocessors.register(_LinkFilter(md), "link_filter", -1)
    return md.convert(text)


def build_user_data_message(files: Iterable[UserFile], responses: Iterable[ResponseRecord], base_url: str) -> str:
    files = list(files)
    responses = list(responses)
    lines = ["📊 <b>Your Data:</b>", ""]

    if files:
        lines.append("<b>Uploaded Files:</b>")
        for f in files:
            lines.append(f'• <a href="{escape(file_url(base_url, f.key))}">{escape(f.file_name)}</a>')
            lines.append(f"  Uploaded: {format_time(f.uploaded_at)}")
            lines.append(f"  Deletion: {format_time(f.deletion_time)}")
    else:
        lines.append("<i>No uploaded files found.</i>")
    lines.append("")

    if responses:
        lines.append("<b>Web Responses:</b>")
        for r in responses:
            lines.append(f'• <a href="{escape(response_url(base_url, r.id))}">{r.id}</a>')
            lines.append(f"  Created: {format_time(r.created_at)}")
            lines.append(f"  Deletion: {format_time(r.expires_at)}")
    else:
        lines.append("<i>No web responses found.</i>")

    return "\n".join(lines)


_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 20px; background-color: #121212; color: #e0e0e0; }}
    h1 {{ color: #bb86fc; }}
    .container {{ background-color: #1e1e1e; padding: 20px; border-radius: 5px; }}
    pre {{ background-color: #2c2c2c; padding: 10px; border-radius: 3px; overflow-x: auto; }}
    code {{ background-color: #2c2c2c; padding: 2px 4px; border-radius: 3px; }}
    .note {{ font-style: italic; color: #a0a0a0; }}
    .view-raw-button {{ margin-top: 10px; padding: 5px 10px; background-color: #bb86fc; color: #121212; border: none; border-radius: 3px; cursor: pointer; }}
  </style>
  <script>
    function toggleRaw() {{
      var raw = document.getElementById("raw-content");
      raw.style.display = raw.style.display === "none" ? "block" : "none";
    }}
  </script>
</head>
<body>
  <div class="container">
    <h1>{title}</h1>
    <p><strong>Created At:</strong> {created}</p>
    <p><strong>Deletion Time:</strong> {expires}</p>
    <p><strong>Time Remaining:</strong> {remaining}</p>
    <button class="view-raw-button" onclick="toggleRaw()">View RAW</button>
    <hr>
    <div id="formatted-content">{rendered}</div>
    <div id="raw-content" style="display:none;">
      <pre><code>{raw}</code></pre>
    </div>
    <p class="note">Please save this content elsewhere as it will expire soon.</p>
  </div>
</body>
</html>
"""


def render_response_page(record: ResponseRecord, now: datetime, title: str = "Relaybot response") -> str:
    return _PAGE.format(
        title=escape(title),
        created=escape(format_time(record.created_at)),
        expires=escape(format_time(record.expires_at)),
        remaining=format_duration(record.expires_at - now),
        rendered=render_markdown(record.content),
        raw=escape(record.content),
    )


def render_index_page(bot_username: str) -> str:
    handle = f"@{bot_username}" if bot_username else "the bot"
    return (
        "<!DOCTYPE html><html lang=\"en\"><head><meta charset=\"UTF-8\"><title>Relaybot</title></head>"
        f"<body><h1>Relaybot</h1><p>Message {escape(handle)} on Telegram. "
        "Full responses are published here for a limited time.</p></body></html>"
    )

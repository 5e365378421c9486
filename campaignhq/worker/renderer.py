"""
Template rendering collaborator.

Renders a stored ``EmailTemplate`` with per-recipient variables into an HTML
and a plain-text body. ``{{name}}`` placeholders are replaced with the matching
variable (missing ones become empty). Loaded templates are kept in a
``TemplateCache`` with a TTL so a bulk send does not re-read the same row for
every recipient.
"""

import html as html_lib
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..exceptions import TemplateNotFound
from ..models.template import EmailTemplate
from ..timeutils import utcnow

PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")
TAG_RE = re.compile(r"<[^>]+>")
BLOCK_END_RE = re.compile(r"</(p|div|h[1-6]|li|tr|table)>|<br\s*/?>", re.IGNORECASE)
STYLE_RE = re.compile(r"<(style|script|head)\b.*?</\1>", re.IGNORECASE | re.DOTALL)


@dataclass
class RenderedEmail:
    html: str
    text: str


@dataclass(frozen=True)
class CachedTemplate:
    id: int
    subject: str
    html: str
    text: Optional[str]


class TemplateCache:
    """Small TTL cache keyed by template id, with an injectable clock."""

    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: Dict[int, Tuple[CachedTemplate, datetime]] = {}

    def get(self, template_id: int) -> Optional[CachedTemplate]:
        entry = self._entries.get(template_id)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[template_id]
            return None
        return value

    def set(self, template_id: int, value: CachedTemplate):
        self._entries[template_id] = (value, self.clock() + self.ttl)

    def invalidate(self, template_id: Optional[int] = None):
        if template_id is None:
            self._entries.clear()
        else:
            self._entries.pop(template_id, None)

    def __len__(self):
        return len(self._entries)


def interpolate(value: str, variables: Dict[str, str], escape: bool = False) -> str:
    def _sub(match):
        replacement = variables.get(match.group(1))
        if replacement is None:
            return ""
        return html_lib.escape(str(replacement), quote=True) if escape else str(replacement)

    return PLACEHOLDER_RE.sub(_sub, value)


def html_to_text(html: str) -> str:
    """Rough plain-text fallback for templates without a text body."""
    text = STYLE_RE.sub("", html)
    text = BLOCK_END_RE.sub("\n", text)
    text = TAG_RE.sub("", text)
    text = html_lib.unescape(text)
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


class TemplateRenderer:
    def __init__(self, db: Session, cache: Optional[TemplateCache] = None):
        self.db = db
        self.cache = cache if cache is not None else TemplateCache()

    def load(self, template_id: int) -> CachedTemplate:
        cached = self.cache.get(template_id)
        if cached is not None:
            return cached

        template = self.db.get(EmailTemplate, template_id)
        if template is None:
            raise TemplateNotFound(template_id)

        cached = CachedTemplate(
            id=template.id,
            subject=template.subject,
            html=template.html_content,
            text=template.text_content,
        )
        self.cache.set(template_id, cached)
        return cached

    def render(self, template_id: int, variables: Dict[str, str]) -> RenderedEmail:
        template = self.load(template_id)
        html = interpolate(template.html, variables, escape=True)
        if template.text:
            text = interpolate(template.text, variables)
        else:
            text = html_to_text(interpolate(template.html, variables))
        return RenderedEmail(html=html, text=text)

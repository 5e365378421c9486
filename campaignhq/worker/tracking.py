"""
Click and open tracking for campaign HTML.

- Wraps links with a click-tracking redirect
- Tags destination URLs with UTM attribution parameters
- Appends a 1x1 open-tracking pixel

Applying the transform twice gives the same HTML: tracking links, unsubscribe
links and ``mailto:``/``tel:`` links are left alone, and the pixel is only
inserted once. Plain-text bodies are never tracked.
"""

import html as html_lib
import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

CLICK_PATH = "/track/click"
OPEN_PATH = "/track/open"

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign")

# href="..." or href='...'
HREF_RE = re.compile(r"""href\s*=\s*(["'])(.*?)\1""", re.IGNORECASE | re.DOTALL)

SKIPPED_SCHEMES = ("mailto:", "tel:")


@dataclass
class TrackingOptions:
    base_url: str
    email_send_id: int
    campaign_id: int
    utm_source: str = "campaignhq_email"

    @property
    def root(self) -> str:
        return self.base_url.rstrip("/")


def is_tracking_url(url: str, base_url: str) -> bool:
    """True for click/open URLs served from ``base_url``."""
    parts = urlsplit(url)
    base = urlsplit(base_url.rstrip("/"))
    if (parts.scheme.lower(), parts.netloc.lower()) != (base.scheme.lower(), base.netloc.lower()):
        return False
    return parts.path in (base.path + CLICK_PATH, base.path + OPEN_PATH)


def add_utm_parameters(url: str, campaign_id: int, source: str = "campaignhq_email") -> str:
    """Set utm_source/medium/campaign on ``url``, replacing any existing values."""
    parts = urlsplit(url)
    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in UTM_KEYS]
    params.extend([
        ("utm_source", source),
        ("utm_medium", "email"),
        ("utm_campaign", str(campaign_id)),
    ])
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))


def wrap_link(href: str, options: TrackingOptions):
    """Return the tracking redirect for ``href``, or None when it must stay as is."""
    target = html_lib.unescape(href).strip()
    lowered = target.lower()

    if not target or target == "#":
        return None
    if lowered.startswith(SKIPPED_SCHEMES):
        return None
    # Unsubscribe links must keep working without the tracker
    if "unsubscribe" in lowered:
        return None
    if is_tracking_url(target, options.root):
        return None

    parts = urlsplit(target)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None

    destination = add_utm_parameters(target, options.campaign_id, options.utm_source)
    query = urlencode({"eid": options.email_send_id, "url": destination})
    return f"{options.root}{CLICK_PATH}?{query}"


def add_click_tracking(html: str, options: TrackingOptions) -> str:
    def _replace(match):
        quote, href = match.group(1), match.group(2)
        tracked = wrap_link(href, options)
        if tracked is None:
            return match.group(0)
        return f"href={quote}{html_lib.escape(tracked, quote=True)}{quote}"

    return HREF_RE.sub(_replace, html)


def tracking_pixel_url(base_url: str, email_send_id: int) -> str:
    return f"{base_url.rstrip('/')}{OPEN_PATH}?eid={email_send_id}"


def add_open_tracking_pixel(html: str, base_url: str, email_send_id: int) -> str:
    """Insert the pixel before the closing body tag, or append it."""
    pixel_url = tracking_pixel_url(base_url, email_send_id)
    src = f'src="{pixel_url}"'
    if src in html:
        return html

    pixel = (
        f'<img {src} width="1" height="1" alt="" '
        'style="display:block;width:1px;height:1px;border:0;" />'
    )
    body_end = html.lower().rfind("</body>")
    if body_end == -1:
        return html + pixel
    return html[:body_end] + pixel + html[body_end:]


def apply_email_tracking(html: str, options: TrackingOptions) -> str:
    tracked = add_click_tracking(html, options)
    return add_open_tracking_pixel(tracked, options.root, options.email_send_id)

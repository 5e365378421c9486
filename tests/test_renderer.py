"""
Tests for template rendering, the template cache and unsubscribe tokens.
"""
from datetime import datetime, timedelta

import pytest

from campaignhq.exceptions import InvalidUnsubscribeToken, TemplateNotFound
from campaignhq.models import EmailTemplate
from campaignhq.worker.renderer import TemplateCache, TemplateRenderer, html_to_text, interpolate
from campaignhq.worker.unsubscribe import (
    TOKEN_TTL_SECONDS,
    build_unsubscribe_url,
    decode_unsubscribe_token,
    generate_unsubscribe_token,
    verify_unsubscribe_token,
)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestInterpolate:
    def test_replaces_known_and_blanks_unknown(self):
        assert interpolate("Hi {{firstName}}{{ missing }}!", {"firstName": "Ann"}) == "Hi Ann!"

    def test_escapes_in_html_mode(self):
        assert interpolate("<b>{{name}}</b>", {"name": "<script>"}, escape=True) == "<b>&lt;script&gt;</b>"

    def test_html_to_text(self):
        text = html_to_text("<style>p {}</style><p>Hello &amp; welcome</p><p>Bye</p>")
        assert text == "Hello & welcome\nBye"


class TestTemplateRenderer:
    def test_render_html_and_text(self, db, make):
        template = make.template(html="<p>Hi {{firstName}}</p>", text="Hi {{firstName}}")
        rendered = TemplateRenderer(db).render(template.id, {"firstName": "Ann & Co"})

        assert rendered.html == "<p>Hi Ann &amp; Co</p>"
        assert rendered.text == "Hi Ann & Co"

    def test_text_falls_back_to_html(self, db, make):
        template = make.template(html="<p>Hi {{firstName}}</p>")
        assert TemplateRenderer(db).render(template.id, {"firstName": "Ann"}).text == "Hi Ann"

    def test_unknown_template(self, db):
        with pytest.raises(TemplateNotFound):
            TemplateRenderer(db).render(404, {})

    def test_cache_serves_until_ttl_expires(self, db, make):
        clock = Clock(datetime(2024, 1, 1, 12, 0))
        cache = TemplateCache(ttl_seconds=60, clock=clock)
        renderer = TemplateRenderer(db, cache)
        template = make.template(html="v1")

        assert renderer.render(template.id, {}).html == "v1"

        db.get(EmailTemplate, template.id).html_content = "v2"
        db.commit()
        assert renderer.render(template.id, {}).html == "v1"

        clock.now += timedelta(seconds=61)
        assert renderer.render(template.id, {}).html == "v2"

    def test_cache_invalidate(self):
        cache = TemplateCache()
        cache.set(1, object())
        cache.set(2, object())
        cache.invalidate(1)
        assert len(cache) == 1
        cache.invalidate()
        assert len(cache) == 0


class TestUnsubscribeTokens:
    SECRET = "token-secret"

    def test_valid_token(self):
        token = generate_unsubscribe_token(42, self.SECRET)
        assert verify_unsubscribe_token(token, self.SECRET) == 42

    def test_wrong_secret(self):
        token = generate_unsubscribe_token(42, self.SECRET)
        with pytest.raises(InvalidUnsubscribeToken):
            verify_unsubscribe_token(token, "other-secret")

    def test_tampered_payload(self):
        token = generate_unsubscribe_token(42, self.SECRET)
        other = generate_unsubscribe_token(43, self.SECRET)
        forged = other.split(".")[0] + "." + token.split(".")[1]
        with pytest.raises(InvalidUnsubscribeToken):
            verify_unsubscribe_token(forged, self.SECRET)

    def test_expired(self):
        token = generate_unsubscribe_token(42, self.SECRET, issued_at=1_000_000)
        with pytest.raises(InvalidUnsubscribeToken):
            verify_unsubscribe_token(token, self.SECRET, now=1_000_000 + TOKEN_TTL_SECONDS + 1)

    @pytest.mark.parametrize("token", ["", "abc", "a.b.c", "abc.é"])
    def test_malformed(self, token):
        with pytest.raises(InvalidUnsubscribeToken):
            verify_unsubscribe_token(token, self.SECRET)

    def test_unsubscribe_url(self):
        url = build_unsubscribe_url("https://t.example.com/", 7, self.SECRET)
        assert url.startswith("https://t.example.com/unsubscribe?token=")

    def test_campaign_claim(self):
        token = generate_unsubscribe_token(42, self.SECRET, campaign_id=9)
        claims = decode_unsubscribe_token(token, self.SECRET)
        assert (claims.subscriber_id, claims.campaign_id) == (42, 9)
        assert decode_unsubscribe_token(generate_unsubscribe_token(42, self.SECRET), self.SECRET).campaign_id is None

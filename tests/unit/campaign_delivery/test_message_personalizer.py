"""
Unit Tests for Message Personalization

Tests {{token}} substitution and the plain-text rendition of HTML bodies.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.campaign_delivery_service.personalizer import (
    DEFAULT_NAME,
    html_to_text,
    render,
)


class TestRender:
    """Token substitution"""

    def test_substitutes_known_tokens(self, factory):
        customer = factory.make_customer(first_name="Asha", last_name="Rao", email="asha@example.com")
        rendered = render("Hi {{first_name}} ({{ email }}), {{name}} is on the list", customer)

        assert rendered == "Hi Asha (asha@example.com), Asha Rao is on the list"

    def test_tokens_are_case_insensitive(self, factory):
        customer = factory.make_customer(first_name="Asha", last_name="Rao")
        assert render("{{NAME}}", customer) == "Asha Rao"

    def test_missing_name_uses_default(self, factory):
        customer = factory.make_customer(first_name=None, last_name=None)

        assert render("Hi {{first_name}}", customer) == f"Hi {DEFAULT_NAME}"
        assert render("Hi {{name}}", customer) == f"Hi {DEFAULT_NAME}"
        assert render("[{{last_name}}]", customer) == "[]"

    def test_unknown_tokens_are_left_as_written(self, factory):
        customer = factory.make_customer()
        assert render("Use {{coupon_code}} today", customer) == "Use {{coupon_code}} today"

    def test_phone_falls_back_to_default_address(self, factory):
        customer = factory.make_customer(phone=None, default_address={"phone": "+91 90000 00001"})
        assert render("{{phone}}", customer) == "+91 90000 00001"

    def test_empty_template(self, factory):
        assert render("", factory.make_customer()) == ""

    def test_template_without_tokens_is_unchanged(self, factory):
        assert render("<p>Sale ends Sunday</p>", factory.make_customer()) == "<p>Sale ends Sunday</p>"


class TestHtmlToText:
    """Plain-text e-mail part"""

    def test_strips_tags_and_unescapes(self):
        assert html_to_text("<p>Tom &amp; <b>Jerry</b></p><br/>Bye") == "Tom & Jerry\n\nBye"

    def test_line_breaks(self):
        assert html_to_text("Line one<br>Line two") == "Line one\nLine two"

    def test_empty_body(self):
        assert html_to_text("") == ""

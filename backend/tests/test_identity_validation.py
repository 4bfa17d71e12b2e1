"""
Input validation helpers shared by the admin, role and gamification routes.
"""
from __future__ import annotations

import pytest

from identity_access.validation import (
    is_valid_account_type,
    is_valid_badge_id,
    is_valid_display_name,
    is_valid_email,
    is_valid_institution_id,
    is_valid_password,
    is_valid_role,
    is_valid_uid,
    is_valid_xp_amount,
    sanitize_display_name,
    sanitize_text,
)


@pytest.mark.parametrize("email", ["a@b.co", "first.last+tag@school.example.org"])
def test_valid_emails(email):
    assert is_valid_email(email)


@pytest.mark.parametrize("email", ["", "   ", "no-at-sign", "a@", None, 42, "x" * 250 + "@b.co"])
def test_invalid_emails(email):
    assert not is_valid_email(email)


def test_sanitize_display_name_strips_markup_and_caps_length():
    assert sanitize_display_name("  <b>Ada</b> 'Lovelace' ") == "Ada Lovelace"
    assert len(sanitize_display_name("x" * 300)) == 100
    assert sanitize_display_name(None) == ""


def test_display_name_needs_two_characters_after_sanitizing():
    assert is_valid_display_name("Al")
    assert not is_valid_display_name("<i>A</i>")


@pytest.mark.parametrize(
    "password, ok",
    [("Passw0rdX", True), ("short1A", False), ("alllowercase1", False), ("ALLUPPERCASE1", False), ("NoDigitsHere", False), (None, False)],
)
def test_password_policy(password, ok):
    assert is_valid_password(password) is ok


def test_role_account_type_and_uid_checks():
    assert is_valid_role("dev") and not is_valid_role("root")
    assert is_valid_account_type("institution") and not is_valid_account_type("company")
    assert is_valid_uid("user_1-abc") and not is_valid_uid("bad uid") and not is_valid_uid("")


def test_sanitize_text_removes_scripts_and_tags():
    assert sanitize_text("<script>alert(1)</script><p>Hello</p>") == "Hello"
    assert sanitize_text("abcdef", max_length=3) == "abc"


def test_institution_id_shape():
    assert is_valid_institution_id("school-42")
    assert not is_valid_institution_id("ab")
    assert not is_valid_institution_id("has space")


@pytest.mark.parametrize("amount, ok", [(1, True), (1000, True), (0, False), (1001, False), (-5, False), (True, False), ("10", False), (2.5, False)])
def test_xp_amount_bounds(amount, ok):
    assert is_valid_xp_amount(amount) is ok


def test_badge_id_shape():
    assert is_valid_badge_id("first-upload")
    assert not is_valid_badge_id("UPPER")
    assert not is_valid_badge_id("ab")
    assert not is_valid_badge_id("x" * 51)

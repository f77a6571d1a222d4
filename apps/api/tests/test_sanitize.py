"""Log sanitizer."""

from crux_api.utils.sanitize import MAX_STR_LOG, mask_email, sanitize_obj, sanitize_str


def test_urls_with_tokens_are_redacted():
    raw = "GET /auth/accept?token=abc&type=invite#access_token=xyz&refresh_token=rt"
    cleaned = sanitize_str(raw)

    assert "abc" not in cleaned
    assert "xyz" not in cleaned
    assert "type=invite" in cleaned


def test_token_hash_key_is_not_mangled():
    assert sanitize_str("csrf_token=keep") == "csrf_token=keep"


def test_long_strings_are_hashed():
    result = sanitize_str("a" * (MAX_STR_LOG + 1))
    assert result.startswith("[TRUNCATED len=")


def test_nested_sensitive_keys():
    cleaned = sanitize_obj({"outer": {"password": "hunter2", "customer_email": "ann@shop.example"}})

    assert cleaned["outer"]["password"] == "[REDACTED]"
    assert cleaned["outer"]["customer_email"] == "a***@shop.example"


def test_mask_email_handles_garbage():
    assert mask_email("not-an-email") == "[REDACTED]"
    assert mask_email(None) is None

from __future__ import annotations
from stockai.services.hmac import sign, verify_hmac
import hmac
import hashlib
import pytest


@pytest.mark.parametrize("secret", ["test-hmac-secret", "test-hmac-relay"])
def test_verify_hmac_success(secret):
    body = b'{"ok":true}'
    sig = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    assert verify_hmac(sig, body, secret)
    assert verify_hmac(f"sha256={sig}", body, secret)


@pytest.mark.parametrize("secret", ["test-hmac-secret", "test-hmac-relay"])
def test_verify_hmac_fail(secret):
    body = b'{"ok":true}'
    sig = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    assert not verify_hmac('bad' + sig[3:], body, secret)
    assert not verify_hmac(sig, body + b" ", secret)


@pytest.mark.parametrize("header", [None, ""])
def test_verify_hmac_missing(header):
    assert not verify_hmac(header, b"{}", "test-hmac-secret")


def test_sign_matches_stdlib():
    assert sign(b"abc", "k") == hmac.new(b"k", b"abc", hashlib.sha256).hexdigest()

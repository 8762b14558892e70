"""ID generation utilities."""

import secrets

from nanoid import generate

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 12


def gen_id(prefix: str) -> str:
    return f"{prefix}{generate(ALPHABET, ID_LENGTH)}"


def account_id() -> str:
    return gen_id("ac_")


def api_key() -> str:
    return f"sk_{secrets.token_urlsafe(24)}"


def ledger_id() -> str:
    return gen_id("le_")


def event_id() -> str:
    return gen_id("ev_")

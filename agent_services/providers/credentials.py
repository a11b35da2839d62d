"""Per-instance secrets generated at creation time."""

import secrets


def generate_gateway_token() -> str:
    """64 hex chars."""
    return secrets.token_hex(32)


def generate_setup_password() -> str:
    """32 hex chars."""
    return secrets.token_hex(16)


def generate_private_wallet_key() -> str:
    """Ethereum-style private key: 0x + 64 hex chars."""
    return "0x" + secrets.token_hex(32)

"""Utility module to generate a SECRET_KEY for signing access tokens"""
import secrets


def generate_secret_key() -> str:
    """Return a random 64-character hex key suitable for HS256 signing."""
    return secrets.token_hex(32)


if __name__ == "__main__":
    print(f"SECRET_KEY={generate_secret_key()}")

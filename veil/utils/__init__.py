from typing import Optional


def mask_token(text: str, token: Optional[str]) -> str:
    """Shorten ``token`` to its first four characters wherever it appears in ``text``."""
    return text.replace(token, f"{token[:4]}****") if token else text

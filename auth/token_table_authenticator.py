from typing import Optional

from auth.authenticator import Authenticator


class TokenTableAuthenticator(Authenticator):
    """Static token -> subject id table loaded from the service configuration."""

    def __init__(self, tokens: dict[str, int]):
        self._tokens = dict(tokens)

    def resolve_subject(self, token: Optional[str]) -> Optional[int]:
        if token is None:
            return None
        return self._tokens.get(token)

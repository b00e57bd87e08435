from abc import ABC, abstractmethod
from typing import Optional


class Authenticator(ABC):

    @abstractmethod
    def resolve_subject(self, token: Optional[str]) -> Optional[int]:
        """Subject id the token belongs to, or ``None`` when it is not accepted."""

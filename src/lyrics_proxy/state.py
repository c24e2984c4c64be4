import enum
from dataclasses import dataclass


class Health(str, enum.Enum):
    ACTIVE = "active"
    COOLDOWN = "cooldown"
    DEAD = "dead"


@dataclass(eq=False)
class CredentialState:
    name: str
    token: str
    health: Health = Health.ACTIVE
    failures: int = 0      # consecutive
    cooldown_until: float | None = None
    in_use: int = 0        # outstanding checkouts
    successes: int = 0

    def is_eligible(self) -> bool:
        return self.health is Health.ACTIVE

    def reconcile(self, now: float) -> bool:
        """Return to ACTIVE if the cooldown has elapsed. True if the state changed."""
        if self.health is Health.COOLDOWN and (self.cooldown_until or 0.0) <= now:
            self.health = Health.ACTIVE
            self.cooldown_until = None
            return True
        return False

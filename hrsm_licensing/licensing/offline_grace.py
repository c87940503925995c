"""
Licensing - Offline Grace

Machine à états du fonctionnement hors ligne d'un tenant.

    ONLINE_VALID --perte de connectivité--> OFFLINE_GRACE(now + grace_hours)
    OFFLINE_GRACE --validation à l'échéance ou avant--> OFFLINE_GRACE
    OFFLINE_GRACE --échéance dépassée--> EXPIRED_OFFLINE
    OFFLINE_GRACE | EXPIRED_OFFLINE --reconnexion confirmée--> ONLINE_VALID

Invariants:
    - L'échéance est fixée à l'entrée en grâce et n'est jamais prolongée
      tant que la connectivité n'est pas rétablie
    - Hors ligne désactivé : perte de connectivité = EXPIRED_OFFLINE direct
    - EXPIRED_OFFLINE refuse toute validation locale
    - L'état se reconstruit depuis l'échéance persistée (resume)
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class OfflineState(Enum):
    ONLINE_VALID = "online_valid"
    OFFLINE_GRACE = "offline_grace"
    EXPIRED_OFFLINE = "expired_offline"


@dataclass(frozen=True)
class OfflineTransition:
    from_state: OfflineState
    to_state: OfflineState
    at: datetime
    deadline: Optional[datetime] = None


@dataclass(frozen=True)
class OfflineStatus:
    """Photo de l'état hors ligne d'un tenant."""

    state: OfflineState
    deadline: Optional[datetime]
    offline_since: Optional[datetime]
    remaining: Optional[timedelta]

    @property
    def is_online(self) -> bool:
        return self.state == OfflineState.ONLINE_VALID


class OfflineGraceTracker:
    """
    État hors ligne d'un tenant.

    Le tracker ne lit pas l'horloge : chaque méthode reçoit now, ce qui rend
    les transitions déterministes.

    Example:
        tracker = OfflineGraceTracker()
        tracker.lose_connectivity(now, grace_hours=72)
        tracker.allows_local_validation(now + timedelta(hours=71))  # True
    """

    def __init__(self) -> None:
        self._state = OfflineState.ONLINE_VALID
        self._deadline: Optional[datetime] = None
        self._offline_since: Optional[datetime] = None

    @classmethod
    def resume(cls, deadline: Optional[datetime], expired: bool = False) -> "OfflineGraceTracker":
        """
        Reconstruit l'état depuis l'échéance persistée.

        Sans échéance : ONLINE_VALID. Avec échéance : OFFLINE_GRACE, que
        expire_if_due fera passer en EXPIRED_OFFLINE une fois dépassée.
        expired force EXPIRED_OFFLINE (hors ligne désactivé).
        """
        tracker = cls()
        if deadline is None:
            return tracker
        tracker._deadline = deadline
        tracker._state = OfflineState.EXPIRED_OFFLINE if expired else OfflineState.OFFLINE_GRACE
        return tracker

    @property
    def state(self) -> OfflineState:
        return self._state

    @property
    def deadline(self) -> Optional[datetime]:
        return self._deadline

    def lose_connectivity(self, now: datetime, grace_hours: int, enabled: bool = True) -> Optional[OfflineTransition]:
        """Entre en grâce (ou expire directement) ; sans effet si déjà hors ligne."""
        if self._state != OfflineState.ONLINE_VALID:
            return None
        self._offline_since = now
        if not enabled:
            self._deadline = None
            return self._move(OfflineState.EXPIRED_OFFLINE, now)
        self._deadline = now + timedelta(hours=grace_hours)
        return self._move(OfflineState.OFFLINE_GRACE, now)

    def expire_if_due(self, now: datetime) -> Optional[OfflineTransition]:
        """OFFLINE_GRACE -> EXPIRED_OFFLINE si now > échéance."""
        if self._state == OfflineState.OFFLINE_GRACE and now > self._deadline:
            return self._move(OfflineState.EXPIRED_OFFLINE, now)
        return None

    def restore(self, now: datetime) -> Optional[OfflineTransition]:
        """Retour en ligne après confirmation distante."""
        if self._state == OfflineState.ONLINE_VALID:
            return None
        transition = self._move(OfflineState.ONLINE_VALID, now)
        self._deadline = None
        self._offline_since = None
        return transition

    def allows_local_validation(self, now: datetime) -> bool:
        if self._state == OfflineState.ONLINE_VALID:
            return True
        return self._state == OfflineState.OFFLINE_GRACE and now <= self._deadline

    def status(self, now: datetime) -> OfflineStatus:
        remaining = None
        if self._state == OfflineState.OFFLINE_GRACE:
            remaining = max(self._deadline - now, timedelta(0))
        return OfflineStatus(
            state=self._state,
            deadline=self._deadline,
            offline_since=self._offline_since,
            remaining=remaining,
        )

    def _move(self, to_state: OfflineState, now: datetime) -> OfflineTransition:
        transition = OfflineTransition(self._state, to_state, now, self._deadline)
        self._state = to_state
        return transition

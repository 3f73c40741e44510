"""The authenticated caller as seen by services."""

from dataclasses import dataclass

from tradelink.data.schema import UserRole


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole

    def __post_init__(self):
        object.__setattr__(self, "role", UserRole(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_buyer(self) -> bool:
        return self.role == UserRole.BUYER

    @property
    def is_supplier(self) -> bool:
        return self.role == UserRole.SUPPLIER

from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    """The caller of an order operation, as resolved by the auth layer."""

    user_id: int
    is_admin: bool = False

    @classmethod
    def of(cls, user) -> "Identity":
        return cls(user_id=user.id, is_admin=bool(user.is_admin))

    def owns(self, owner_id: int | None) -> bool:
        return owner_id is not None and owner_id == self.user_id

    def can_view(self, owner_id: int | None) -> bool:
        return self.is_admin or self.owns(owner_id)

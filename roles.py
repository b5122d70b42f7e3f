import enum


class Capability(str, enum.Enum):
    READ_OWN = "read-own"
    READ_ALL = "read-all"
    WRITE_OWN = "write-own"
    WRITE_ALL = "write-all"
    ADMIN_MANAGE = "admin-manage"


class Role(str, enum.Enum):
    AFFILIATE = "AFFILIATE"
    SUPPORT_ADMIN = "SUPPORT_ADMIN"
    SALES_ADMIN = "SALES_ADMIN"
    MARKETING_ADMIN = "MARKETING_ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"

    @property
    def capabilities(self) -> frozenset:
        return ROLE_CAPABILITIES[self]

    @property
    def is_admin(self) -> bool:
        return self is not Role.AFFILIATE

    def permits(self, capability: Capability) -> bool:
        """Single authorization predicate used by every guarded route."""
        return capability in self.capabilities


ROLE_CAPABILITIES = {
    Role.AFFILIATE: frozenset({Capability.READ_OWN, Capability.WRITE_OWN}),
    Role.SUPPORT_ADMIN: frozenset({Capability.READ_OWN, Capability.READ_ALL}),
    Role.SALES_ADMIN: frozenset({Capability.READ_OWN, Capability.READ_ALL, Capability.WRITE_ALL}),
    Role.MARKETING_ADMIN: frozenset({Capability.READ_OWN, Capability.READ_ALL, Capability.WRITE_ALL}),
    Role.SYSTEM_ADMIN: frozenset(Capability),
}

ADMIN_ROLES = tuple(role for role in Role if role.is_admin)

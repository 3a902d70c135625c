"""调用方身份（由上游网关完成认证后透传）"""

from dataclasses import dataclass
import enum


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

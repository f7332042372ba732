"""Customer identity used for the one-active-order rule and ownership checks.

Guests are keyed by IP address. That key is spoofable and shared behind NAT;
strong authentication for guest flows is out of scope here.
"""
from dataclasses import dataclass
from typing import Mapping, Optional

GUEST = "guest"
AUTHENTICATED = "authenticated"

# Checked in order; the first header present wins.
IP_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")

@dataclass(frozen=True)
class CustomerIdentity:
    kind: str
    ip: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def guest(cls, ip: str) -> "CustomerIdentity":
        return cls(kind=GUEST, ip=ip)

    @classmethod
    def authenticated(cls, user_id: str, email: Optional[str] = None, ip: Optional[str] = None) -> "CustomerIdentity":
        return cls(kind=AUTHENTICATED, user_id=str(user_id), email=(email or None), ip=ip)

    @property
    def is_guest(self) -> bool:
        return self.kind == GUEST

    @property
    def key(self) -> str:
        if self.is_guest:
            return f"ip:{self.ip}"
        return f"user:{self.user_id}"

    def owns(self, order) -> bool:
        if self.is_guest:
            return bool(self.ip) and order.user_id is None and order.customer_ip == self.ip
        if order.user_id is not None and order.user_id == self.user_id:
            return True
        return bool(self.email and order.customer_email) and order.customer_email.lower() == self.email.lower()

def client_ip(headers: Mapping[str, str], peer: Optional[str]) -> Optional[str]:
    for name in IP_HEADERS:
        value = headers.get(name)
        if value:
            # X-Forwarded-For: client, proxy1, proxy2
            return value.split(",")[0].strip()
    return peer

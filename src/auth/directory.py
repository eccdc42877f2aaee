"""
Directory (Active Directory over LDAP) authentication.

Users type either a bare username ("somchai"), a UPN ("somchai@newlywedsfoods.co.th"),
a down-level name ("NWF\\somchai") or their mailbox on another domain. All of
those collapse to the same principal before we bind.
"""

import logging

from ldap3 import Connection, Server, SUBTREE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from src.core.errors import ServiceUnavailableError, ValidationError
from src.core.secrets import get_key

log = logging.getLogger("forms.auth")

PROFILE_ATTRIBUTES = ["mail", "displayName", "department", "sAMAccountName", "userPrincipalName"]


def normalize_principal(identifier: str, domain: str = None) -> str:
    """Collapse a login identifier into ``local@domain``.

    A foreign domain is replaced rather than kept: the directory only
    knows principals in its own domain.
    """
    domain = (domain or get_key("directory_domain")).strip().lstrip("@")
    ident = (identifier or "").strip()
    if "\\" in ident:
        ident = ident.split("\\", 1)[1]
    local = ident.split("@", 1)[0].strip()
    if not local:
        raise ValidationError("Username is required", field="identifier")
    return f"{local}@{domain}"


def _first(attrs: dict, name: str) -> str:
    value = attrs.get(name)
    if isinstance(value, list):
        value = value[0] if value else ""
    return str(value or "").strip()


class DirectoryClient:
    """Thin ldap3 wrapper: bind as the user, read the profile as the service account."""

    def __init__(self, url: str = None, base_dn: str = None, bind_user: str = None,
                 bind_password: str = None, timeout: int = 10):
        self.url = url or get_key("ldap_url")
        self.base_dn = base_dn or get_key("ldap_base_dn")
        self.bind_user = bind_user or get_key("ldap_bind_user")
        self.bind_password = bind_password or get_key("ldap_bind_password")
        self.timeout = timeout

    def _server(self) -> Server:
        if not self.url:
            raise ServiceUnavailableError("Directory service is not configured")
        return Server(self.url, connect_timeout=self.timeout)

    def authenticate(self, principal: str, secret: str) -> bool:
        """True if the directory accepts the bind. Unreachable → ServiceUnavailableError."""
        if not secret:
            # An empty password is an anonymous bind on most directories
            return False
        conn = Connection(self._server(), user=principal, password=secret,
                          receive_timeout=self.timeout)
        try:
            return bool(conn.bind())
        except LDAPException as e:
            log.error("Directory bind for %s failed: %s", principal, e)
            raise ServiceUnavailableError("Directory service unavailable")
        finally:
            conn.unbind()

    def find_user(self, principal: str) -> dict | None:
        """Profile attributes for a principal, or None if it has no entry."""
        if not (self.bind_user and self.base_dn):
            raise ServiceUnavailableError("Directory service account is not configured")
        conn = Connection(self._server(), user=self.bind_user, password=self.bind_password,
                          receive_timeout=self.timeout)
        try:
            if not conn.bind():
                log.error("Directory service account bind rejected")
                raise ServiceUnavailableError("Directory service unavailable")
            search_filter = f"(userPrincipalName={escape_filter_chars(principal)})"
            conn.search(self.base_dn, search_filter, search_scope=SUBTREE,
                        attributes=PROFILE_ATTRIBUTES, size_limit=1)
            if not conn.entries:
                return None
            attrs = conn.entries[0].entry_attributes_as_dict
        except LDAPException as e:
            log.error("Directory lookup for %s failed: %s", principal, e)
            raise ServiceUnavailableError("Directory service unavailable")
        finally:
            conn.unbind()

        return {
            "email": _first(attrs, "mail") or principal,
            "name": _first(attrs, "displayName") or _first(attrs, "sAMAccountName"),
            "department": _first(attrs, "department"),
        }


def get_directory() -> DirectoryClient:
    return DirectoryClient()

"""
Clearinghouse API result models.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .client import ClearinghouseClient


@dataclass
class RemoteRecord:
    """
    One object returned by the Clearinghouse API.

    Attributes:
        attributes: Parsed JSON attributes of the object
        path: Resource path the object lives at, e.g. "trip_tickets/12"
        client: Client used to fetch nested resources
    """
    attributes: dict = field(default_factory=dict)
    path: Optional[str] = None
    client: Optional["ClearinghouseClient"] = field(default=None, repr=False, compare=False)

    @property
    def id(self) -> Any:
        """Clearinghouse ID, or None if the object has none."""
        return self.attributes.get("id")

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def fetch(self, name: str, query: Optional[dict] = None):
        """
        Fetch a nested resource of this object.

        Example:
            ticket = client.get(["trip_tickets", 12])
            comments = ticket.fetch("trip_ticket_comments")

        Args:
            name: Sub-resource name, appended to this object's path
            query: Optional query parameters

        Returns:
            RemoteRecord or list of RemoteRecord

        Raises:
            ValueError: If the record is not bound to a client and path
        """
        if self.client is None or self.path is None:
            raise ValueError("RemoteRecord is not bound to a Clearinghouse resource")
        return self.client.get(f"{self.path}/{name}", query)

    @classmethod
    def from_api_response(
        cls,
        data: dict,
        path: Optional[str] = None,
        client: Optional["ClearinghouseClient"] = None,
    ) -> "RemoteRecord":
        """Create RemoteRecord from a Clearinghouse API object."""
        return cls(attributes=dict(data or {}), path=path, client=client)

"""
User roles enumeration.

Defines the role types resolved by the identity service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Platform administrator
        CONCIERGE: Creates booking requests on behalf of passengers
        OPERATOR: Fleet company bidding on requests
        DRIVER: Dispatched by an operator to run the trip
        SYSTEM: Internal actor (trip tracker, billing); never issued in tokens
    """
    ADMIN = "ADMIN"
    CONCIERGE = "CONCIERGE"
    OPERATOR = "OPERATOR"
    DRIVER = "DRIVER"
    SYSTEM = "SYSTEM"

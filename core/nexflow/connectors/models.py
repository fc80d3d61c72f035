"""Connector definitions: reusable external-system settings referenced by NEXUS nodes."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConnectorType(StrEnum):
    REST = "REST"
    SQL = "SQL"

    @classmethod
    def _missing_(cls, value: object) -> "ConnectorType | None":
        if isinstance(value, str):
            normalized = value.strip().upper()
            # Older connector documents call SQL connectors JDBC
            if normalized == "JDBC":
                return cls.SQL
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class AuthType(StrEnum):
    NONE = "NONE"
    BEARER = "BEARER"  # auth_config: {"token": ...}
    API_KEY = "API_KEY"  # auth_config: {"key": ..., "headerName": "X-API-Key"}
    BASIC = "BASIC"  # auth_config: {"username": ..., "password": ...}

    @classmethod
    def _missing_(cls, value: object) -> "AuthType | None":
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class Connector(BaseModel):
    """
    A reusable connection definition.

    REST:
        Connector(id="stripe", name="Stripe", base_url="https://api.stripe.com",
                  auth_type=AuthType.BEARER, auth_config={"token": "sk_..."})

    SQL (any SQLAlchemy URL):
        Connector(id="orders-db", name="Orders", connector_type=ConnectorType.SQL,
                  database_url="postgresql+psycopg://app@db/orders")
    """

    id: str
    name: str = ""
    description: str = ""
    connector_type: ConnectorType = ConnectorType.REST

    # REST
    base_url: str | None = None
    auth_type: AuthType = AuthType.NONE
    default_headers: dict[str, str] = Field(default_factory=dict)
    auth_config: dict[str, str] = Field(default_factory=dict)

    # SQL
    database_url: str | None = None
    db_username: str | None = None
    db_password: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

"""Base model for payloads exchanged with the bookshelf API."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """
    Snake-case fields on the Python side, camelCase on the wire.

    Unknown fields sent by the backend are ignored so additive API changes do not
    break the client.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        """Serialize for a request body, omitting fields that were never set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

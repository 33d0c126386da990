from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for records persisted in the document store (camelCase on disk)."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: dict):
        return cls.model_validate(data)

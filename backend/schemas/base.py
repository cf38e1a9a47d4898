from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON uses camelCase keys; Python code (and tests) may still use the field names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

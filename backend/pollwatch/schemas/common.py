"""
Base commune des schémas : attributs Python en snake_case, JSON en camelCase
(format utilisé par les clients mobiles/offline).
"""

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}

from pydantic import BaseModel, ConfigDict


class ORMSchema(BaseModel):
    """支持从 ORM 对象直接生成 Schema"""

    model_config = ConfigDict(from_attributes=True)

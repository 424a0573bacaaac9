from pydantic import BaseModel, Field, field_validator


class OrderItem(BaseModel):
    image: str
    price: float = Field(allow_inf_nan=False)

    @field_validator("image")
    @classmethod
    def image_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("image must not be empty")
        return value


class OrderPayload(BaseModel):
    """Order sent back by the web app: what the customer picked."""

    bouquets: list[OrderItem] = Field(default_factory=list)
    flowers: list[OrderItem] = Field(default_factory=list)

    @field_validator("bouquets", "flowers", mode="before")
    @classmethod
    def null_as_empty(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def items(self) -> list[OrderItem]:
        return [*self.bouquets, *self.flowers]

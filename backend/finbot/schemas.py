from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


TransactionType = Literal["income", "expense"]


class TransactionCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    category: str = Field(min_length=1, max_length=64)
    type: TransactionType

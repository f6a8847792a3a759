"""
Response envelope shared by the TISS endpoints
"""
from decimal import Decimal
from typing import Any, Dict

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from app.services.tiss.money import format_money


def success(data: Any) -> Dict[str, Any]:
    """{"success": true, "data": ...} with amounts rendered as '150.00'"""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in data]
    return {"success": True, "data": jsonable_encoder(data, custom_encoder={Decimal: format_money})}

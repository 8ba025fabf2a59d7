"""Pydantic schema for order submissions arriving over the wire."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ValidationError
from .types import DEFAULT_SLIPPAGE, OrderRequest, OrderType


class OrderSubmission(BaseModel):
    """Body of ``POST /api/orders/execute``; camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra='ignore')

    user_id: str = Field(..., alias='userId', min_length=1, strict=True)
    order_type: OrderType = Field(..., alias='orderType')
    token_in: str = Field(..., alias='tokenIn', min_length=1, strict=True)
    token_out: str = Field(..., alias='tokenOut', min_length=1, strict=True)
    amount_in: float = Field(..., alias='amountIn', gt=0, strict=True, allow_inf_nan=False)
    slippage: float = Field(DEFAULT_SLIPPAGE, ge=0, le=100, strict=True, allow_inf_nan=False)
    order_id: Optional[str] = Field(None, alias='orderId', min_length=1, strict=True)

    @field_validator('order_type', mode='before')
    @classmethod
    def _upper_order_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator('token_in', 'token_out')
    @classmethod
    def _upper_token(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> 'OrderSubmission':
        """Validate a raw mapping, raising the engine's :class:`ValidationError`."""
        try:
            return cls.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise to_validation_error(exc.errors()) from exc

    def to_request(self) -> OrderRequest:
        return OrderRequest(
            user_id=self.user_id,
            order_type=self.order_type,
            token_in=self.token_in,
            token_out=self.token_out,
            amount_in=self.amount_in,
            slippage=self.slippage,
        )


def to_validation_error(errors: Sequence[Mapping[str, Any]]) -> ValidationError:
    """Collapse pydantic error entries into one :class:`ValidationError`."""
    problems: List[Dict[str, str]] = []
    missing: List[str] = []
    for error in errors:
        # FastAPI prefixes body errors with 'body'.
        loc = [str(part) for part in error.get('loc', ()) if part != 'body']
        field = '.'.join(loc) or 'body'
        if error.get('type') == 'missing':
            missing.append(field)
        problems.append({'field': field, 'message': error.get('msg', 'invalid value')})

    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
    elif problems:
        message = '; '.join(f"{problem['field']}: {problem['message']}" for problem in problems)
    else:
        message = 'Invalid order payload'
    details: Dict[str, Any] = {'errors': problems}
    if problems:
        details['field'] = problems[0]['field']
    if missing:
        details['missing'] = missing
    return ValidationError(message, details)


__all__ = ['OrderSubmission', 'to_validation_error']

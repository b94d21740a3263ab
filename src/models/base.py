from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ValidationError, ValidationInfo, ValidatorFunctionWrapHandler, field_validator

from src.observability import incr_metric, log_event


class ProviderPayloadModel(BaseModel):
    """
    Base for raw provider webhook payloads.

    An optional field that fails validation is dropped to None instead of
    invalidating the whole payload. Required fields still fail.
    """

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid_optional_field(
        cls,
        value: Any,
        handler: ValidatorFunctionWrapHandler,
        info: ValidationInfo,
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields.get(info.field_name or "")
            if field is None or field.is_required():
                raise
            incr_metric("webhook.payload.field_dropped", model=cls.__name__, field=info.field_name)
            log_event(
                "webhook_payload_field_dropped",
                level=logging.WARNING,
                model=cls.__name__,
                field=info.field_name,
            )
            return None

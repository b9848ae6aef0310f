"""
Exception classes for sxmc.

Configuration problems are fatal and surface before any sampling starts.
Numeric trouble inside a chain never raises; it is encoded as a penalty in
the likelihood instead.
"""

from __future__ import annotations

from typing import Any

from pydantic import (
    ValidationError,
    ValidationInfo,
    WrapValidator,
)
from pydantic_core import ErrorDetails, InitErrorDetails, PydanticCustomError


class SxmcException(Exception):
    """
    Base exception class for all sxmc-related errors.

    Catching this catches every error raised deliberately by the package.
    """


class ConfigurationError(SxmcException):
    """
    Raised when a fit configuration cannot be turned into a model.

    This typically occurs when:
    - The configuration file is malformed or fails validation
    - An observable or systematic references an unknown field
    - Sample files are missing or have inconsistent widths
    """


class FieldIndexError(ConfigurationError):
    """
    Raised when a systematic or observable is bound to a field index outside
    the sample table.
    """


class SamplerStateError(SxmcException):
    """
    Raised when a sampler operation is called out of PROPOSE, EVALUATE, DECIDE
    order or after the chain finished.
    """


class ChainBufferFullError(SxmcException):
    """
    Raised when appending to a chain buffer that already holds every step.
    """


class KernelError(SxmcException):
    """
    Raised when a lane of a parallel kernel launch runs out of memory. Other
    errors raised by a lane propagate unchanged. Chains interrupted this way
    are not resumable.
    """


def custom_error_msg(custom_messages: dict[str, str]) -> Any:
    r"""
    Customize an error message for pydantic validation errors.

    See https://github.com/pydantic/pydantic/discussions/8468.

    Example:

    >>> from typing import Annotated
    >>> from pydantic import BaseModel
    >>> from pydantic.types import StringConstraints
    >>> NameString = Annotated[
    ...     str,
    ...     StringConstraints(pattern=r"^[a-zA-Z0-9]*$"),
    ...     custom_error_msg({"string_pattern_mismatch": "The field {field_name} can only contain letters and numbers."}),
    ... ]
    >>> class Model(BaseModel):
    ...     name: NameString
    >>> Model(name="dog@123")  # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    pydantic_core._pydantic_core.ValidationError: 1 validation error for Model
    name
      The field name can only contain letters and numbers. ...
    """

    def _validator(v: Any, next_: Any, ctx: ValidationInfo) -> Any:
        try:
            return next_(v, ctx)
        except ValidationError as exc:
            new_errors: list[InitErrorDetails | ErrorDetails] = []
            for error in exc.errors():
                error["loc"] = error["loc"][1:]  # to skip current location
                custom_message = custom_messages.get(error["type"])

                if custom_message:
                    err_ctx = error.get("ctx", {}).copy()

                    err_ctx["input"] = error["input"]
                    if ctx.data:
                        err_ctx.update(ctx.data)

                    new_error = InitErrorDetails(
                        type=PydanticCustomError(
                            error["type"], custom_message, err_ctx
                        ),
                        loc=error["loc"],
                        input=error["input"],
                    )

                    new_errors.append(new_error)
                else:
                    new_errors.append(error)

            raise ValidationError.from_exception_data(
                title=exc.title,
                line_errors=new_errors,  # type: ignore[arg-type]
            ) from None

    return WrapValidator(_validator)

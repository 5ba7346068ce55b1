"""Response envelope shared by every endpoint."""

from typing import Generic, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    """``{status, message, count?, data?}``; None fields are omitted on output."""

    status: str = "success"
    message: str
    count: int | None = None
    data: DataT | None = None


def fail_body(message: str, status: str = "fail") -> dict[str, str]:
    return {"status": status, "message": message}

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    status_code: int = 200
    status: str = "success"
    message: str
    data: T


class SideEffectResult(BaseModel):
    """Outcome of a best-effort side effect (cache write, notification handoff)."""
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "SideEffectResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "SideEffectResult":
        return cls(ok=False, error=error)

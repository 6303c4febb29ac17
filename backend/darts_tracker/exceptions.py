from pydantic import BaseModel
from typing import Optional


class ProblemDetail(BaseModel):
    """RFC 7807 shaped error payload for whatever adapter shows the error."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code

    def to_problem(self, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=self.type,
            title=self.title,
            detail=self.detail,
            status=self.status_code,
            instance=instance,
            code=self.code,
        )


class GameNotFound(DomainException):
    def __init__(self, game_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Game not found",
            detail=f"game '{game_id}' not found",
            code="game_not_found",
        )
        self.game_id = game_id


class PersistenceError(DomainException):
    """The game could not be stored; the in-memory state is still current."""

    def __init__(self, game_id: str, detail: str | None = None) -> None:
        super().__init__(
            status_code=503,
            title="Game not saved",
            detail=detail or f"game '{game_id}' could not be saved",
            code="game_not_saved",
        )
        self.game_id = game_id

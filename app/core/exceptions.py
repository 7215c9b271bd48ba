from typing import Dict, Optional, Union

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors.

    ``code`` is set on state conflicts so callers can tell NOT_READY from
    ALREADY_PROMOTED without parsing the message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def detail(self) -> Union[str, Dict[str, str]]:
        """HTTP detail payload: the message, or message plus code for state conflicts."""
        if self.code is None:
            return self.message
        return {"code": self.code, "message": self.message}

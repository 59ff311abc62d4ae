"""
FastAPI Dependencies

Authentication is handled by the gateway in front of this service; endpoints
that record who acted take the user id in the request body.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from redzone.database import get_db

# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]

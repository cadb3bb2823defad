from datetime import datetime

import sqlalchemy
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, String
from uuid_extension import uuid7

Base = declarative_base()

class BaseModel(Base):
    __abstract__ = True
    id = Column(String, primary_key=True, default=lambda: str(uuid7()), index=True)
    created_at = Column(
        sqlalchemy.DateTime(timezone=True),
        default=datetime.utcnow,
        server_default=sqlalchemy.func.now(),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        sqlalchemy.DateTime(timezone=True),
        default=datetime.utcnow,
        server_default=sqlalchemy.func.now(),
        onupdate=datetime.utcnow,
        nullable=False,
    )

# Note: Models will import this Base. Do not import models here to avoid circular imports.
# Import models in app/platform/db/models.py for metadata registration.

from sqlalchemy import Column, String, Text, Uuid
import uuid
from ..core.db import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    business_id = Column(String, index=True, nullable=True)  # registry identifier, e.g. Y-tunnus
    industry = Column(String, nullable=True)
    website = Column(String, nullable=True)
    country = Column(String(2), nullable=True, default="FI")
    description = Column(Text, nullable=True)

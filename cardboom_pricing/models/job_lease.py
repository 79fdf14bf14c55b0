"""
Job Lease Model

Run-level lease so two scheduler runs never process the same batch at once.
A lease is free when holder is NULL or expires_at has passed; claims go through
a conditional UPDATE (see jobs.job_lease).
"""
from sqlalchemy import Column, DateTime, String

from cardboom_pricing.core.database import Base


class JobLease(Base):
    __tablename__ = "job_leases"

    job_name = Column(String(100), primary_key=True)
    holder = Column(String(100))
    acquired_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True))

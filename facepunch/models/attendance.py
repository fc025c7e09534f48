from sqlalchemy import Column, Integer, String, DateTime, Date, Float, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from facepunch.database import Base


class AttendanceRecord(Base):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("emp_id", "date", name="uq_attendance_emp_date"),
    )

    attendance_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    emp_id = Column(Integer, ForeignKey("employee.emp_id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    ward_id = Column(Integer, nullable=True)
    department_id = Column(Integer, nullable=True)

    punch_in_time = Column(DateTime, nullable=True)
    punch_out_time = Column(DateTime, nullable=True)
    punch_in_image = Column(String(500), nullable=True)
    punch_out_image = Column(String(500), nullable=True)

    latitude_in = Column(Float, nullable=True)
    longitude_in = Column(Float, nullable=True)
    in_address = Column(String(500), nullable=True)
    latitude_out = Column(Float, nullable=True)
    longitude_out = Column(Float, nullable=True)
    out_address = Column(String(500), nullable=True)

    punched_in_by = Column(Integer, nullable=True)
    punched_out_by = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def duration(self):
        """Time between punch-in and punch-out, once both are set"""
        if self.punch_in_time is None or self.punch_out_time is None:
            return None
        return self.punch_out_time - self.punch_in_time

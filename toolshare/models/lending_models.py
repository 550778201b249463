from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    ExternalID = Column(String(255), nullable=False, unique=True, index=True)
    DisplayName = Column(String(255), nullable=False)
    Email = Column(String(255))
    ReputationScore = Column(Float, default=0)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Tools = relationship("Tool", back_populates="Owner")


class Tool(Base):
    __tablename__ = "Tools"

    ToolID = Column(Integer, primary_key=True)
    OwnerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    ToolName = Column(String(255), nullable=False)
    Category = Column(String(100))
    Status = Column(String(20), default="available")  # available/unavailable/archived
    AdvanceNoticeDays = Column(Integer, default=0)
    MaxLoanDays = Column(Integer, default=7)
    CreatedDate = Column(DateTime, server_default=func.now())

    Owner = relationship("User", back_populates="Tools")
    Reservations = relationship("Reservation", back_populates="Tool")


class Reservation(Base):
    __tablename__ = "Reservations"

    ReservationID = Column(Integer, primary_key=True)
    ToolID = Column(Integer, ForeignKey("Tools.ToolID"), nullable=False, index=True)
    BorrowerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    Status = Column(String(20), nullable=False, default="pending", index=True)
    StartDate = Column(Date, nullable=False)
    EndDate = Column(Date, nullable=False)
    Note = Column(String(1000))
    OwnerNote = Column(String(1000))
    PickupConfirmedAt = Column(DateTime)
    ReturnConfirmedAt = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Tool = relationship("Tool", back_populates="Reservations")
    Borrower = relationship("User")
    LoanPhotos = relationship("LoanPhoto", back_populates="Reservation")
    Reviews = relationship("Review", back_populates="Reservation")


class LoanPhoto(Base):
    __tablename__ = "LoanPhotos"

    LoanPhotoID = Column(Integer, primary_key=True)
    ReservationID = Column(Integer, ForeignKey("Reservations.ReservationID"), nullable=False, index=True)
    PhotoType = Column(String(10), nullable=False)  # before/after
    Url = Column(String(1000), nullable=False)
    UploadedBy = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    Notes = Column(String(500))
    UploadedAt = Column(DateTime, server_default=func.now())

    Reservation = relationship("Reservation", back_populates="LoanPhotos")


class Review(Base):
    __tablename__ = "Reviews"
    __table_args__ = (UniqueConstraint("ReservationID", "ReviewerID", name="uq_review_reservation_reviewer"),)

    ReviewID = Column(Integer, primary_key=True)
    ReservationID = Column(Integer, ForeignKey("Reservations.ReservationID"), nullable=False, index=True)
    ReviewerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    RevieweeID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    Rating = Column(Integer, nullable=False)
    Comment = Column(String(2000))
    CreatedDate = Column(DateTime, server_default=func.now())

    Reservation = relationship("Reservation", back_populates="Reviews")
    Reviewer = relationship("User", foreign_keys=[ReviewerID])
    Reviewee = relationship("User", foreign_keys=[RevieweeID])


class Notification(Base):
    __tablename__ = "Notifications"

    NotificationID = Column(Integer, primary_key=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    NotificationType = Column(String(50), nullable=False)
    Title = Column(String(255), nullable=False)
    Message = Column(String(2000), nullable=False)
    RelatedID = Column(Integer)
    IsRead = Column(Boolean, default=False)
    CreatedAt = Column(DateTime, server_default=func.now())


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())

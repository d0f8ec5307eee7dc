from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from equipment_loans.db.base import Base


class User(Base):
    __tablename__ = "users"

    UserID = Column("id", String(36), primary_key=True)
    Name = Column("name", String(255), nullable=False)
    Email = Column("email", String(255))
    Role = Column("role", String(20), nullable=False)
    Cedula = Column("cedula", String(50))
    Matricula = Column("matricula", String(50))
    TeacherID = Column("teacherId", String(36), ForeignKey("users.id"))
    IsActive = Column("isActive", Boolean, default=True)
    CreatedAt = Column("createdAt", DateTime, server_default=func.now())

    Loans = relationship("Loan", back_populates="Borrower", foreign_keys="Loan.UserID")


class Equipment(Base):
    __tablename__ = "equipment"

    EquipmentID = Column("id", String(36), primary_key=True)
    Name = Column("name", String(255), nullable=False)
    Description = Column("description", String(1000))
    Code = Column("code", String(50))
    Category = Column("category", String(100))
    Brand = Column("brand", String(100))
    Model = Column("model", String(100))
    SerialNumber = Column("serialNumber", String(255))
    Status = Column("status", String(20), default="available")
    Condition = Column("condition", String(20), default="good")
    Location = Column("location", String(255))
    TotalQuantity = Column("totalQuantity", Integer, nullable=False)
    AvailableQuantity = Column("availableQuantity", Integer, nullable=False)
    PurchaseDate = Column("purchaseDate", DateTime)
    LastMaintenanceDate = Column("lastMaintenanceDate", DateTime)
    CreatedAt = Column("createdAt", DateTime, server_default=func.now())
    UpdatedAt = Column("updatedAt", DateTime, server_default=func.now())

    Loans = relationship("Loan", back_populates="Equipment")


class Loan(Base):
    __tablename__ = "loans"

    LoanID = Column("id", String(36), primary_key=True)
    UserID = Column("userId", String(36), ForeignKey("users.id"), nullable=False)
    EquipmentID = Column("equipmentId", String(36), ForeignKey("equipment.id"), nullable=False)
    TeacherID = Column("teacherId", String(36))
    Status = Column("status", String(20), nullable=False, default="pending")
    RequestDate = Column("requestDate", DateTime, nullable=False)
    ApprovedDate = Column("approvedDate", DateTime)
    PreferredStartDate = Column("preferredStartDate", DateTime, nullable=False)
    PreferredEndDate = Column("preferredEndDate", DateTime, nullable=False)
    ActualStartDate = Column("actualStartDate", DateTime)
    ActualEndDate = Column("actualEndDate", DateTime)
    ExpectedReturnDate = Column("expectedReturnDate", DateTime, nullable=False)
    ReturnDate = Column("returnDate", DateTime)
    ReturnRequestDate = Column("returnRequestDate", DateTime)
    Purpose = Column("purpose", String(1000), nullable=False)
    Notes = Column("notes", String(1000))
    ReturnNotes = Column("returnNotes", String(1000))
    EquipmentConditionOnReturn = Column("equipmentConditionOnReturn", String(20))
    EquipmentConditionNotes = Column("equipmentConditionNotes", String(1000))
    ApprovedBy = Column("approvedBy", String(36))
    ReturnProcessedBy = Column("returnProcessedBy", String(36))
    ReturnApprovedBy = Column("returnApprovedBy", String(36))
    CreatedAt = Column("createdAt", DateTime, nullable=False)
    UpdatedAt = Column("updatedAt", DateTime, nullable=False)

    Borrower = relationship("User", back_populates="Loans", foreign_keys=[UserID])
    Equipment = relationship("Equipment", back_populates="Loans")


class Notification(Base):
    __tablename__ = "notifications"

    NotificationID = Column("id", String(36), primary_key=True)
    UserID = Column("userId", String(36), nullable=False)
    Type = Column("type", String(30), nullable=False)
    Title = Column("title", String(255), nullable=False)
    Message = Column("message", String(2000), nullable=False)
    IsRead = Column("isRead", Boolean, default=False, nullable=False)
    RelatedLoanID = Column("relatedLoanId", String(36))
    CreatedAt = Column("createdAt", DateTime, nullable=False)
    ReadAt = Column("readAt", DateTime)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    AuditID = Column(Integer, primary_key=True, autoincrement=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(String(36), nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(String(36))
    CreatedAt = Column(DateTime, server_default=func.now())

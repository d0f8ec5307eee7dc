from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from equipment_loans.db.base import Base
from equipment_loans.db.store import SqlAlchemyStore
from equipment_loans.models.loan_models import Equipment, Loan, User
from equipment_loans.schemas.actors import Actor
from equipment_loans.schemas.loans import CreateLoanDto


NOW = datetime(2026, 3, 10, 9, 0, 0)


def memory_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return engine


def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def add_user(db, user_id, role, teacher_id=None, is_active=True, name=None):
    user = User(
        UserID=user_id,
        Name=name or user_id.title(),
        Email=f"{user_id}@school.test",
        Role=role,
        TeacherID=teacher_id,
        IsActive=is_active,
        CreatedAt=NOW - timedelta(days=90),
    )
    db.add(user)
    db.commit()
    return Actor.from_user(user)


def add_equipment(db, equipment_id="eq-1", total=1, available=None, name="Projector", status="available"):
    unit = Equipment(
        EquipmentID=equipment_id,
        Name=name,
        Category="AV",
        Brand="Epson",
        Model="X41",
        SerialNumber=f"SN-{equipment_id}",
        Status=status,
        Condition="good",
        TotalQuantity=total,
        AvailableQuantity=total if available is None else available,
        CreatedAt=NOW - timedelta(days=90),
        UpdatedAt=NOW - timedelta(days=90),
    )
    db.add(unit)
    db.commit()
    return unit


def add_loan(db, loan_id, user_id, equipment_id="eq-1", status="active", teacher_id=None, start=None, end=None, created=None):
    start = start or NOW - timedelta(days=5)
    end = end or NOW + timedelta(days=5)
    loan = Loan(
        LoanID=loan_id,
        UserID=user_id,
        EquipmentID=equipment_id,
        TeacherID=teacher_id,
        Status=status,
        RequestDate=created or start,
        PreferredStartDate=start,
        PreferredEndDate=end,
        ExpectedReturnDate=end,
        Purpose="class project",
        CreatedAt=created or start,
        UpdatedAt=created or start,
    )
    db.add(loan)
    db.commit()
    return loan


def loan_request(equipment_id="eq-1", purpose="class project", start_offset=1, end_offset=6, **extra):
    return CreateLoanDto(
        equipmentId=equipment_id,
        purpose=purpose,
        preferredStartDate=NOW + timedelta(days=start_offset),
        preferredEndDate=NOW + timedelta(days=end_offset),
        **extra,
    )


class StoreTestMixin:
    def setUp(self):
        self.engine = memory_engine()
        self.db = session_factory(self.engine)()
        self.store = SqlAlchemyStore(self.db)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

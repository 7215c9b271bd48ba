import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-default.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "local")

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Tuple

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.security import create_access_token
from app.core.enums import BillingCycle, RequirementType, Role, RosterStatus, SubscriptionStatus
from app.core.models import (
    Belt,
    BeltRequirement,
    MembershipPlan,
    PaymentConfig,
    Program,
    ProgramEnrollment,
    School,
    SchoolEnrollment,
    Subscription,
    User,
)
from app.db.session import Base, get_db
from app.main import app


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite database file per test, schema created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging data and asserting on it. Commit before calling the API."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app; every request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(
        subject={
            "user_id": str(user.id),
            "school_id": str(user.school_id) if user.school_id else None,
            "role": user.role,
        }
    )
    return {"Authorization": f"Bearer {token}"}


class Factory:
    """Arranges rows directly through the session. Every helper commits."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._counter = 0

    async def _save(self, *rows):
        self.db.add_all(rows)
        await self.db.commit()
        return rows[0] if len(rows) == 1 else rows

    async def school(self, name: str = "Dragon Dojo") -> School:
        return await self._save(School(name=name))

    async def user(self, school: Optional[School], role: Role, first_name: Optional[str] = None) -> User:
        self._counter += 1
        return await self._save(
            User(
                school_id=school.id if school else None,
                email=f"user{self._counter}@example.com",
                first_name=first_name or role.value.title(),
                last_name=f"Tester{self._counter}",
                role=role.value,
            )
        )

    async def student(self, school: School, on_roster: bool = True, first_name: str = "Sam") -> User:
        student = await self.user(school, Role.STUDENT, first_name=first_name)
        if on_roster:
            await self._save(
                SchoolEnrollment(student_id=student.id, school_id=school.id, status=RosterStatus.ACTIVE.value)
            )
        return student

    async def program(
        self,
        school: Optional[School],
        belts: Sequence[Tuple[str, int]] = (("White", 1), ("Yellow", 2), ("Green", 3)),
        name: str = "Karate",
    ) -> Tuple[Program, List[Belt]]:
        program = Program(
            name=name,
            school_id=school.id if school else None,
            is_global=school is None,
            has_rank_structure=True,
            is_active=True,
        )
        await self._save(program)
        belt_rows = [Belt(program_id=program.id, name=n, display_order=o) for n, o in belts]
        await self._save(*belt_rows)
        return program, sorted(belt_rows, key=lambda b: b.display_order)

    async def requirement(
        self,
        belt: Belt,
        requirement_type: RequirementType = RequirementType.MIN_ATTENDANCE,
        value: Optional[Decimal] = Decimal("10"),
        is_required: bool = True,
        description: Optional[str] = None,
    ) -> BeltRequirement:
        return await self._save(
            BeltRequirement(
                belt_id=belt.id,
                type=requirement_type.value,
                description=description or f"{requirement_type.value} for {belt.name}",
                value=value,
                is_required=is_required,
            )
        )

    async def enrollment(
        self,
        student: User,
        program: Program,
        school: School,
        current_belt: Optional[Belt] = None,
    ) -> ProgramEnrollment:
        return await self._save(
            ProgramEnrollment(
                student_id=student.id,
                program_id=program.id,
                school_id=school.id,
                current_belt_id=current_belt.id if current_belt else None,
            )
        )

    async def plan(
        self,
        school: School,
        price: Decimal = Decimal("100.00"),
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        name: str = "Unlimited",
    ) -> MembershipPlan:
        return await self._save(
            MembershipPlan(school_id=school.id, name=name, price=price, billing_cycle=billing_cycle.value)
        )

    async def subscription(
        self,
        school: School,
        student: User,
        plan: MembershipPlan,
        next_invoice_date: Optional[date],
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        return await self._save(
            Subscription(
                school_id=school.id,
                student_id=student.id,
                plan_id=plan.id,
                status=status.value,
                start_date=next_invoice_date or date(2024, 1, 1),
                next_invoice_date=next_invoice_date,
            )
        )

    async def payment_config(
        self,
        school: School,
        tax_rate: Decimal = Decimal("0"),
        grace_period_days: int = 7,
    ) -> PaymentConfig:
        return await self._save(
            PaymentConfig(
                school_id=school.id,
                currency="USD",
                tax_rate=tax_rate,
                late_fee_amount=Decimal("0"),
                grace_period_days=grace_period_days,
                is_active=True,
            )
        )


@pytest_asyncio.fixture()
async def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)


@pytest_asyncio.fixture()
async def dojo(factory: Factory) -> Dict[str, object]:
    """A school with an owner, an instructor, a rostered student and a super admin."""
    school = await factory.school()
    return {
        "school": school,
        "owner": await factory.user(school, Role.OWNER),
        "instructor": await factory.user(school, Role.INSTRUCTOR),
        "student": await factory.student(school),
        "super_admin": await factory.user(None, Role.SUPER_ADMIN),
    }


@pytest_asyncio.fixture()
async def auth():
    """Bearer headers for a user: ``auth(user)``."""
    return auth_headers

"""SQLModel table definitions for the user schema of the relational mirror.

Master tables are built at migration time from the proto schema (see
``masterforge.services.migrator``); user tables are owned by the game server
and declared here. Both groups live in their own schema: ``Master`` and
``User``. On SQLite each schema is an attached database.

Column names are the attribute names, so user TSV headers are snake_case.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import BigInteger, Column, Float, Index, Integer
from sqlmodel import Field, SQLModel

MASTER_SCHEMA = "Master"
USER_SCHEMA = "User"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserInfo(SQLModel, table=True):
    """A registered player account."""

    __tablename__ = "UserInfo"
    __table_args__ = {"schema": USER_SCHEMA}

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    display_name: str = Field(default="", max_length=50, index=True, unique=True)
    password_hash: str | None = Field(default=None, max_length=255)
    level: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    last_login_at: datetime = Field(default_factory=_utcnow)
    email: str | None = Field(default=None, max_length=255)
    auth_type: str = Field(default="Password", max_length=20)
    device_fingerprint: str | None = Field(default=None, max_length=255)
    is_email_verified: bool = False
    failed_login_attempts: int = 0
    lockout_end_at: datetime | None = None


class UserScore(SQLModel, table=True):
    """One recorded run result."""

    __tablename__ = "UserScore"
    __table_args__ = (
        Index("IX_User_UserScore_GameMode_StageId_Score", "game_mode", "stage_id", "score"),
        {"schema": USER_SCHEMA},
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
    )
    user_id: str = Field(foreign_key=f"{USER_SCHEMA}.UserInfo.id", max_length=36, ondelete="CASCADE")
    game_mode: str = Field(max_length=50)
    stage_id: int
    score: int
    clear_time: float = Field(sa_column=Column(Float, nullable=False))
    wave_reached: int = 0
    enemies_defeated: int = 0
    recorded_at: datetime = Field(default_factory=_utcnow)


USER_TABLE_TYPES: dict[str, type[SQLModel]] = {
    "UserInfo": UserInfo,
    "UserScore": UserScore,
}

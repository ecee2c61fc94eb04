from pydantic import BaseModel, Field


class ChildOut(BaseModel):
    Id: int
    DisplayName: str
    PointsBalance: int
    TotalPointsEarned: int
    Xp: int
    Level: int
    LevelTitle: str


class ChildCreate(BaseModel):
    DisplayName: str = Field(min_length=1, max_length=120)


class FamilyOut(BaseModel):
    Id: int
    Name: str
    FamilyCode: str
    SubscriptionPlan: str
    SubscriptionStatus: str
    Children: list[ChildOut]
    OpenChores: int
    PendingRewards: int

from pydantic import BaseModel, EmailStr


class UserOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: EmailStr
    role: str

    class Config:
        from_attributes = True


class UserPublic(BaseModel):
    """Redacted account view shown to administrators alongside an order."""

    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    is_active: bool

    class Config:
        from_attributes = True

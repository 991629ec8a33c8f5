from pydantic import BaseModel, Field


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class PushSubscriptionIn(BaseModel):
    endpoint: str = Field(min_length=1, max_length=1000)
    keys: PushKeys


class PushUnsubscribe(BaseModel):
    endpoint: str


class VapidKeyOut(BaseModel):
    public_key: str

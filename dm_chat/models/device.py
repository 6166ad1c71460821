from datetime import datetime
from typing import Literal, Optional, TypedDict


PushPlatform = Literal["android", "ios"]


class DeviceTokenDocument(TypedDict, total=False):
    _id: str
    user_id: str
    fcm_token: str
    platform: PushPlatform
    device_id: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

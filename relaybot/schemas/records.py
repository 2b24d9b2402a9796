from datetime import datetime
from typing import Optional
from pydantic import AwareDatetime, BaseModel


class StoredResponse(BaseModel):
    # on-disk shape of web_responses/<id>.json; timestamps must carry an offset
    content: str
    created_at: AwareDatetime
    expires_at: AwareDatetime
    owner_user_id: Optional[int] = None


class ResponseRecord(BaseModel):
    id: str
    content: str
    created_at: datetime
    expires_at: datetime
    owner_user_id: Optional[int] = None


class UserFile(BaseModel):
    key: str
    file_name: str
    uploaded_at: datetime
    deletion_time: datetime

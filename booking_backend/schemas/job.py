from pydantic import BaseModel


class JobResult(BaseModel):
    count: int
    message: str

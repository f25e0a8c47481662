from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """Principal that uploads images; every record it submits is scoped to it."""
    id: int
    email: str
    is_active: bool = True
    created_at: Optional[datetime] = None

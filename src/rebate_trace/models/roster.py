"""
Roster model: a member record in the searchable roster index.
"""

from pydantic import BaseModel, ConfigDict, Field


class RosterHit(BaseModel):
    """
    A roster document returned by the search backend.

    Only member_id is consumed by the pipeline; the rest is carried for
    roster maintenance and debugging.
    """

    model_config = ConfigDict(extra='ignore')

    id: str = Field(..., description='Roster document primary key')
    member_id: str = Field(..., description='Member license/identifier')
    group_name: str = Field(default='', description='Contract the member is rostered under')
    alias: list[str] = Field(default_factory=list)
    name: str = ''
    address: str = ''
    city: str = ''
    state: str = ''
    postal: str = ''
    gln: str | None = None
    hin: str | None = None
